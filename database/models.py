"""Data access layer models implemented with handcrafted queries.

Rows are converted to dataclasses at the repository boundary; JSON columns
are parsed into versioned snapshot structs and validated there, so services
never see raw JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core.constants import (
    CaptchaMode,
    CreditSource,
    GiveawayStatus,
    ParticipationStatus,
    SnapshotVersions,
    StoryStatus,
)
from core.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as ISO-8601 UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed precision keeps stored values lexicographically ordered
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are treated as UTC."""
    if value is None or value == "":
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_json(raw: Optional[str], what: str) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Malformed {what} JSON") from exc


def _id_tuple(values: Any, what: str) -> tuple[int, ...]:
    if values is None:
        return ()
    if not isinstance(values, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        raise ValidationError(f"{what} must be a list of integers")
    return tuple(sorted(set(values)))


def dump_ids(values) -> str:
    return json.dumps(sorted(set(values)))


@dataclass(slots=True)
class UserContext:
    """Authenticated principal plus the profile data used for fraud scoring."""
    user_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    account_created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


@dataclass(slots=True)
class Giveaway:
    id: int
    owner_user_id: int
    title: str
    status: GiveawayStatus
    start_at: Optional[datetime]
    end_at: Optional[datetime]
    winners_count: int
    total_participants: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Giveaway":
        try:
            status = GiveawayStatus(row["status"])
        except ValueError as exc:
            raise ValidationError(f"Unknown giveaway status {row['status']!r}") from exc
        return cls(
            id=row["id"],
            owner_user_id=row["owner_user_id"],
            title=row["title"],
            status=status,
            start_at=parse_ts(row["start_at"]),
            end_at=parse_ts(row["end_at"]),
            winners_count=row["winners_count"],
            total_participants=row["total_participants"],
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )


@dataclass(slots=True)
class GiveawayCondition:
    giveaway_id: int
    captcha_mode: CaptchaMode = CaptchaMode.OFF
    invite_enabled: bool = False
    invite_max: int = 10
    boost_enabled: bool = False
    boost_channel_ids: tuple[int, ...] = ()
    stories_enabled: bool = False
    required_channel_ids: tuple[int, ...] = ()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "GiveawayCondition":
        try:
            captcha_mode = CaptchaMode(row["captcha_mode"])
        except ValueError as exc:
            raise ValidationError(f"Unknown captcha mode {row['captcha_mode']!r}") from exc
        return cls(
            giveaway_id=row["giveaway_id"],
            captcha_mode=captcha_mode,
            invite_enabled=bool(row["invite_enabled"]),
            invite_max=row["invite_max"],
            boost_enabled=bool(row["boost_enabled"]),
            boost_channel_ids=_id_tuple(_load_json(row["boost_channel_ids"], "boost_channel_ids"), "boost_channel_ids"),
            stories_enabled=bool(row["stories_enabled"]),
            required_channel_ids=_id_tuple(
                _load_json(row["required_channel_ids"], "required_channel_ids"), "required_channel_ids"
            ),
        )


@dataclass(slots=True, frozen=True)
class ConditionsSnapshot:
    """Rules in force when the user joined, plus what the join proved."""
    captcha_mode: CaptchaMode
    captcha_required: bool
    captcha_passed: bool
    subscriptions_checked: tuple[int, ...]
    invite_enabled: bool
    invite_max: int
    boost_enabled: bool
    boost_channel_ids: tuple[int, ...]
    stories_enabled: bool
    joined_at: str
    referred_by: Optional[int] = None
    version: int = SnapshotVersions.CONDITIONS

    def to_json(self) -> str:
        return json.dumps({
            "version": self.version,
            "captchaMode": self.captcha_mode.value,
            "captchaRequired": self.captcha_required,
            "captchaPassed": self.captcha_passed,
            "subscriptionsChecked": list(self.subscriptions_checked),
            "inviteEnabled": self.invite_enabled,
            "inviteMax": self.invite_max,
            "boostEnabled": self.boost_enabled,
            "boostChannelIds": list(self.boost_channel_ids),
            "storiesEnabled": self.stories_enabled,
            "joinedAt": self.joined_at,
            "referredBy": self.referred_by,
        })

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ConditionsSnapshot":
        data = _load_json(raw, "conditions snapshot")
        if not isinstance(data, dict):
            raise ValidationError("Conditions snapshot must be an object")
        version = data.get("version")
        if version != SnapshotVersions.CONDITIONS:
            raise ValidationError(f"Unsupported conditions snapshot version {version!r}")
        try:
            referred_by = data.get("referredBy")
            if referred_by is not None and not isinstance(referred_by, int):
                raise ValidationError("referredBy must be an integer")
            return cls(
                captcha_mode=CaptchaMode(data["captchaMode"]),
                captcha_required=bool(data["captchaRequired"]),
                captcha_passed=bool(data["captchaPassed"]),
                subscriptions_checked=_id_tuple(data["subscriptionsChecked"], "subscriptionsChecked"),
                invite_enabled=bool(data["inviteEnabled"]),
                invite_max=int(data["inviteMax"]),
                boost_enabled=bool(data["boostEnabled"]),
                boost_channel_ids=_id_tuple(data["boostChannelIds"], "boostChannelIds"),
                stories_enabled=bool(data["storiesEnabled"]),
                joined_at=str(data["joinedAt"]),
                referred_by=referred_by,
                version=version,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed conditions snapshot: {exc}") from exc


@dataclass(slots=True, frozen=True)
class BoostsSnapshot:
    """Last observed (uncapped) boost count per channel."""
    counts: Mapping[int, int] = field(default_factory=dict)
    version: int = SnapshotVersions.BOOSTS

    def get(self, channel_id: int) -> int:
        return self.counts.get(channel_id, 0)

    def with_count(self, channel_id: int, count: int) -> "BoostsSnapshot":
        counts = dict(self.counts)
        counts[channel_id] = count
        return BoostsSnapshot(counts=counts, version=self.version)

    def to_json(self) -> str:
        return json.dumps({
            "version": self.version,
            "counts": {str(channel): count for channel, count in sorted(self.counts.items())},
        })

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "BoostsSnapshot":
        data = _load_json(raw, "boosts snapshot")
        if data is None:
            return cls()
        if not isinstance(data, dict) or data.get("version") != SnapshotVersions.BOOSTS:
            raise ValidationError("Unsupported boosts snapshot")
        counts_raw = data.get("counts")
        if not isinstance(counts_raw, dict):
            raise ValidationError("Boosts snapshot counts must be an object")
        counts: dict[int, int] = {}
        for channel, count in counts_raw.items():
            try:
                channel_id = int(channel)
            except ValueError as exc:
                raise ValidationError(f"Invalid channel id {channel!r} in boosts snapshot") from exc
            if not isinstance(count, int) or isinstance(count, bool) or count < 0:
                raise ValidationError(f"Invalid boost count for channel {channel_id}")
            counts[channel_id] = count
        return cls(counts=counts, version=data["version"])


@dataclass(slots=True)
class Participation:
    id: int
    giveaway_id: int
    user_id: int
    status: ParticipationStatus
    tickets_base: int
    tickets_extra: int
    referrer_user_id: Optional[int]
    referral_credits: int
    boosted_channel_ids: tuple[int, ...]
    boosts_snapshot: BoostsSnapshot
    stories_shared: bool
    stories_shared_at: Optional[datetime]
    fraud_score: int
    conditions_snapshot: ConditionsSnapshot
    source_tag: Optional[str]
    joined_at: datetime

    @property
    def total_tickets(self) -> int:
        return self.tickets_base + self.tickets_extra

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Participation":
        try:
            status = ParticipationStatus(row["status"])
        except ValueError as exc:
            raise ValidationError(f"Unknown participation status {row['status']!r}") from exc
        return cls(
            id=row["id"],
            giveaway_id=row["giveaway_id"],
            user_id=row["user_id"],
            status=status,
            tickets_base=row["tickets_base"],
            tickets_extra=row["tickets_extra"],
            referrer_user_id=row["referrer_user_id"],
            referral_credits=row["referral_credits"],
            boosted_channel_ids=_id_tuple(
                _load_json(row["boosted_channel_ids"], "boosted_channel_ids"), "boosted_channel_ids"
            ),
            boosts_snapshot=BoostsSnapshot.from_json(row["boosts_snapshot"]),
            stories_shared=bool(row["stories_shared"]),
            stories_shared_at=parse_ts(row["stories_shared_at"]),
            fraud_score=row["fraud_score"],
            conditions_snapshot=ConditionsSnapshot.from_json(row["conditions_snapshot"]),
            source_tag=row["source_tag"],
            joined_at=parse_ts(row["joined_at"]),
        )


@dataclass(slots=True)
class StoryRequest:
    id: int
    participation_id: int
    giveaway_id: int
    user_id: int
    status: StoryStatus
    submitted_at: datetime
    reviewed_at: Optional[datetime]
    reviewed_by: Optional[int]
    reject_reason: Optional[str]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StoryRequest":
        return cls(
            id=row["id"],
            participation_id=row["participation_id"],
            giveaway_id=row["giveaway_id"],
            user_id=row["user_id"],
            status=StoryStatus(row["status"]),
            submitted_at=parse_ts(row["submitted_at"]),
            reviewed_at=parse_ts(row["reviewed_at"]),
            reviewed_by=row["reviewed_by"],
            reject_reason=row["reject_reason"],
        )


@dataclass(slots=True)
class CustomTask:
    id: int
    giveaway_id: int
    title: str
    url: Optional[str]
    bonus_tickets: int
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomTask":
        return cls(
            id=row["id"],
            giveaway_id=row["giveaway_id"],
            title=row["title"],
            url=row["url"],
            bonus_tickets=row["bonus_tickets"],
            created_at=parse_ts(row["created_at"]),
        )


@dataclass(slots=True)
class TicketCredit:
    id: int
    participation_id: int
    source: CreditSource
    amount: int
    ref: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TicketCredit":
        return cls(
            id=row["id"],
            participation_id=row["participation_id"],
            source=CreditSource(row["source"]),
            amount=row["amount"],
            ref=row["ref"],
            created_at=parse_ts(row["created_at"]),
        )
