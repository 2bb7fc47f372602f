"""Service for scoring join attempts and deciding when a captcha is mandatory."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol

import aiosqlite

from core.constants import CaptchaMode, FraudDefaults
from core.logger import get_logger
from database.models import UserContext, utcnow
from database.repositories import FraudLogRepository, ParticipationRepository

logger = get_logger(__name__)

_NAME_SPECIAL = re.compile(r"[^a-zA-Zа-яА-ЯёЁ0-9\s]")
_SUSPICIOUS_NAME_PATTERNS = (
    re.compile(r"bot$", re.IGNORECASE),
    re.compile(r"\d{4,}"),
    re.compile(r"^[0-9]+$"),
)


@dataclass
class FraudActivity:
    """Behavioural signals gathered for one join attempt."""
    time_since_open_ms: Optional[int] = None
    recent_participations: int = 0


@dataclass
class FraudScore:
    """Fraud detection result."""
    score: int  # 0 (safe) to 100 (fraud)
    reasons: list[str] = field(default_factory=list)
    is_suspicious: bool = False
    requires_moderation: bool = False


class FraudPolicy(Protocol):
    def score(self, user: UserContext, giveaway_id: int, activity: FraudActivity, now: datetime) -> FraudScore: ...


class DefaultFraudPolicy:
    """Additive point policy capped at 100.

    Scores of ``captcha_threshold`` and above are suspicious; scores of
    ``moderation_threshold`` and above are flagged for manual review.
    """

    def __init__(
        self,
        captcha_threshold: int = FraudDefaults.CAPTCHA_THRESHOLD,
        moderation_threshold: int = FraudDefaults.MODERATION_THRESHOLD,
    ) -> None:
        self.captcha_threshold = captcha_threshold
        self.moderation_threshold = moderation_threshold

    def score(self, user: UserContext, giveaway_id: int, activity: FraudActivity, now: datetime) -> FraudScore:
        points = 0
        reasons: list[str] = []

        if user.account_created_at is not None:
            age = now - user.account_created_at
            if age < timedelta(days=FraudDefaults.YOUNG_ACCOUNT_DAYS):
                points += FraudDefaults.YOUNG_ACCOUNT_POINTS
                reasons.append(f"Account age {age.days} days")

        if not user.username:
            points += FraudDefaults.NO_USERNAME_POINTS
            reasons.append("No username")

        full_name = user.display_name.strip()
        if full_name:
            total = len(full_name)
            digits = sum(ch.isdigit() for ch in full_name)
            specials = len(_NAME_SPECIAL.findall(full_name))
            if digits > total * FraudDefaults.DIGIT_RATIO:
                points += FraudDefaults.DIGIT_RATIO_POINTS
                reasons.append("Name is mostly digits")
            if specials > total * FraudDefaults.SPECIAL_RATIO:
                points += FraudDefaults.SPECIAL_RATIO_POINTS
                reasons.append("Name has many special characters")
            if any(pattern.search(full_name) for pattern in _SUSPICIOUS_NAME_PATTERNS):
                points += FraudDefaults.SUSPICIOUS_NAME_POINTS
                reasons.append("Suspicious name pattern")

        if activity.time_since_open_ms is not None and activity.time_since_open_ms < FraudDefaults.FAST_COMPLETION_MS:
            points += FraudDefaults.FAST_COMPLETION_POINTS
            reasons.append(f"Joined {activity.time_since_open_ms}ms after opening")

        if activity.recent_participations > FraudDefaults.BURST_PARTICIPATIONS:
            points += FraudDefaults.BURST_POINTS
            reasons.append(f"{activity.recent_participations} participations in 24h")

        points = min(points, FraudDefaults.MAX_SCORE)
        return FraudScore(
            score=points,
            reasons=reasons,
            is_suspicious=points >= self.captcha_threshold,
            requires_moderation=points >= self.moderation_threshold,
        )


def requires_captcha(score: int, mode: CaptchaMode, threshold: int = FraudDefaults.CAPTCHA_THRESHOLD) -> bool:
    """Decide whether a join with ``score`` must present a solved captcha."""
    if mode is CaptchaMode.ALL:
        return True
    if mode is CaptchaMode.OFF:
        return False
    if mode is CaptchaMode.SUSPICIOUS_ONLY:
        return score >= threshold
    raise ValueError(f"Unknown captcha mode: {mode!r}")


class FraudDetectionService:
    """Wraps a :class:`FraudPolicy` into the captcha gate used by joins."""

    def __init__(self, policy: Optional[FraudPolicy] = None, captcha_threshold: int = FraudDefaults.CAPTCHA_THRESHOLD):
        self.policy = policy or DefaultFraudPolicy(captcha_threshold=captcha_threshold)
        self.captcha_threshold = captcha_threshold

    async def evaluate(
        self,
        conn: aiosqlite.Connection,
        user: UserContext,
        giveaway_id: int,
        time_since_open_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> FraudScore:
        """Score a join attempt and record it when suspicious.

        Args:
            conn: Connection used for the activity lookup and the fraud log
            user: Principal attempting to join
            giveaway_id: Target giveaway
            time_since_open_ms: Milliseconds between opening the giveaway and joining
            now: Evaluation time, defaults to the current UTC time

        Returns:
            FraudScore produced by the configured policy
        """
        now = now or utcnow()
        recent = await ParticipationRepository.count_recent_for_user(
            conn, user.user_id, now - timedelta(hours=FraudDefaults.BURST_WINDOW_HOURS)
        )
        activity = FraudActivity(time_since_open_ms=time_since_open_ms, recent_participations=recent)
        result = self.policy.score(user, giveaway_id, activity, now)

        if result.is_suspicious or result.requires_moderation:
            await self.log_suspicious_activity(
                conn,
                user_id=user.user_id,
                giveaway_id=giveaway_id,
                activity_type="join_high_risk" if result.requires_moderation else "join_suspicious",
                score=result.score,
                details={"reasons": result.reasons},
                now=now,
            )
        return result

    def requires_captcha(self, score: int, mode: CaptchaMode) -> bool:
        return requires_captcha(score, mode, self.captcha_threshold)

    async def log_suspicious_activity(
        self,
        conn: aiosqlite.Connection,
        user_id: int,
        giveaway_id: Optional[int],
        activity_type: str,
        score: int,
        details: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """Log suspicious activity to the fraud log."""
        await FraudLogRepository.insert(
            conn, user_id, giveaway_id, activity_type, score, details, now or utcnow()
        )
        logger.warning(
            f"Suspicious activity: {activity_type}",
            extra={"user_id": user_id, "giveaway_id": giveaway_id, "score": score},
        )
