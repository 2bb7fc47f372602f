"""Participation ledger: validates join attempts and records entries."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from core.exceptions import (
    AlreadyJoinedError,
    CaptchaRequiredError,
    DatabaseError,
    NotParticipatingError,
    SubscriptionRequiredError,
)
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import ConditionsSnapshot, GiveawayCondition, Participation, UserContext, format_ts, utcnow
from database.repositories import GiveawayRepository, ParticipationRepository
from services.captcha_service import CaptchaService
from services.collaborators import SubscriptionChecker
from services.fraud_detection_service import FraudDetectionService
from services.lifecycle_service import LifecycleService, ensure_joinable
from services.metrics import JOIN_OUTCOMES, TICKETS_CREDITED
from services.referral_service import ReferralTracker

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class JoinInput:
    captcha_passed: bool = False
    referrer_user_id: Optional[int] = None
    source_tag: Optional[str] = None
    time_since_open_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class JoinResult:
    participation_id: int
    tickets_base: int
    tickets_extra: int
    joined_at: datetime
    fraud_score: int
    referral_credited: bool = False


@dataclass(frozen=True, slots=True)
class SubscriptionStatus:
    subscribed: bool
    channels: Tuple[Tuple[int, bool], ...]

class ParticipationLedger:
    """Runs the join gates in order and persists the participation atomically.

    Gate order (first failure wins): lifecycle, existing participation,
    channel subscriptions, fraud/captcha. Referral credit, the participation
    insert and the participant counter share one ``BEGIN IMMEDIATE``
    transaction, so a duplicate insert leaves no trace.
    """

    def __init__(
        self,
        pool: OptimizedSQLitePool,
        lifecycle: LifecycleService,
        subscriptions: SubscriptionChecker,
        fraud: FraudDetectionService,
        captcha: CaptchaService,
        referrals: ReferralTracker,
        require_captcha_proof: bool = True,
    ):
        self.pool = pool
        self.lifecycle = lifecycle
        self.subscriptions = subscriptions
        self.fraud = fraud
        self.captcha = captcha
        self.referrals = referrals
        self.require_captcha_proof = require_captcha_proof

    async def join(
        self,
        giveaway_id: int,
        user: UserContext,
        join_input: Optional[JoinInput] = None,
        now: Optional[datetime] = None,
    ) -> JoinResult:
        """Join ``user`` to a giveaway.

        Raises:
            NotFoundError: Unknown giveaway
            GiveawayNotActiveError: Giveaway is not ACTIVE
            GiveawayExpiredError: Giveaway end time has passed
            AlreadyJoinedError: User already participates
            SubscriptionRequiredError: A required channel membership is not confirmed
            CaptchaRequiredError: The fraud gate demands a solved captcha
        """
        join_input = join_input or JoinInput()
        now = now or utcnow()
        try:
            result = await self._join(giveaway_id, user, join_input, now)
        except Exception as exc:
            JOIN_OUTCOMES.labels(outcome=getattr(exc, "code", "ERROR")).inc()
            raise
        JOIN_OUTCOMES.labels(outcome="JOINED").inc()
        return result

    async def _join(self, giveaway_id: int, user: UserContext, join_input: JoinInput, now: datetime) -> JoinResult:
        async with self.pool.connection() as conn:
            giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
            ensure_joinable(giveaway, now)
            if await ParticipationRepository.exists(conn, giveaway_id, user.user_id):
                raise AlreadyJoinedError()
            condition = await self.lifecycle.get_condition(giveaway_id, conn)

        # Membership lookups hit the network; no connection is held meanwhile
        statuses = await self._membership(user.user_id, condition.required_channel_ids)
        missing = [channel_id for channel_id, subscribed in statuses if not subscribed]
        if missing:
            raise SubscriptionRequiredError(
                "Subscribe to the required channels and try again", channel_ids=tuple(missing)
            )

        async with self.pool.connection() as conn:
            fraud = await self.fraud.evaluate(conn, user, giveaway_id, join_input.time_since_open_ms, now)

        captcha_required = self.fraud.requires_captcha(fraud.score, condition.captcha_mode)
        pass_spent = False
        if captcha_required:
            if not join_input.captcha_passed:
                raise CaptchaRequiredError()
            if self.require_captcha_proof:
                # Spending the marker is the gate, so one solve admits one join
                if not await self.captcha.consume_pass(user.user_id):
                    raise CaptchaRequiredError("Captcha was not verified for this user")
                pass_spent = True

        try:
            participation_id, referral_credited = await self._record(
                giveaway_id, user, join_input, condition, fraud.score, captcha_required, now
            )
        except Exception:
            if pass_spent:
                await self.captcha.restore_pass(user.user_id)
            raise

        if referral_credited:
            TICKETS_CREDITED.labels(source="referral").inc()

        logger.info(
            f"User {user.user_id} joined giveaway {giveaway_id}",
            extra={
                "participation_id": participation_id,
                "fraud_score": fraud.score,
                "captcha_mode": condition.captcha_mode.value,
                "referral_credited": referral_credited,
            },
        )
        return JoinResult(
            participation_id=participation_id,
            tickets_base=1,
            tickets_extra=0,
            joined_at=now,
            fraud_score=fraud.score,
            referral_credited=referral_credited,
        )

    async def _record(
        self,
        giveaway_id: int,
        user: UserContext,
        join_input: JoinInput,
        condition: GiveawayCondition,
        fraud_score: int,
        captcha_required: bool,
        now: datetime,
    ) -> Tuple[int, bool]:
        referral_credited = False
        try:
            async with self.pool.transaction() as conn:
                # Status may have changed while the checkers ran
                giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
                ensure_joinable(giveaway, now)

                if condition.invite_enabled and join_input.referrer_user_id is not None:
                    decision = await self.referrals.credit_referral(
                        conn, giveaway_id, join_input.referrer_user_id, user.user_id, condition.invite_max, now
                    )
                    referral_credited = decision.credited

                snapshot = ConditionsSnapshot(
                    captcha_mode=condition.captcha_mode,
                    captcha_required=captcha_required,
                    captcha_passed=captcha_required or join_input.captcha_passed,
                    subscriptions_checked=condition.required_channel_ids,
                    invite_enabled=condition.invite_enabled,
                    invite_max=condition.invite_max,
                    boost_enabled=condition.boost_enabled,
                    boost_channel_ids=condition.boost_channel_ids,
                    stories_enabled=condition.stories_enabled,
                    joined_at=format_ts(now),
                    referred_by=join_input.referrer_user_id if referral_credited else None,
                )
                participation_id = await ParticipationRepository.insert(
                    conn,
                    giveaway_id=giveaway_id,
                    user_id=user.user_id,
                    fraud_score=fraud_score,
                    referrer_user_id=join_input.referrer_user_id if referral_credited else None,
                    conditions_snapshot=snapshot,
                    source_tag=join_input.source_tag,
                    joined_at=now,
                )
                await GiveawayRepository.increment_participants(conn, giveaway_id)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise AlreadyJoinedError() from exc
            raise DatabaseError(str(exc)) from exc
        return participation_id, referral_credited

    async def check_subscriptions(self, giveaway_id: int, user_id: int) -> SubscriptionStatus:
        """Report which required channels the user still has to join.

        Read-only preview of the subscription gate; joining re-checks every channel.
        """
        await self.lifecycle.get_giveaway(giveaway_id)
        condition = await self.lifecycle.get_condition(giveaway_id)
        statuses = await self._membership(user_id, condition.required_channel_ids)
        return SubscriptionStatus(
            subscribed=all(subscribed for _, subscribed in statuses),
            channels=tuple(statuses),
        )

    async def _membership(self, user_id: int, channel_ids) -> List[Tuple[int, bool]]:
        return [(channel_id, await self._is_member(user_id, channel_id)) for channel_id in channel_ids]

    async def _is_member(self, user_id: int, channel_id: int) -> bool:
        try:
            return bool(await self.subscriptions.is_member(user_id, channel_id))
        except Exception as e:
            logger.warning(f"Subscription check failed for channel {channel_id}: {e}")
            return False

    async def get_participation(self, giveaway_id: int, user_id: int) -> Participation:
        async with self.pool.connection() as conn:
            participation = await ParticipationRepository.get(conn, giveaway_id, user_id)
        if participation is None:
            raise NotParticipatingError()
        return participation
