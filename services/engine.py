"""Wiring of the ticket services around one pool and one expiring store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config import Config
from database.connection import OptimizedSQLitePool
from services.boost_service import BoostVerifier
from services.captcha_service import CaptchaService
from services.collaborators import BoostChecker, SubscriptionChecker
from services.custom_task_service import CustomTaskService
from services.expiring_store import ExpiringStore
from services.fraud_detection_service import DefaultFraudPolicy, FraudDetectionService, FraudPolicy
from services.lifecycle_service import LifecycleService
from services.participation_service import ParticipationLedger
from services.referral_service import ReferralTracker
from services.story_service import StoryModerationService


@dataclass
class GiveawayEngine:
    lifecycle: LifecycleService
    captcha: CaptchaService
    fraud: FraudDetectionService
    referrals: ReferralTracker
    ledger: ParticipationLedger
    boosts: BoostVerifier
    stories: StoryModerationService
    tasks: CustomTaskService

    @classmethod
    def build(
        cls,
        config: Config,
        pool: OptimizedSQLitePool,
        store: ExpiringStore,
        subscriptions: SubscriptionChecker,
        boost_checker: BoostChecker,
        fraud_policy: Optional[FraudPolicy] = None,
    ) -> "GiveawayEngine":
        lifecycle = LifecycleService(pool, default_invite_max=config.default_invite_max)
        captcha = CaptchaService(
            store,
            ttl_seconds=config.captcha_ttl_seconds,
            max_attempts=config.captcha_max_attempts,
            rate_limit=config.captcha_rate_limit,
            rate_window_seconds=config.captcha_rate_window_seconds,
            pass_ttl_seconds=config.captcha_pass_ttl_seconds,
        )
        fraud_policy = fraud_policy or DefaultFraudPolicy(
            captcha_threshold=config.fraud_captcha_threshold,
            moderation_threshold=config.fraud_moderation_threshold,
        )
        fraud = FraudDetectionService(policy=fraud_policy, captcha_threshold=config.fraud_captcha_threshold)
        referrals = ReferralTracker(pool)
        ledger = ParticipationLedger(
            pool,
            lifecycle=lifecycle,
            subscriptions=subscriptions,
            fraud=fraud,
            captcha=captcha,
            referrals=referrals,
            require_captcha_proof=config.captcha_require_proof,
        )
        return cls(
            lifecycle=lifecycle,
            captcha=captcha,
            fraud=fraud,
            referrals=referrals,
            ledger=ledger,
            boosts=BoostVerifier(pool, lifecycle, boost_checker, config.max_boosts_per_channel),
            stories=StoryModerationService(pool, lifecycle),
            tasks=CustomTaskService(pool, lifecycle),
        )


_engine: Optional[GiveawayEngine] = None


def init_engine(engine: GiveawayEngine) -> GiveawayEngine:
    global _engine
    _engine = engine
    return _engine


def get_engine() -> GiveawayEngine:
    if _engine is None:
        raise RuntimeError("Giveaway engine not initialized")
    return _engine
