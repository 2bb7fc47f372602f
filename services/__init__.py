"""Services package."""

from .async_runner import set_main_loop, run_coroutine_sync
from .boost_service import BoostResult, BoostVerifier
from .captcha_service import CaptchaChallenge, CaptchaService, CaptchaVerification
from .custom_task_service import CustomTaskService, TaskCompletion
from .engine import GiveawayEngine, get_engine, init_engine
from .expiring_store import ExpiringStore, InMemoryExpiringStore, RedisExpiringStore, create_expiring_store
from .fraud_detection_service import DefaultFraudPolicy, FraudDetectionService, FraudScore, requires_captcha
from .lifecycle_service import LifecycleService
from .participation_service import JoinInput, JoinResult, ParticipationLedger
from .referral_service import ReferralDecision, ReferralTracker
from .story_service import StoryModerationService

__all__ = [
    "set_main_loop",
    "run_coroutine_sync",
    "BoostResult",
    "BoostVerifier",
    "CaptchaChallenge",
    "CaptchaService",
    "CaptchaVerification",
    "CustomTaskService",
    "TaskCompletion",
    "GiveawayEngine",
    "get_engine",
    "init_engine",
    "ExpiringStore",
    "InMemoryExpiringStore",
    "RedisExpiringStore",
    "create_expiring_store",
    "DefaultFraudPolicy",
    "FraudDetectionService",
    "FraudScore",
    "requires_captcha",
    "LifecycleService",
    "JoinInput",
    "JoinResult",
    "ParticipationLedger",
    "ReferralDecision",
    "ReferralTracker",
    "StoryModerationService",
]
