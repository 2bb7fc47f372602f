"""Application-wide constants and status enums."""

from __future__ import annotations

from enum import Enum


class GiveawayStatus(str, Enum):
    """Giveaway lifecycle status."""
    DRAFT = "DRAFT"
    PENDING_CONFIRM = "PENDING_CONFIRM"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"


class CaptchaMode(str, Enum):
    """When a join must be backed by a solved captcha."""
    OFF = "OFF"
    SUSPICIOUS_ONLY = "SUSPICIOUS_ONLY"
    ALL = "ALL"


class ParticipationStatus(str, Enum):
    """Participation record status."""
    JOINED = "JOINED"


class StoryStatus(str, Enum):
    """Story moderation request status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CreditSource(str, Enum):
    """Origin of an extra ticket credit."""
    REFERRAL = "referral"
    BOOST = "boost"
    STORY = "story"
    TASK = "task"


class DatabaseDefaults:
    """Database connection defaults."""
    POOL_SIZE = 10
    BUSY_TIMEOUT_MS = 5000


class CaptchaDefaults:
    """Captcha challenge limits."""
    TOKEN_BYTES = 32
    TTL_SECONDS = 300
    MAX_ATTEMPTS = 5
    RATE_LIMIT = 10
    RATE_WINDOW_SECONDS = 600
    SWEEP_INTERVAL_SECONDS = 300
    PASS_TTL_SECONDS = 300
    OPERAND_MIN = 1
    OPERAND_MAX = 10
    STORE_MAX_ENTRIES = 100_000


class FraudDefaults:
    """Default fraud policy weights and thresholds."""
    CAPTCHA_THRESHOLD = 31
    MODERATION_THRESHOLD = 61
    MAX_SCORE = 100
    YOUNG_ACCOUNT_DAYS = 30
    YOUNG_ACCOUNT_POINTS = 20
    NO_USERNAME_POINTS = 15
    DIGIT_RATIO = 0.3
    DIGIT_RATIO_POINTS = 5
    SPECIAL_RATIO = 0.2
    SPECIAL_RATIO_POINTS = 5
    SUSPICIOUS_NAME_POINTS = 5
    FAST_COMPLETION_MS = 5000
    FAST_COMPLETION_POINTS = 10
    BURST_PARTICIPATIONS = 10
    BURST_WINDOW_HOURS = 24
    BURST_POINTS = 20


class BoostDefaults:
    """Boost ticket limits."""
    MAX_BOOSTS_PER_CHANNEL = 10


class ReferralDefaults:
    """Referral ticket limits."""
    DEFAULT_INVITE_MAX = 10
    MAX_INVITE_MAX = 10_000


class TaskDefaults:
    """Custom task limits."""
    MIN_BONUS_TICKETS = 0
    MAX_BONUS_TICKETS = 100
    DEFAULT_BONUS_TICKETS = 1
    MAX_TITLE_LENGTH = 200
    MAX_URL_LENGTH = 2048


class LifecycleDefaults:
    """Lifecycle scheduler defaults."""
    TICK_INTERVAL_SECONDS = 60


class StoryDefaults:
    """Story moderation limits."""
    MAX_REJECT_REASON_LENGTH = 500


class SnapshotVersions:
    """Current schema version of persisted JSON structures."""
    CONDITIONS = 1
    BOOSTS = 1
