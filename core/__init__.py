"""Core application components."""

from core.logger import setup_logger, get_logger
from core.constants import (
    BoostDefaults,
    CaptchaDefaults,
    CaptchaMode,
    CreditSource,
    DatabaseDefaults,
    FraudDefaults,
    GiveawayStatus,
    LifecycleDefaults,
    ParticipationStatus,
    ReferralDefaults,
    StoryStatus,
    TaskDefaults,
)
from core.exceptions import (
    ApplicationError,
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    PolicyError,
    RateLimitError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    # Constants
    'BoostDefaults',
    'CaptchaDefaults',
    'CaptchaMode',
    'CreditSource',
    'DatabaseDefaults',
    'FraudDefaults',
    'GiveawayStatus',
    'LifecycleDefaults',
    'ParticipationStatus',
    'ReferralDefaults',
    'StoryStatus',
    'TaskDefaults',
    # Exceptions
    'ApplicationError',
    'AuthorizationError',
    'ConfigurationError',
    'ConflictError',
    'DatabaseError',
    'NotFoundError',
    'PolicyError',
    'RateLimitError',
    'UpstreamError',
    'ValidationError',
]
