"""Application-wide exception classes.

Every error carries a stable machine-readable ``code`` which the HTTP layer
returns to clients unchanged.
"""

from __future__ import annotations

from typing import Optional


class ApplicationError(Exception):
    """Base exception for all application errors."""
    code = "INTERNAL_ERROR"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class ConfigurationError(ApplicationError):
    """Configuration is invalid."""
    code = "CONFIGURATION_ERROR"


class DatabaseError(ApplicationError):
    """Database operation failed."""
    code = "DATABASE_ERROR"


class ConnectionPoolError(DatabaseError):
    """Database connection pool is not usable."""
    code = "CONNECTION_POOL_ERROR"


class ValidationError(ApplicationError):
    """Input is malformed."""
    code = "VALIDATION_ERROR"


class NotFoundError(ApplicationError):
    """Referenced entity does not exist."""
    code = "NOT_FOUND"


class ConflictError(ApplicationError):
    """Operation conflicts with the current state."""
    code = "CONFLICT"


class AlreadyJoinedError(ConflictError):
    """User already participates in this giveaway."""
    code = "ALREADY_JOINED"


class AlreadyApprovedError(ConflictError):
    """Story request is already approved."""
    code = "ALREADY_APPROVED"


class AlreadyPendingError(ConflictError):
    """Story request is already awaiting moderation."""
    code = "ALREADY_PENDING"


class InvalidTransitionError(ConflictError):
    """Status transition is not allowed."""
    code = "INVALID_TRANSITION"


class PolicyError(ApplicationError):
    """Operation is blocked by a giveaway rule."""
    code = "POLICY_VIOLATION"


class GiveawayNotActiveError(PolicyError):
    """Giveaway is not accepting participants."""
    code = "GIVEAWAY_NOT_ACTIVE"


class GiveawayExpiredError(PolicyError):
    """Giveaway has already ended."""
    code = "GIVEAWAY_EXPIRED"


class SubscriptionRequiredError(PolicyError):
    """Subscription to the required channels is missing."""
    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, message: Optional[str] = None, channel_ids: tuple[int, ...] = ()) -> None:
        super().__init__(message)
        self.channel_ids = channel_ids


class CaptchaRequiredError(PolicyError):
    """A solved captcha is required to join."""
    code = "CAPTCHA_REQUIRED"


class ChannelNotConfiguredError(PolicyError):
    """Channel is not configured for boosts in this giveaway."""
    code = "CHANNEL_NOT_CONFIGURED"


class FeatureDisabledError(PolicyError):
    """Feature is disabled for this giveaway."""
    code = "FEATURE_DISABLED"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class NotParticipatingError(PolicyError):
    """User does not participate in this giveaway."""
    code = "NOT_PARTICIPATING"


class RateLimitError(ApplicationError):
    """Rate limit exceeded."""
    code = "TOO_MANY_REQUESTS"

    def __init__(self, message: Optional[str] = None, retry_after_seconds: int = 0) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthorizationError(ApplicationError):
    """Caller is not allowed to perform this action."""
    code = "FORBIDDEN"


class UpstreamError(ApplicationError):
    """External collaborator failed."""
    code = "UPSTREAM_FAILURE"


class AuthenticationError(ApplicationError):
    """Caller identity is missing or malformed."""
    code = "UNAUTHORIZED"
