"""Application configuration module.

Reads settings from environment variables with defaults matching the
documented giveaway rules (captcha limits, fraud thresholds, boost caps).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from core.constants import (
    BoostDefaults,
    CaptchaDefaults,
    DatabaseDefaults,
    FraudDefaults,
    LifecycleDefaults,
    ReferralDefaults,
)
from core.exceptions import ConfigurationError

load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.getenv(name, default)


def _parse_int_list(value: str) -> tuple[int, ...]:
    """Parse comma-separated integers."""
    if not value:
        return ()
    return tuple(int(id_str) for id_str in value.split(",") if id_str.strip())


@dataclass(frozen=True)
class Config:
    bot_token: str
    enable_bot: bool
    environment: str
    debug: bool
    web_host: str
    web_port: int
    log_folder: str
    database_path: str
    db_pool_size: int
    db_busy_timeout: int
    admin_ids: tuple[int, ...] = ()

    # Captcha
    captcha_ttl_seconds: int = CaptchaDefaults.TTL_SECONDS
    captcha_max_attempts: int = CaptchaDefaults.MAX_ATTEMPTS
    captcha_rate_limit: int = CaptchaDefaults.RATE_LIMIT
    captcha_rate_window_seconds: int = CaptchaDefaults.RATE_WINDOW_SECONDS
    captcha_sweep_interval_seconds: int = CaptchaDefaults.SWEEP_INTERVAL_SECONDS
    captcha_pass_ttl_seconds: int = CaptchaDefaults.PASS_TTL_SECONDS
    captcha_require_proof: bool = True
    captcha_store_url: Optional[str] = None
    store_max_entries: int = CaptchaDefaults.STORE_MAX_ENTRIES

    # Fraud
    fraud_captcha_threshold: int = FraudDefaults.CAPTCHA_THRESHOLD
    fraud_moderation_threshold: int = FraudDefaults.MODERATION_THRESHOLD

    # Tickets
    max_boosts_per_channel: int = BoostDefaults.MAX_BOOSTS_PER_CHANNEL
    default_invite_max: int = ReferralDefaults.DEFAULT_INVITE_MAX

    # Scheduler
    lifecycle_interval_seconds: int = LifecycleDefaults.TICK_INTERVAL_SECONDS

    @property
    def bot_configured(self) -> bool:
        return bool(self.enable_bot and self.bot_token and self.bot_token != "your_bot_token_here")


def validate_config(config: Config) -> None:
    """Reject values that would break runtime invariants.

    Raises:
        ConfigurationError: If any setting is out of range
    """
    positive = {
        "DB_POOL_SIZE": config.db_pool_size,
        "CAPTCHA_TTL_SECONDS": config.captcha_ttl_seconds,
        "CAPTCHA_MAX_ATTEMPTS": config.captcha_max_attempts,
        "CAPTCHA_RATE_LIMIT": config.captcha_rate_limit,
        "CAPTCHA_RATE_WINDOW_SECONDS": config.captcha_rate_window_seconds,
        "CAPTCHA_SWEEP_INTERVAL_SECONDS": config.captcha_sweep_interval_seconds,
        "MAX_BOOSTS_PER_CHANNEL": config.max_boosts_per_channel,
        "LIFECYCLE_INTERVAL_SECONDS": config.lifecycle_interval_seconds,
    }
    for name, value in positive.items():
        if value <= 0:
            raise ConfigurationError(f"{name} must be positive, got {value}")
    if not 0 <= config.fraud_captcha_threshold <= FraudDefaults.MAX_SCORE:
        raise ConfigurationError("FRAUD_CAPTCHA_THRESHOLD must be within 0..100")
    if config.default_invite_max < 0:
        raise ConfigurationError("DEFAULT_INVITE_MAX must not be negative")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Returns:
        Config: Application configuration with validated values
    """
    config = Config(
        bot_token=_get_str("BOT_TOKEN", "your_bot_token_here"),
        enable_bot=_get_bool("ENABLE_BOT", True),
        environment=_get_str("ENVIRONMENT", "development"),
        debug=_get_bool("DEBUG", False),
        web_host=_get_str("WEB_HOST", "0.0.0.0"),
        web_port=_get_int("WEB_PORT", 5000),
        log_folder=_get_str("LOG_FOLDER", "logs"),
        database_path=_get_str("DATABASE_PATH", "data/giveaways.sqlite"),
        db_pool_size=_get_int("DB_POOL_SIZE", DatabaseDefaults.POOL_SIZE),
        db_busy_timeout=_get_int("DB_BUSY_TIMEOUT", DatabaseDefaults.BUSY_TIMEOUT_MS),
        admin_ids=_parse_int_list(_get_str("ADMIN_IDS", "")),
        captcha_ttl_seconds=_get_int("CAPTCHA_TTL_SECONDS", CaptchaDefaults.TTL_SECONDS),
        captcha_max_attempts=_get_int("CAPTCHA_MAX_ATTEMPTS", CaptchaDefaults.MAX_ATTEMPTS),
        captcha_rate_limit=_get_int("CAPTCHA_RATE_LIMIT", CaptchaDefaults.RATE_LIMIT),
        captcha_rate_window_seconds=_get_int(
            "CAPTCHA_RATE_WINDOW_SECONDS", CaptchaDefaults.RATE_WINDOW_SECONDS
        ),
        captcha_sweep_interval_seconds=_get_int(
            "CAPTCHA_SWEEP_INTERVAL_SECONDS", CaptchaDefaults.SWEEP_INTERVAL_SECONDS
        ),
        captcha_pass_ttl_seconds=_get_int("CAPTCHA_PASS_TTL_SECONDS", CaptchaDefaults.PASS_TTL_SECONDS),
        captcha_require_proof=_get_bool("CAPTCHA_REQUIRE_PROOF", True),
        captcha_store_url=_get_str("CAPTCHA_STORE_URL") or None,
        store_max_entries=_get_int("STORE_MAX_ENTRIES", CaptchaDefaults.STORE_MAX_ENTRIES),
        fraud_captcha_threshold=_get_int("FRAUD_CAPTCHA_THRESHOLD", FraudDefaults.CAPTCHA_THRESHOLD),
        fraud_moderation_threshold=_get_int(
            "FRAUD_MODERATION_THRESHOLD", FraudDefaults.MODERATION_THRESHOLD
        ),
        max_boosts_per_channel=_get_int("MAX_BOOSTS_PER_CHANNEL", BoostDefaults.MAX_BOOSTS_PER_CHANNEL),
        default_invite_max=_get_int("DEFAULT_INVITE_MAX", ReferralDefaults.DEFAULT_INVITE_MAX),
        lifecycle_interval_seconds=_get_int(
            "LIFECYCLE_INTERVAL_SECONDS", LifecycleDefaults.TICK_INTERVAL_SECONDS
        ),
    )
    validate_config(config)
    return config
