"""Tests for environment-driven configuration."""

import pytest

from config import load_config, validate_config
from core.exceptions import ConfigurationError
from tests.conftest import make_config


def test_defaults(monkeypatch):
    for name in ("ADMIN_IDS", "CAPTCHA_STORE_URL", "CAPTCHA_MAX_ATTEMPTS", "BOT_TOKEN", "ENABLE_BOT"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config.captcha_max_attempts == 5
    assert config.captcha_rate_limit == 10
    assert config.fraud_captcha_threshold == 31
    assert config.max_boosts_per_channel == 10
    assert config.captcha_store_url is None
    assert config.admin_ids == ()
    assert not config.bot_configured


def test_overrides(monkeypatch):
    monkeypatch.setenv("ADMIN_IDS", "1, 2,3")
    monkeypatch.setenv("CAPTCHA_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("CAPTCHA_REQUIRE_PROOF", "false")
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("ENABLE_BOT", "true")

    config = load_config()

    assert config.admin_ids == (1, 2, 3)
    assert config.captcha_max_attempts == 3
    assert config.captcha_require_proof is False
    assert config.bot_configured


def test_invalid_values_are_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        validate_config(make_config(tmp_path, captcha_max_attempts=0))
    with pytest.raises(ConfigurationError):
        validate_config(make_config(tmp_path, fraud_captcha_threshold=101))
