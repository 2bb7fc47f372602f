"""Pytest configuration and fixtures."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from config import Config
from database import OptimizedSQLitePool, run_migrations
from database.models import UserContext
from services.engine import GiveawayEngine
from services.expiring_store import InMemoryExpiringStore
from services.fraud_detection_service import FraudScore

OWNER_ID = 1000


class FakeTimer:
    """Manually advanced clock for the expiring store."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSubscriptionChecker:
    def __init__(self) -> None:
        self.members: set[tuple[int, int]] = set()
        self.calls: list[tuple[int, int]] = []
        self.fail = False

    async def is_member(self, user_id: int, channel_id: int) -> bool:
        self.calls.append((user_id, channel_id))
        if self.fail:
            raise RuntimeError("Telegram is unavailable")
        return (user_id, channel_id) in self.members


class FakeBoostChecker:
    def __init__(self) -> None:
        self.counts: dict[tuple[int, int], int] = {}
        self.fail = False

    async def get_boost_count(self, user_id: int, channel_id: int) -> int:
        if self.fail:
            raise RuntimeError("Telegram is unavailable")
        return self.counts.get((user_id, channel_id), 0)


class FixedFraudPolicy:
    """Returns the same score for everyone; tests change ``value`` as needed."""

    def __init__(self, value: int = 0) -> None:
        self.value = value

    def score(self, user, giveaway_id, activity, now) -> FraudScore:
        return FraudScore(score=self.value, is_suspicious=self.value >= 31, requires_moderation=self.value >= 61)


def make_config(tmp_path, **overrides) -> Config:
    return Config(
        bot_token="",
        enable_bot=False,
        environment="test",
        debug=False,
        web_host="127.0.0.1",
        web_port=0,
        log_folder=str(tmp_path / "logs"),
        database_path=str(tmp_path / "test.sqlite"),
        db_pool_size=4,
        db_busy_timeout=5000,
        **overrides,
    )


def make_user(user_id: int, **kwargs) -> UserContext:
    return UserContext(
        user_id=user_id,
        username=kwargs.get("username", f"member_{user_id}"),
        first_name=kwargs.get("first_name", "Alex"),
        last_name=kwargs.get("last_name"),
        account_created_at=kwargs.get("account_created_at", datetime(2020, 1, 1, tzinfo=timezone.utc)),
    )


def solve(question: str) -> int:
    a, op, b = re.match(r"^(\d+) ([+-]) (\d+) = \?$", question).groups()
    return int(a) + int(b) if op == "+" else int(a) - int(b)


def utc_in(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
async def pool(config):
    pool = OptimizedSQLitePool(config.database_path, pool_size=config.db_pool_size, busy_timeout_ms=config.db_busy_timeout)
    await pool.init_pool()
    await run_migrations(pool)
    yield pool
    await pool.close()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def store(timer):
    return InMemoryExpiringStore(timer=timer)


@pytest.fixture
def subscriptions():
    return FakeSubscriptionChecker()


@pytest.fixture
def boost_checker():
    return FakeBoostChecker()


@pytest.fixture
def fraud_policy():
    return FixedFraudPolicy(0)


@pytest.fixture
def engine(config, pool, store, subscriptions, boost_checker, fraud_policy):
    return GiveawayEngine.build(
        config,
        pool,
        store,
        subscriptions=subscriptions,
        boost_checker=boost_checker,
        fraud_policy=fraud_policy,
    )


@pytest.fixture
def make_active_giveaway(engine):
    async def factory(owner_user_id: int = OWNER_ID, title: str = "Weekly prize", **conditions) -> int:
        giveaway_id = await engine.lifecycle.create_giveaway(owner_user_id, title, **conditions)
        await engine.lifecycle.submit(giveaway_id, owner_user_id)
        await engine.lifecycle.accept(giveaway_id)
        return giveaway_id
    return factory
