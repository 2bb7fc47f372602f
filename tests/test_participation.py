"""Tests for the participation ledger join flow."""

import asyncio

import pytest

from core.constants import CaptchaMode
from core.exceptions import (
    AlreadyJoinedError,
    CaptchaRequiredError,
    DatabaseError,
    GiveawayExpiredError,
    GiveawayNotActiveError,
    NotFoundError,
    NotParticipatingError,
    SubscriptionRequiredError,
)
from database.repositories import ParticipationRepository
from services.participation_service import JoinInput, JoinResult
from tests.conftest import OWNER_ID, make_user, solve, utc_in

CHANNEL = -100500


async def pass_captcha(engine, user_id):
    challenge = await engine.captcha.generate(user_id)
    result = await engine.captcha.verify(challenge.token, solve(challenge.question), user_id=user_id)
    assert result.ok


@pytest.mark.asyncio
async def test_join_records_participation(engine, make_active_giveaway):
    """Test a plain join creates one base ticket and bumps the counter."""
    giveaway_id = await make_active_giveaway()

    result = await engine.ledger.join(giveaway_id, make_user(1), JoinInput(source_tag="channel_post"))

    assert result.tickets_base == 1
    assert result.tickets_extra == 0
    assert result.fraud_score == 0

    participation = await engine.ledger.get_participation(giveaway_id, 1)
    assert participation.id == result.participation_id
    assert participation.source_tag == "channel_post"
    assert participation.total_tickets == 1
    assert participation.conditions_snapshot.captcha_mode is CaptchaMode.OFF
    assert not participation.conditions_snapshot.captcha_required
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).total_participants == 1


@pytest.mark.asyncio
async def test_join_twice(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway()
    await engine.ledger.join(giveaway_id, make_user(1))

    with pytest.raises(AlreadyJoinedError):
        await engine.ledger.join(giveaway_id, make_user(1))
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).total_participants == 1


@pytest.mark.asyncio
async def test_join_unknown_giveaway(engine):
    with pytest.raises(NotFoundError):
        await engine.ledger.join(404, make_user(1))


@pytest.mark.asyncio
async def test_join_requires_active_giveaway(engine, subscriptions):
    """Test lifecycle is checked before subscriptions."""
    giveaway_id = await engine.lifecycle.create_giveaway(OWNER_ID, "Prize", required_channel_ids=(CHANNEL,))
    with pytest.raises(GiveawayNotActiveError):
        await engine.ledger.join(giveaway_id, make_user(1))
    assert subscriptions.calls == []


@pytest.mark.asyncio
async def test_join_after_end(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway(end_at=utc_in(hours=1))
    with pytest.raises(GiveawayExpiredError):
        await engine.ledger.join(giveaway_id, make_user(1), now=utc_in(hours=2))


@pytest.mark.asyncio
async def test_existing_participation_wins_over_subscription(engine, make_active_giveaway, subscriptions):
    giveaway_id = await make_active_giveaway(required_channel_ids=(CHANNEL,))
    subscriptions.members.add((1, CHANNEL))
    await engine.ledger.join(giveaway_id, make_user(1))

    subscriptions.members.clear()
    with pytest.raises(AlreadyJoinedError):
        await engine.ledger.join(giveaway_id, make_user(1))


@pytest.mark.asyncio
async def test_subscription_required(engine, make_active_giveaway, subscriptions):
    """Test missing memberships are reported before the captcha gate."""
    giveaway_id = await make_active_giveaway(
        required_channel_ids=(CHANNEL, CHANNEL - 1), captcha_mode=CaptchaMode.ALL
    )
    subscriptions.members.add((1, CHANNEL))

    with pytest.raises(SubscriptionRequiredError) as exc_info:
        await engine.ledger.join(giveaway_id, make_user(1))
    assert exc_info.value.channel_ids == (CHANNEL - 1,)

    with pytest.raises(NotParticipatingError):
        await engine.ledger.get_participation(giveaway_id, 1)


@pytest.mark.asyncio
async def test_subscription_check_fails_closed(engine, make_active_giveaway, subscriptions):
    giveaway_id = await make_active_giveaway(required_channel_ids=(CHANNEL,))
    subscriptions.members.add((1, CHANNEL))
    subscriptions.fail = True

    with pytest.raises(SubscriptionRequiredError):
        await engine.ledger.join(giveaway_id, make_user(1))


@pytest.mark.asyncio
async def test_captcha_all_requires_verified_pass(engine, make_active_giveaway):
    """Test a self-declared captcha pass is not enough without verification."""
    giveaway_id = await make_active_giveaway(captcha_mode=CaptchaMode.ALL)

    with pytest.raises(CaptchaRequiredError):
        await engine.ledger.join(giveaway_id, make_user(1))
    with pytest.raises(CaptchaRequiredError):
        await engine.ledger.join(giveaway_id, make_user(1), JoinInput(captcha_passed=True))

    await pass_captcha(engine, 1)
    await engine.ledger.join(giveaway_id, make_user(1), JoinInput(captcha_passed=True))

    participation = await engine.ledger.get_participation(giveaway_id, 1)
    assert participation.conditions_snapshot.captcha_required
    assert participation.conditions_snapshot.captcha_passed
    # The pass marker is spent by the join
    assert not await engine.captcha.has_passed(1)


@pytest.mark.asyncio
async def test_one_captcha_solve_admits_one_join(engine, make_active_giveaway):
    first = await make_active_giveaway(captcha_mode=CaptchaMode.ALL)
    second = await make_active_giveaway(captcha_mode=CaptchaMode.ALL)
    await pass_captcha(engine, 7)

    results = await asyncio.gather(
        engine.ledger.join(first, make_user(7), JoinInput(captcha_passed=True)),
        engine.ledger.join(second, make_user(7), JoinInput(captcha_passed=True)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, JoinResult) for r in results) == 1
    assert sum(isinstance(r, CaptchaRequiredError) for r in results) == 1


@pytest.mark.asyncio
async def test_failed_write_gives_captcha_pass_back(engine, make_active_giveaway, monkeypatch):
    giveaway_id = await make_active_giveaway(captcha_mode=CaptchaMode.ALL)
    await pass_captcha(engine, 1)

    async def broken_insert(*args, **kwargs):
        raise DatabaseError("disk I/O error")

    with monkeypatch.context() as patch:
        patch.setattr(ParticipationRepository, "insert", broken_insert)
        with pytest.raises(DatabaseError):
            await engine.ledger.join(giveaway_id, make_user(1), JoinInput(captcha_passed=True))

    assert await engine.captcha.has_passed(1)
    await engine.ledger.join(giveaway_id, make_user(1), JoinInput(captcha_passed=True))
    assert not await engine.captcha.has_passed(1)


@pytest.mark.asyncio
async def test_suspicious_only_mode(engine, make_active_giveaway, fraud_policy):
    giveaway_id = await make_active_giveaway(captcha_mode=CaptchaMode.SUSPICIOUS_ONLY)

    fraud_policy.value = 10
    await engine.ledger.join(giveaway_id, make_user(1))

    fraud_policy.value = 50
    with pytest.raises(CaptchaRequiredError):
        await engine.ledger.join(giveaway_id, make_user(2))

    await pass_captcha(engine, 2)
    result = await engine.ledger.join(giveaway_id, make_user(2), JoinInput(captcha_passed=True))
    assert result.fraud_score == 50


@pytest.mark.asyncio
async def test_captcha_off_ignores_score(engine, make_active_giveaway, fraud_policy):
    giveaway_id = await make_active_giveaway(captcha_mode=CaptchaMode.OFF)
    fraud_policy.value = 100
    result = await engine.ledger.join(giveaway_id, make_user(1))
    assert result.fraud_score == 100


@pytest.mark.asyncio
async def test_concurrent_joins_for_one_user(engine, make_active_giveaway):
    """Test racing joins produce exactly one participation and no counter drift."""
    giveaway_id = await make_active_giveaway()

    results = await asyncio.gather(
        *(engine.ledger.join(giveaway_id, make_user(1)) for _ in range(10)),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(f, AlreadyJoinedError) for f in failures)
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).total_participants == 1


@pytest.mark.asyncio
async def test_concurrent_joins_for_many_users(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway()

    await asyncio.gather(*(engine.ledger.join(giveaway_id, make_user(user_id)) for user_id in range(1, 21)))

    assert (await engine.lifecycle.get_giveaway(giveaway_id)).total_participants == 20


@pytest.mark.asyncio
async def test_check_subscriptions_lists_missing_channels(engine, make_active_giveaway, subscriptions):
    other = CHANNEL - 1
    giveaway_id = await make_active_giveaway(required_channel_ids=(CHANNEL, other))
    subscriptions.members.add((1, CHANNEL))

    status = await engine.ledger.check_subscriptions(giveaway_id, 1)
    assert not status.subscribed
    assert dict(status.channels) == {CHANNEL: True, other: False}

    subscriptions.members.add((1, other))
    assert (await engine.ledger.check_subscriptions(giveaway_id, 1)).subscribed
    # Preview only; nothing is recorded
    with pytest.raises(NotParticipatingError):
        await engine.ledger.get_participation(giveaway_id, 1)


@pytest.mark.asyncio
async def test_check_subscriptions_without_requirements(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway()
    status = await engine.ledger.check_subscriptions(giveaway_id, 1)
    assert status.subscribed
    assert status.channels == ()


@pytest.mark.asyncio
async def test_check_subscriptions_unknown_giveaway(engine):
    with pytest.raises(NotFoundError):
        await engine.ledger.check_subscriptions(424242, 1)
