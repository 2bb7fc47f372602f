"""Tests for the giveaway state machine and the scheduler tick."""

import asyncio
import logging
from datetime import timedelta

import pytest

from core.constants import CaptchaMode, GiveawayStatus, ReferralDefaults
from core.exceptions import (
    AuthorizationError,
    GiveawayExpiredError,
    GiveawayNotActiveError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from database.models import utcnow
from services.lifecycle_service import TRANSITIONS, TickResult, can_transition, ensure_joinable, is_terminal
from tests.conftest import OWNER_ID, make_user, utc_in


def test_transition_table_covers_every_status():
    assert set(TRANSITIONS) == set(GiveawayStatus)
    for targets in TRANSITIONS.values():
        assert targets <= set(GiveawayStatus)


def test_terminal_statuses():
    terminal = {status for status in GiveawayStatus if is_terminal(status)}
    assert terminal == {GiveawayStatus.FINISHED, GiveawayStatus.CANCELLED, GiveawayStatus.ERROR}


def test_no_way_back_from_active():
    assert can_transition(GiveawayStatus.ACTIVE, GiveawayStatus.FINISHED)
    assert not can_transition(GiveawayStatus.ACTIVE, GiveawayStatus.DRAFT)
    assert not can_transition(GiveawayStatus.DRAFT, GiveawayStatus.ACTIVE)


@pytest.mark.asyncio
async def test_create_starts_in_draft(engine):
    giveaway_id = await engine.lifecycle.create_giveaway(OWNER_ID, "  Prize  ", captcha_mode=CaptchaMode.ALL)
    giveaway = await engine.lifecycle.get_giveaway(giveaway_id)
    condition = await engine.lifecycle.get_condition(giveaway_id)

    assert giveaway.status is GiveawayStatus.DRAFT
    assert giveaway.title == "Prize"
    assert giveaway.total_participants == 0
    assert condition.captcha_mode is CaptchaMode.ALL
    assert condition.invite_max == 10


@pytest.mark.asyncio
async def test_create_validates_window(engine):
    start = utc_in(hours=2)
    with pytest.raises(ValidationError):
        await engine.lifecycle.create_giveaway(OWNER_ID, "Prize", start_at=start, end_at=start)
    with pytest.raises(ValidationError):
        await engine.lifecycle.create_giveaway(OWNER_ID, " ")


@pytest.mark.asyncio
async def test_unknown_giveaway(engine):
    with pytest.raises(NotFoundError):
        await engine.lifecycle.get_giveaway(999)


@pytest.mark.asyncio
async def test_submit_and_accept(engine):
    giveaway_id = await engine.lifecycle.create_giveaway(OWNER_ID, "Prize")

    with pytest.raises(AuthorizationError):
        await engine.lifecycle.submit(giveaway_id, OWNER_ID + 1)
    with pytest.raises(InvalidTransitionError):
        await engine.lifecycle.accept(giveaway_id)

    submitted = await engine.lifecycle.submit(giveaway_id, OWNER_ID)
    assert submitted.status is GiveawayStatus.PENDING_CONFIRM

    accepted = await engine.lifecycle.accept(giveaway_id)
    assert accepted.status is GiveawayStatus.ACTIVE
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).status is GiveawayStatus.ACTIVE


@pytest.mark.asyncio
async def test_reject_returns_to_draft(engine):
    giveaway_id = await engine.lifecycle.create_giveaway(OWNER_ID, "Prize")
    await engine.lifecycle.submit(giveaway_id, OWNER_ID)
    rejected = await engine.lifecycle.reject(giveaway_id)
    assert rejected.status is GiveawayStatus.DRAFT


@pytest.mark.asyncio
async def test_conditions_freeze_after_confirmation(engine, make_active_giveaway):
    giveaway_id = await engine.lifecycle.create_giveaway(OWNER_ID, "Prize")
    updated = await engine.lifecycle.update_condition(
        giveaway_id, OWNER_ID, invite_enabled=True, required_channel_ids=[5, 3, 5]
    )
    assert updated.invite_enabled
    assert updated.required_channel_ids == (3, 5)

    with pytest.raises(ValidationError):
        await engine.lifecycle.update_condition(giveaway_id, OWNER_ID, color="red")

    active_id = await make_active_giveaway()
    with pytest.raises(InvalidTransitionError):
        await engine.lifecycle.update_condition(active_id, OWNER_ID, invite_enabled=True)


@pytest.mark.asyncio
async def test_cancel_rules(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway()

    with pytest.raises(AuthorizationError):
        await engine.lifecycle.cancel(giveaway_id, owner_user_id=OWNER_ID + 1)

    cancelled = await engine.lifecycle.cancel(giveaway_id, owner_user_id=OWNER_ID)
    assert cancelled.status is GiveawayStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        await engine.lifecycle.cancel(giveaway_id)


@pytest.mark.asyncio
async def test_mark_error_is_terminal(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway()
    await engine.lifecycle.mark_error(giveaway_id)
    with pytest.raises(InvalidTransitionError):
        await engine.lifecycle.finish(giveaway_id)


@pytest.mark.asyncio
async def test_tick_schedules_and_closes(engine):
    """Test a future giveaway is scheduled, activated, then closed without participants."""
    now = utcnow()
    giveaway_id = await engine.lifecycle.create_giveaway(
        OWNER_ID, "Prize", start_at=now + timedelta(hours=1), end_at=now + timedelta(hours=2)
    )
    await engine.lifecycle.submit(giveaway_id, OWNER_ID)
    scheduled = await engine.lifecycle.accept(giveaway_id, now=now)
    assert scheduled.status is GiveawayStatus.SCHEDULED

    assert (await engine.lifecycle.tick(now + timedelta(minutes=30))).activated == []

    result = await engine.lifecycle.tick(now + timedelta(hours=1))
    assert result.activated == [giveaway_id]

    result = await engine.lifecycle.tick(now + timedelta(hours=2))
    assert result.cancelled == [giveaway_id]
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).status is GiveawayStatus.CANCELLED


@pytest.mark.asyncio
async def test_tick_finishes_giveaway_with_participants(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway(end_at=utc_in(hours=1))
    await engine.ledger.join(giveaway_id, make_user(1))

    result = await engine.lifecycle.tick(utc_in(hours=2))

    assert result.finished == [giveaway_id]
    assert (await engine.lifecycle.get_giveaway(giveaway_id)).status is GiveawayStatus.FINISHED
    # A second tick has nothing left to do
    assert (await engine.lifecycle.tick(utc_in(hours=3))).finished == []


@pytest.mark.asyncio
async def test_ensure_joinable(engine, make_active_giveaway):
    giveaway_id = await make_active_giveaway(end_at=utc_in(hours=1))
    giveaway = await engine.lifecycle.get_giveaway(giveaway_id)

    ensure_joinable(giveaway)
    with pytest.raises(GiveawayExpiredError):
        ensure_joinable(giveaway, utc_in(hours=1))

    draft = await engine.lifecycle.get_giveaway(await engine.lifecycle.create_giveaway(OWNER_ID, "Other"))
    with pytest.raises(GiveawayNotActiveError):
        ensure_joinable(draft)


@pytest.mark.asyncio
async def test_scheduler_keeps_running_after_tick_error(engine, monkeypatch, caplog):
    caplog.set_level(logging.ERROR)
    calls = []

    async def flaky_tick(now=None):
        calls.append(now)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return TickResult()

    monkeypatch.setattr(engine.lifecycle, "tick", flaky_tick)

    await engine.lifecycle.start(interval_seconds=0)
    for _ in range(200):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await engine.lifecycle.stop()

    assert len(calls) >= 3
    assert "Lifecycle tick failed: database is locked" in caplog.text


@pytest.mark.asyncio
async def test_invite_max_is_bounded(engine):
    with pytest.raises(ValidationError):
        await engine.lifecycle.create_giveaway(OWNER_ID, "Prize", invite_max=ReferralDefaults.MAX_INVITE_MAX + 1)

    giveaway_id = await engine.lifecycle.create_giveaway(
        OWNER_ID, "Prize", invite_max=ReferralDefaults.MAX_INVITE_MAX
    )
    with pytest.raises(ValidationError):
        await engine.lifecycle.update_condition(giveaway_id, OWNER_ID, invite_max=-1)
    with pytest.raises(ValidationError):
        await engine.lifecycle.update_condition(
            giveaway_id, OWNER_ID, invite_max=ReferralDefaults.MAX_INVITE_MAX + 1
        )
    condition = await engine.lifecycle.get_condition(giveaway_id)
    assert condition.invite_max == ReferralDefaults.MAX_INVITE_MAX
