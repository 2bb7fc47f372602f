"""Tests for story moderation."""

import asyncio

import pytest

from core.constants import StoryStatus
from core.exceptions import (
    AlreadyApprovedError,
    AlreadyPendingError,
    AuthorizationError,
    FeatureDisabledError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipatingError,
    ValidationError,
)
from tests.conftest import OWNER_ID, make_user

USER = 7


@pytest.fixture
def story_giveaway(engine, make_active_giveaway):
    async def factory(stories_enabled=True):
        giveaway_id = await make_active_giveaway(stories_enabled=stories_enabled)
        await engine.ledger.join(giveaway_id, make_user(USER))
        return giveaway_id
    return factory


@pytest.mark.asyncio
async def test_stories_disabled(engine, story_giveaway):
    giveaway_id = await story_giveaway(stories_enabled=False)
    with pytest.raises(FeatureDisabledError) as exc_info:
        await engine.stories.submit(giveaway_id, USER)
    assert exc_info.value.code == "STORIES_DISABLED"


@pytest.mark.asyncio
async def test_submit_requires_participation(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    with pytest.raises(NotParticipatingError):
        await engine.stories.submit(giveaway_id, USER + 1)


@pytest.mark.asyncio
async def test_approve_credits_once(engine, story_giveaway):
    """Test approval adds exactly one ticket and cannot be repeated."""
    giveaway_id = await story_giveaway()
    request = await engine.stories.submit(giveaway_id, USER)
    assert request.status is StoryStatus.PENDING

    with pytest.raises(AlreadyPendingError):
        await engine.stories.submit(giveaway_id, USER)
    with pytest.raises(AuthorizationError):
        await engine.stories.approve(giveaway_id, request.id, reviewer_id=USER)

    approved = await engine.stories.approve(giveaway_id, request.id, reviewer_id=OWNER_ID)
    assert approved.status is StoryStatus.APPROVED
    assert approved.reviewed_by == OWNER_ID

    with pytest.raises(AlreadyApprovedError):
        await engine.stories.approve(giveaway_id, request.id, reviewer_id=OWNER_ID)
    with pytest.raises(AlreadyApprovedError):
        await engine.stories.submit(giveaway_id, USER)
    with pytest.raises(InvalidTransitionError):
        await engine.stories.reject(giveaway_id, request.id, reviewer_id=OWNER_ID)

    participation = await engine.ledger.get_participation(giveaway_id, USER)
    assert participation.tickets_extra == 1
    assert participation.stories_shared
    assert participation.stories_shared_at is not None


@pytest.mark.asyncio
async def test_concurrent_approvals(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    request = await engine.stories.submit(giveaway_id, USER)

    results = await asyncio.gather(
        engine.stories.approve(giveaway_id, request.id, reviewer_id=OWNER_ID),
        engine.stories.approve(giveaway_id, request.id, reviewer_id=OWNER_ID),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadyApprovedError) for r in results) == 1
    assert (await engine.ledger.get_participation(giveaway_id, USER)).tickets_extra == 1


@pytest.mark.asyncio
async def test_resubmit_after_reject(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    first = await engine.stories.submit(giveaway_id, USER)

    rejected = await engine.stories.reject(giveaway_id, first.id, reviewer_id=OWNER_ID, reason="Blurry")
    assert rejected.status is StoryStatus.REJECTED
    assert rejected.reject_reason == "Blurry"

    with pytest.raises(InvalidTransitionError):
        await engine.stories.approve(giveaway_id, first.id, reviewer_id=OWNER_ID)

    second = await engine.stories.submit(giveaway_id, USER)
    assert second.status is StoryStatus.PENDING
    assert second.id != first.id
    assert (await engine.stories.get_my_request(giveaway_id, USER)).id == second.id


@pytest.mark.asyncio
async def test_reject_reason_length(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    request = await engine.stories.submit(giveaway_id, USER)
    with pytest.raises(ValidationError):
        await engine.stories.reject(giveaway_id, request.id, reviewer_id=OWNER_ID, reason="x" * 501)


@pytest.mark.asyncio
async def test_request_from_other_giveaway(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    other_id = await story_giveaway()
    request = await engine.stories.submit(giveaway_id, USER)

    with pytest.raises(NotFoundError):
        await engine.stories.approve(other_id, request.id, reviewer_id=OWNER_ID)


@pytest.mark.asyncio
async def test_list_requests_with_stats(engine, story_giveaway):
    giveaway_id = await story_giveaway()
    await engine.ledger.join(giveaway_id, make_user(USER + 1))
    first = await engine.stories.submit(giveaway_id, USER)
    await engine.stories.submit(giveaway_id, USER + 1)
    await engine.stories.approve(giveaway_id, first.id, reviewer_id=OWNER_ID)

    listing = await engine.stories.list_requests(giveaway_id, OWNER_ID, status=StoryStatus.PENDING)

    assert [r.user_id for r in listing["requests"]] == [USER + 1]
    assert listing["stats"] == {"pending": 1, "approved": 1, "rejected": 0}

    with pytest.raises(AuthorizationError):
        await engine.stories.list_requests(giveaway_id, USER)
