"""Story moderation workflow."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, Optional

from core.constants import CreditSource, StoryDefaults, StoryStatus
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
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import StoryRequest, utcnow
from database.repositories import ParticipationRepository, StoryRequestRepository, TicketCreditRepository
from services.lifecycle_service import LifecycleService
from services.metrics import TICKETS_CREDITED

logger = get_logger(__name__)


class StoryModerationService:
    """PENDING -> APPROVED | REJECTED; a REJECTED request may be replaced."""

    def __init__(self, pool: OptimizedSQLitePool, lifecycle: LifecycleService):
        self.pool = pool
        self.lifecycle = lifecycle

    async def submit(self, giveaway_id: int, user_id: int, now: Optional[datetime] = None) -> StoryRequest:
        """Submit story proof for moderation.

        Raises:
            FeatureDisabledError: Stories are disabled (code STORIES_DISABLED)
            NotParticipatingError: User has no participation
            AlreadyApprovedError: A previous request was approved
            AlreadyPendingError: A request is awaiting moderation
        """
        now = now or utcnow()
        try:
            async with self.pool.transaction() as conn:
                await self.lifecycle.get_giveaway(giveaway_id, conn)
                condition = await self.lifecycle.get_condition(giveaway_id, conn)
                if not condition.stories_enabled:
                    raise FeatureDisabledError("Stories are disabled for this giveaway", code="STORIES_DISABLED")
                participation_id = await ParticipationRepository.get_id(conn, giveaway_id, user_id)
                if participation_id is None:
                    raise NotParticipatingError()

                existing = await StoryRequestRepository.get_by_participation(conn, participation_id)
                if existing is not None:
                    if existing.status is StoryStatus.APPROVED:
                        raise AlreadyApprovedError()
                    if existing.status is StoryStatus.PENDING:
                        raise AlreadyPendingError()
                    await StoryRequestRepository.delete(conn, existing.id)

                request_id = await StoryRequestRepository.insert(conn, participation_id, giveaway_id, user_id, now)
                request = await StoryRequestRepository.get(conn, request_id)
        except sqlite3.IntegrityError as exc:
            # Lost a race with a concurrent submission from the same participant
            raise AlreadyPendingError() from exc

        logger.info(f"Story request {request_id} submitted", extra={"giveaway_id": giveaway_id, "user_id": user_id})
        return request

    async def approve(
        self,
        giveaway_id: int,
        request_id: int,
        reviewer_id: int,
        now: Optional[datetime] = None,
    ) -> StoryRequest:
        """Approve a pending request and credit one ticket.

        The status change and the ticket credit commit together; a second
        approval finds the request no longer PENDING and credits nothing.
        """
        now = now or utcnow()
        async with self.pool.transaction() as conn:
            request = await self._load_for_review(conn, giveaway_id, request_id, reviewer_id)
            if request.status is StoryStatus.APPROVED:
                raise AlreadyApprovedError()
            if request.status is not StoryStatus.PENDING:
                raise InvalidTransitionError(f"Cannot approve a {request.status.value} request")
            if not await StoryRequestRepository.review(conn, request_id, StoryStatus.APPROVED, reviewer_id, now):
                raise AlreadyApprovedError()
            await ParticipationRepository.mark_story_shared(conn, request.participation_id, now)
            await TicketCreditRepository.add(
                conn, request.participation_id, CreditSource.STORY, 1, f"story:{request_id}", now
            )
            request = await StoryRequestRepository.get(conn, request_id)

        TICKETS_CREDITED.labels(source="story").inc()
        logger.info(f"Story request {request_id} approved", extra={"reviewer_id": reviewer_id})
        return request

    async def reject(
        self,
        giveaway_id: int,
        request_id: int,
        reviewer_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StoryRequest:
        if reason is not None and len(reason) > StoryDefaults.MAX_REJECT_REASON_LENGTH:
            raise ValidationError("Reject reason is too long")
        now = now or utcnow()
        async with self.pool.transaction() as conn:
            request = await self._load_for_review(conn, giveaway_id, request_id, reviewer_id)
            if request.status is not StoryStatus.PENDING or not await StoryRequestRepository.review(
                conn, request_id, StoryStatus.REJECTED, reviewer_id, now, reason
            ):
                raise InvalidTransitionError(f"Cannot reject a {request.status.value} request")
            request = await StoryRequestRepository.get(conn, request_id)

        logger.info(f"Story request {request_id} rejected", extra={"reviewer_id": reviewer_id})
        return request

    async def _load_for_review(self, conn, giveaway_id: int, request_id: int, reviewer_id: int) -> StoryRequest:
        giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
        if giveaway.owner_user_id != reviewer_id:
            raise AuthorizationError("Only the giveaway owner can moderate stories")
        request = await StoryRequestRepository.get(conn, request_id)
        if request is None or request.giveaway_id != giveaway_id:
            raise NotFoundError(f"Story request {request_id} not found")
        return request

    async def get_my_request(self, giveaway_id: int, user_id: int) -> Optional[StoryRequest]:
        async with self.pool.connection() as conn:
            participation_id = await ParticipationRepository.get_id(conn, giveaway_id, user_id)
            if participation_id is None:
                raise NotParticipatingError()
            return await StoryRequestRepository.get_by_participation(conn, participation_id)

    async def list_requests(
        self,
        giveaway_id: int,
        owner_user_id: int,
        status: Optional[StoryStatus] = None,
    ) -> Dict[str, Any]:
        """Owner view of moderation requests with per-status counts."""
        async with self.pool.connection() as conn:
            giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
            if giveaway.owner_user_id != owner_user_id:
                raise AuthorizationError("Only the giveaway owner can list story requests")
            requests = await StoryRequestRepository.list_for_giveaway(conn, giveaway_id, status)
            counts = await StoryRequestRepository.count_by_status(conn, giveaway_id)
        return {
            "requests": requests,
            "stats": {status.value.lower(): count for status, count in counts.items()},
        }
