"""Giveaway lifecycle state machine and scheduler."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

import aiosqlite

from core.constants import CaptchaMode, GiveawayStatus, LifecycleDefaults, ReferralDefaults
from core.exceptions import (
    AuthorizationError,
    GiveawayExpiredError,
    GiveawayNotActiveError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import Giveaway, GiveawayCondition, utcnow
from database.repositories import GiveawayRepository

logger = get_logger(__name__)

# Every status must appear here; terminal statuses map to an empty set.
TRANSITIONS: Dict[GiveawayStatus, FrozenSet[GiveawayStatus]] = {
    GiveawayStatus.DRAFT: frozenset({GiveawayStatus.PENDING_CONFIRM, GiveawayStatus.CANCELLED}),
    GiveawayStatus.PENDING_CONFIRM: frozenset({
        GiveawayStatus.DRAFT,
        GiveawayStatus.SCHEDULED,
        GiveawayStatus.ACTIVE,
        GiveawayStatus.CANCELLED,
    }),
    GiveawayStatus.SCHEDULED: frozenset({
        GiveawayStatus.ACTIVE,
        GiveawayStatus.CANCELLED,
        GiveawayStatus.ERROR,
    }),
    GiveawayStatus.ACTIVE: frozenset({
        GiveawayStatus.FINISHED,
        GiveawayStatus.CANCELLED,
        GiveawayStatus.ERROR,
    }),
    GiveawayStatus.FINISHED: frozenset(),
    GiveawayStatus.CANCELLED: frozenset(),
    GiveawayStatus.ERROR: frozenset(),
}

EDITABLE_STATUSES = frozenset({GiveawayStatus.DRAFT, GiveawayStatus.PENDING_CONFIRM})


def can_transition(current: GiveawayStatus, target: GiveawayStatus) -> bool:
    return target in TRANSITIONS[current]


def is_terminal(status: GiveawayStatus) -> bool:
    return not TRANSITIONS[status]


def check_invite_max(value: int) -> int:
    if not 0 <= value <= ReferralDefaults.MAX_INVITE_MAX:
        raise ValidationError(f"invite_max must be between 0 and {ReferralDefaults.MAX_INVITE_MAX}")
    return value


def ensure_joinable(giveaway: Giveaway, now: Optional[datetime] = None) -> None:
    """Raise unless the giveaway currently accepts participants."""
    now = now or utcnow()
    if giveaway.status is not GiveawayStatus.ACTIVE:
        raise GiveawayNotActiveError(f"Giveaway is {giveaway.status.value}")
    if giveaway.end_at is not None and giveaway.end_at <= now:
        raise GiveawayExpiredError("Giveaway has ended")


@dataclass
class TickResult:
    activated: List[int] = field(default_factory=list)
    finished: List[int] = field(default_factory=list)
    cancelled: List[int] = field(default_factory=list)


class LifecycleService:
    """Owns giveaway status changes; every change goes through :data:`TRANSITIONS`."""

    def __init__(self, pool: OptimizedSQLitePool, default_invite_max: int = ReferralDefaults.DEFAULT_INVITE_MAX):
        self.pool = pool
        self.default_invite_max = default_invite_max
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def create_giveaway(
        self,
        owner_user_id: int,
        title: str,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        winners_count: int = 1,
        captcha_mode: CaptchaMode = CaptchaMode.OFF,
        invite_enabled: bool = False,
        invite_max: Optional[int] = None,
        boost_enabled: bool = False,
        boost_channel_ids: tuple[int, ...] = (),
        stories_enabled: bool = False,
        required_channel_ids: tuple[int, ...] = (),
    ) -> int:
        """Create a DRAFT giveaway with its conditions."""
        if not title or not title.strip():
            raise ValidationError("Title is required")
        if winners_count < 1:
            raise ValidationError("winners_count must be at least 1")
        if start_at is not None and end_at is not None and end_at <= start_at:
            raise ValidationError("end_at must be after start_at")
        invite_max = self.default_invite_max if invite_max is None else check_invite_max(invite_max)

        now = utcnow()
        async with self.pool.transaction() as conn:
            giveaway_id = await GiveawayRepository.create(
                conn, owner_user_id, title.strip(), start_at, end_at, winners_count, now
            )
            await GiveawayRepository.upsert_condition(conn, GiveawayCondition(
                giveaway_id=giveaway_id,
                captcha_mode=captcha_mode,
                invite_enabled=invite_enabled,
                invite_max=invite_max,
                boost_enabled=boost_enabled,
                boost_channel_ids=tuple(sorted(set(boost_channel_ids))),
                stories_enabled=stories_enabled,
                required_channel_ids=tuple(sorted(set(required_channel_ids))),
            ))
        logger.info(f"Giveaway {giveaway_id} created", extra={"owner_user_id": owner_user_id})
        return giveaway_id

    async def get_giveaway(self, giveaway_id: int, conn: Optional[aiosqlite.Connection] = None) -> Giveaway:
        if conn is not None:
            giveaway = await GiveawayRepository.get(conn, giveaway_id)
        else:
            async with self.pool.connection() as own:
                giveaway = await GiveawayRepository.get(own, giveaway_id)
        if giveaway is None:
            raise NotFoundError(f"Giveaway {giveaway_id} not found")
        return giveaway

    async def get_condition(self, giveaway_id: int, conn: Optional[aiosqlite.Connection] = None) -> GiveawayCondition:
        if conn is not None:
            condition = await GiveawayRepository.get_condition(conn, giveaway_id)
        else:
            async with self.pool.connection() as own:
                condition = await GiveawayRepository.get_condition(own, giveaway_id)
        return condition or GiveawayCondition(giveaway_id=giveaway_id, invite_max=self.default_invite_max)

    async def update_condition(self, giveaway_id: int, owner_user_id: int, **changes) -> GiveawayCondition:
        """Change conditions; only the owner, only before launch."""
        allowed = set(GiveawayCondition.__dataclass_fields__) - {"giveaway_id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown condition fields: {', '.join(sorted(unknown))}")

        async with self.pool.transaction() as conn:
            giveaway = await self.get_giveaway(giveaway_id, conn)
            self._ensure_owner(giveaway, owner_user_id)
            if giveaway.status not in EDITABLE_STATUSES:
                raise InvalidTransitionError("Conditions can only change before the giveaway is confirmed")
            condition = await self.get_condition(giveaway_id, conn)
            for name, value in changes.items():
                if name in ("boost_channel_ids", "required_channel_ids"):
                    value = tuple(sorted(set(value)))
                elif name == "captcha_mode":
                    value = CaptchaMode(value)
                setattr(condition, name, value)
            check_invite_max(condition.invite_max)
            await GiveawayRepository.upsert_condition(conn, condition)
        return condition

    async def submit(self, giveaway_id: int, owner_user_id: int) -> Giveaway:
        """DRAFT -> PENDING_CONFIRM, owner only."""
        return await self._transition(giveaway_id, GiveawayStatus.PENDING_CONFIRM, owner_user_id=owner_user_id)

    async def accept(self, giveaway_id: int, now: Optional[datetime] = None) -> Giveaway:
        """Confirm a pending giveaway: ACTIVE now, or SCHEDULED for a future start."""
        now = now or utcnow()
        giveaway = await self.get_giveaway(giveaway_id)
        if giveaway.status is not GiveawayStatus.PENDING_CONFIRM:
            raise InvalidTransitionError(f"Cannot accept a giveaway in status {giveaway.status.value}")
        target = (
            GiveawayStatus.SCHEDULED
            if giveaway.start_at is not None and giveaway.start_at > now
            else GiveawayStatus.ACTIVE
        )
        return await self._transition(giveaway_id, target, now=now)

    async def reject(self, giveaway_id: int) -> Giveaway:
        """Send a pending giveaway back to DRAFT."""
        giveaway = await self.get_giveaway(giveaway_id)
        if giveaway.status is not GiveawayStatus.PENDING_CONFIRM:
            raise InvalidTransitionError(f"Cannot reject a giveaway in status {giveaway.status.value}")
        return await self._transition(giveaway_id, GiveawayStatus.DRAFT)

    async def cancel(self, giveaway_id: int, owner_user_id: Optional[int] = None) -> Giveaway:
        return await self._transition(giveaway_id, GiveawayStatus.CANCELLED, owner_user_id=owner_user_id)

    async def finish(self, giveaway_id: int) -> Giveaway:
        return await self._transition(giveaway_id, GiveawayStatus.FINISHED)

    async def mark_error(self, giveaway_id: int) -> Giveaway:
        return await self._transition(giveaway_id, GiveawayStatus.ERROR)

    async def _transition(
        self,
        giveaway_id: int,
        target: GiveawayStatus,
        owner_user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Giveaway:
        now = now or utcnow()
        async with self.pool.transaction() as conn:
            giveaway = await self.get_giveaway(giveaway_id, conn)
            if owner_user_id is not None:
                self._ensure_owner(giveaway, owner_user_id)
            if not can_transition(giveaway.status, target):
                raise InvalidTransitionError(
                    f"Cannot move giveaway from {giveaway.status.value} to {target.value}"
                )
            await GiveawayRepository.update_status(conn, giveaway_id, giveaway.status, target, now)
            previous = giveaway.status
            giveaway.status = target
            giveaway.updated_at = now
        logger.info(
            f"Giveaway {giveaway_id}: {previous.value} -> {target.value}",
            extra={"giveaway_id": giveaway_id},
        )
        return giveaway

    @staticmethod
    def _ensure_owner(giveaway: Giveaway, user_id: int) -> None:
        if giveaway.owner_user_id != user_id:
            raise AuthorizationError("Only the giveaway owner can do this")

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Activate due SCHEDULED giveaways and close expired ACTIVE ones."""
        now = now or utcnow()
        result = TickResult()
        async with self.pool.transaction() as conn:
            for giveaway_id in await GiveawayRepository.list_due_for_activation(conn, now):
                if await GiveawayRepository.update_status(
                    conn, giveaway_id, GiveawayStatus.SCHEDULED, GiveawayStatus.ACTIVE, now
                ):
                    result.activated.append(giveaway_id)

            for giveaway_id in await GiveawayRepository.list_due_for_finish(conn, now):
                giveaway = await GiveawayRepository.get(conn, giveaway_id)
                target = GiveawayStatus.FINISHED if giveaway.total_participants > 0 else GiveawayStatus.CANCELLED
                if await GiveawayRepository.update_status(conn, giveaway_id, GiveawayStatus.ACTIVE, target, now):
                    (result.finished if target is GiveawayStatus.FINISHED else result.cancelled).append(giveaway_id)

        if result.activated or result.finished or result.cancelled:
            logger.info(
                f"Lifecycle tick: activated={result.activated} "
                f"finished={result.finished} cancelled={result.cancelled}"
            )
        return result

    async def start(self, interval_seconds: int = LifecycleDefaults.TICK_INTERVAL_SECONDS) -> None:
        """Start the periodic lifecycle scheduler."""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self.tick_loop(interval_seconds))
        logger.info(f"Lifecycle scheduler started (every {interval_seconds}s)")

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Lifecycle scheduler stopped")

    async def tick_loop(self, interval_seconds: int) -> None:
        while self.running:
            try:
                await self.tick()
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Lifecycle tick failed: {e}", exc_info=True)
                await asyncio.sleep(interval_seconds)
