"""Owner-defined tasks that grant bonus tickets once per participant."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiosqlite

from core.constants import CreditSource, TaskDefaults
from core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipatingError,
    ValidationError,
)
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import CustomTask, utcnow
from database.repositories import CustomTaskRepository, ParticipationRepository, TicketCreditRepository
from services.lifecycle_service import EDITABLE_STATUSES, LifecycleService
from services.metrics import TICKETS_CREDITED
from utils.validators import validate_bonus_tickets, validate_task_title, validate_task_url

logger = get_logger(__name__)

_EDITABLE_TASK_FIELDS = frozenset({"title", "url", "bonus_tickets"})


@dataclass(frozen=True, slots=True)
class TaskCompletion:
    task_id: int
    tickets_added: int
    already_completed: bool
    total_tickets: int


class CustomTaskService:
    def __init__(self, pool: OptimizedSQLitePool, lifecycle: LifecycleService):
        self.pool = pool
        self.lifecycle = lifecycle

    async def add_task(
        self,
        giveaway_id: int,
        owner_user_id: int,
        title: str,
        url: Optional[str] = None,
        bonus_tickets: int = TaskDefaults.DEFAULT_BONUS_TICKETS,
    ) -> CustomTask:
        title = validate_task_title(title)
        url = validate_task_url(url)
        bonus_tickets = validate_bonus_tickets(bonus_tickets)
        now = utcnow()
        async with self.pool.transaction() as conn:
            giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
            if giveaway.owner_user_id != owner_user_id:
                raise AuthorizationError("Only the giveaway owner can add tasks")
            if giveaway.status not in EDITABLE_STATUSES:
                raise InvalidTransitionError("Tasks can only be added before the giveaway is confirmed")
            task_id = await CustomTaskRepository.insert(conn, giveaway_id, title, url, bonus_tickets, now)
            task = await CustomTaskRepository.get(conn, giveaway_id, task_id)
        logger.info(f"Custom task {task_id} added to giveaway {giveaway_id}")
        return task

    async def update_task(self, giveaway_id: int, owner_user_id: int, task_id: int, **changes) -> CustomTask:
        """Edit title, url or bonus_tickets while the giveaway is still a draft."""
        unknown = set(changes) - _EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "title" in changes:
            changes["title"] = validate_task_title(changes["title"])
        if "url" in changes:
            changes["url"] = validate_task_url(changes["url"])
        if "bonus_tickets" in changes:
            changes["bonus_tickets"] = validate_bonus_tickets(changes["bonus_tickets"])

        async with self.pool.transaction() as conn:
            task = await self._editable_task(conn, giveaway_id, owner_user_id, task_id, "changed")
            task = replace(task, **changes)
            await CustomTaskRepository.update(conn, task)
        logger.info(f"Custom task {task_id} updated", extra={"giveaway_id": giveaway_id})
        return task

    async def delete_task(self, giveaway_id: int, owner_user_id: int, task_id: int) -> None:
        async with self.pool.transaction() as conn:
            await self._editable_task(conn, giveaway_id, owner_user_id, task_id, "deleted")
            await CustomTaskRepository.delete(conn, giveaway_id, task_id)
        logger.info(f"Custom task {task_id} deleted", extra={"giveaway_id": giveaway_id})

    async def _editable_task(
        self,
        conn: aiosqlite.Connection,
        giveaway_id: int,
        owner_user_id: int,
        task_id: int,
        action: str,
    ) -> CustomTask:
        giveaway = await self.lifecycle.get_giveaway(giveaway_id, conn)
        if giveaway.owner_user_id != owner_user_id:
            raise AuthorizationError("Only the giveaway owner can manage tasks")
        if giveaway.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(f"Tasks can only be {action} before the giveaway is confirmed")
        task = await CustomTaskRepository.get(conn, giveaway_id, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def list_tasks(self, giveaway_id: int) -> List[CustomTask]:
        async with self.pool.connection() as conn:
            await self.lifecycle.get_giveaway(giveaway_id, conn)
            return await CustomTaskRepository.list_for_giveaway(conn, giveaway_id)

    async def complete_task(
        self,
        giveaway_id: int,
        user_id: int,
        task_id: int,
        now: Optional[datetime] = None,
    ) -> TaskCompletion:
        """Record a completion; only the first one credits tickets."""
        now = now or utcnow()
        async with self.pool.transaction() as conn:
            task = await CustomTaskRepository.get(conn, giveaway_id, task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            participation = await ParticipationRepository.get(conn, giveaway_id, user_id)
            if participation is None:
                raise NotParticipatingError()

            first_time = await CustomTaskRepository.record_completion(conn, participation.id, task_id, now)
            tickets_added = task.bonus_tickets if first_time else 0
            if tickets_added:
                await ParticipationRepository.add_extra_tickets(conn, participation.id, tickets_added)
                await TicketCreditRepository.add(
                    conn, participation.id, CreditSource.TASK, tickets_added, f"task:{task_id}", now
                )

        if tickets_added:
            TICKETS_CREDITED.labels(source="task").inc(tickets_added)
        return TaskCompletion(
            task_id=task_id,
            tickets_added=tickets_added,
            already_completed=not first_time,
            total_tickets=participation.total_tickets + tickets_added,
        )

    async def list_completions(self, giveaway_id: int, user_id: int) -> List[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            participation_id = await ParticipationRepository.get_id(conn, giveaway_id, user_id)
            if participation_id is None:
                raise NotParticipatingError()
            return await CustomTaskRepository.list_completions(conn, participation_id)
