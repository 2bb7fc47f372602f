"""Database access layer helpers."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from core.constants import CreditSource, GiveawayStatus, StoryStatus
from database.base_repository import BaseRepository
from database.models import (
    BoostsSnapshot,
    ConditionsSnapshot,
    CustomTask,
    Giveaway,
    GiveawayCondition,
    Participation,
    StoryRequest,
    TicketCredit,
    dump_ids,
    format_ts,
)


class GiveawayRepository(BaseRepository):
    """Repository for giveaways and their conditions."""

    @staticmethod
    async def create(
        conn: aiosqlite.Connection,
        owner_user_id: int,
        title: str,
        start_at: Optional[datetime],
        end_at: Optional[datetime],
        winners_count: int,
        now: datetime,
    ) -> int:
        return await BaseRepository.insert(
            conn,
            """INSERT INTO giveaways
               (owner_user_id, title, status, start_at, end_at, winners_count, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                owner_user_id, title, GiveawayStatus.DRAFT.value, format_ts(start_at),
                format_ts(end_at), winners_count, format_ts(now), format_ts(now),
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, giveaway_id: int) -> Optional[Giveaway]:
        row = await BaseRepository.fetch_one(conn, "SELECT * FROM giveaways WHERE id=?", (giveaway_id,))
        return Giveaway.from_row(row) if row else None

    @staticmethod
    async def upsert_condition(conn: aiosqlite.Connection, condition: GiveawayCondition) -> None:
        await BaseRepository.execute(
            conn,
            """INSERT INTO giveaway_conditions
               (giveaway_id, captcha_mode, invite_enabled, invite_max, boost_enabled,
                boost_channel_ids, stories_enabled, required_channel_ids)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(giveaway_id) DO UPDATE SET
                   captcha_mode=excluded.captcha_mode,
                   invite_enabled=excluded.invite_enabled,
                   invite_max=excluded.invite_max,
                   boost_enabled=excluded.boost_enabled,
                   boost_channel_ids=excluded.boost_channel_ids,
                   stories_enabled=excluded.stories_enabled,
                   required_channel_ids=excluded.required_channel_ids""",
            (
                condition.giveaway_id,
                condition.captcha_mode.value,
                int(condition.invite_enabled),
                condition.invite_max,
                int(condition.boost_enabled),
                dump_ids(condition.boost_channel_ids),
                int(condition.stories_enabled),
                dump_ids(condition.required_channel_ids),
            ),
        )

    @staticmethod
    async def get_condition(conn: aiosqlite.Connection, giveaway_id: int) -> Optional[GiveawayCondition]:
        row = await BaseRepository.fetch_one(
            conn, "SELECT * FROM giveaway_conditions WHERE giveaway_id=?", (giveaway_id,)
        )
        return GiveawayCondition.from_row(row) if row else None

    @staticmethod
    async def update_status(
        conn: aiosqlite.Connection,
        giveaway_id: int,
        expected: GiveawayStatus,
        new_status: GiveawayStatus,
        now: datetime,
    ) -> bool:
        """Compare-and-set the status; False when another writer moved it first."""
        affected = await BaseRepository.execute(
            conn,
            "UPDATE giveaways SET status=?, updated_at=? WHERE id=? AND status=?",
            (new_status.value, format_ts(now), giveaway_id, expected.value),
        )
        return affected == 1

    @staticmethod
    async def increment_participants(conn: aiosqlite.Connection, giveaway_id: int) -> None:
        await BaseRepository.execute(
            conn,
            "UPDATE giveaways SET total_participants = total_participants + 1 WHERE id=?",
            (giveaway_id,),
        )

    @staticmethod
    async def list_due_for_activation(conn: aiosqlite.Connection, now: datetime) -> List[int]:
        return await BaseRepository.fetch_column(
            conn,
            "SELECT id FROM giveaways WHERE status=? AND start_at IS NOT NULL AND start_at <= ? ORDER BY id",
            (GiveawayStatus.SCHEDULED.value, format_ts(now)),
        )

    @staticmethod
    async def list_due_for_finish(conn: aiosqlite.Connection, now: datetime) -> List[int]:
        return await BaseRepository.fetch_column(
            conn,
            "SELECT id FROM giveaways WHERE status=? AND end_at IS NOT NULL AND end_at <= ? ORDER BY id",
            (GiveawayStatus.ACTIVE.value, format_ts(now)),
        )


class ParticipationRepository(BaseRepository):
    """Repository for participation records and their ticket counters."""

    @staticmethod
    async def get(conn: aiosqlite.Connection, giveaway_id: int, user_id: int) -> Optional[Participation]:
        row = await BaseRepository.fetch_one(
            conn,
            "SELECT * FROM participations WHERE giveaway_id=? AND user_id=?",
            (giveaway_id, user_id),
        )
        return Participation.from_row(row) if row else None

    @staticmethod
    async def exists(conn: aiosqlite.Connection, giveaway_id: int, user_id: int) -> bool:
        value = await BaseRepository.fetch_value(
            conn,
            "SELECT 1 FROM participations WHERE giveaway_id=? AND user_id=?",
            (giveaway_id, user_id),
        )
        return value is not None

    @staticmethod
    async def get_id(conn: aiosqlite.Connection, giveaway_id: int, user_id: int) -> Optional[int]:
        return await BaseRepository.fetch_value(
            conn,
            "SELECT id FROM participations WHERE giveaway_id=? AND user_id=? AND status='JOINED'",
            (giveaway_id, user_id),
        )

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        giveaway_id: int,
        user_id: int,
        fraud_score: int,
        referrer_user_id: Optional[int],
        conditions_snapshot: ConditionsSnapshot,
        source_tag: Optional[str],
        joined_at: datetime,
    ) -> int:
        """Insert a participation; raises ``sqlite3.IntegrityError`` on a duplicate."""
        return await BaseRepository.insert(
            conn,
            """INSERT INTO participations
               (giveaway_id, user_id, status, tickets_base, tickets_extra, referrer_user_id,
                fraud_score, conditions_snapshot, source_tag, joined_at)
               VALUES (?, ?, 'JOINED', 1, 0, ?, ?, ?, ?, ?)""",
            (
                giveaway_id, user_id, referrer_user_id, fraud_score,
                conditions_snapshot.to_json(), source_tag, format_ts(joined_at),
            ),
        )

    @staticmethod
    async def credit_referral(conn: aiosqlite.Connection, participation_id: int, invite_max: int) -> bool:
        """Conditionally bump the referrer's credit; False once the cap is reached."""
        affected = await BaseRepository.execute(
            conn,
            """UPDATE participations
               SET referral_credits = referral_credits + 1,
                   tickets_extra = tickets_extra + 1
               WHERE id=? AND status='JOINED' AND referral_credits < ?""",
            (participation_id, invite_max),
        )
        return affected == 1

    @staticmethod
    async def add_extra_tickets(conn: aiosqlite.Connection, participation_id: int, amount: int) -> None:
        if amount <= 0:
            return
        await BaseRepository.execute(
            conn,
            "UPDATE participations SET tickets_extra = tickets_extra + ? WHERE id=?",
            (amount, participation_id),
        )

    @staticmethod
    async def update_boosts(
        conn: aiosqlite.Connection,
        participation_id: int,
        snapshot: BoostsSnapshot,
        boosted_channel_ids: Sequence[int],
        tickets_to_add: int,
    ) -> None:
        await BaseRepository.execute(
            conn,
            """UPDATE participations
               SET boosts_snapshot=?, boosted_channel_ids=?, tickets_extra = tickets_extra + ?
               WHERE id=?""",
            (snapshot.to_json(), dump_ids(boosted_channel_ids), max(0, tickets_to_add), participation_id),
        )

    @staticmethod
    async def mark_story_shared(conn: aiosqlite.Connection, participation_id: int, now: datetime) -> None:
        await BaseRepository.execute(
            conn,
            """UPDATE participations
               SET stories_shared=1, stories_shared_at=?, tickets_extra = tickets_extra + 1
               WHERE id=?""",
            (format_ts(now), participation_id),
        )

    @staticmethod
    async def count_recent_for_user(conn: aiosqlite.Connection, user_id: int, since: datetime) -> int:
        value = await BaseRepository.fetch_value(
            conn,
            "SELECT COUNT(*) FROM participations WHERE user_id=? AND joined_at >= ?",
            (user_id, format_ts(since)),
        )
        return int(value or 0)

    @staticmethod
    async def list_invited(conn: aiosqlite.Connection, giveaway_id: int, referrer_user_id: int) -> List[Dict[str, Any]]:
        rows = await BaseRepository.fetch_all(
            conn,
            """SELECT user_id, joined_at FROM participations
               WHERE giveaway_id=? AND referrer_user_id=? ORDER BY joined_at""",
            (giveaway_id, referrer_user_id),
        )
        return [{"user_id": row["user_id"], "joined_at": row["joined_at"]} for row in rows]


class TicketCreditRepository(BaseRepository):
    """Append-only ledger of extra ticket credits."""

    @staticmethod
    async def add(
        conn: aiosqlite.Connection,
        participation_id: int,
        source: CreditSource,
        amount: int,
        ref: Optional[str],
        now: datetime,
    ) -> None:
        if amount <= 0:
            return
        await BaseRepository.insert(
            conn,
            "INSERT INTO ticket_credits (participation_id, source, amount, ref, created_at) VALUES (?, ?, ?, ?, ?)",
            (participation_id, source.value, amount, ref, format_ts(now)),
        )

    @staticmethod
    async def list_for(conn: aiosqlite.Connection, participation_id: int) -> List[TicketCredit]:
        rows = await BaseRepository.fetch_all(
            conn,
            "SELECT * FROM ticket_credits WHERE participation_id=? ORDER BY id",
            (participation_id,),
        )
        return [TicketCredit.from_row(row) for row in rows]

    @staticmethod
    async def sum_by_source(conn: aiosqlite.Connection, participation_id: int) -> Dict[CreditSource, int]:
        rows = await BaseRepository.fetch_all(
            conn,
            "SELECT source, SUM(amount) AS total FROM ticket_credits WHERE participation_id=? GROUP BY source",
            (participation_id,),
        )
        return {CreditSource(row["source"]): int(row["total"]) for row in rows}


class StoryRequestRepository(BaseRepository):
    """Repository for story moderation requests."""

    @staticmethod
    async def get(conn: aiosqlite.Connection, request_id: int) -> Optional[StoryRequest]:
        row = await BaseRepository.fetch_one(conn, "SELECT * FROM story_requests WHERE id=?", (request_id,))
        return StoryRequest.from_row(row) if row else None

    @staticmethod
    async def get_by_participation(conn: aiosqlite.Connection, participation_id: int) -> Optional[StoryRequest]:
        row = await BaseRepository.fetch_one(
            conn, "SELECT * FROM story_requests WHERE participation_id=?", (participation_id,)
        )
        return StoryRequest.from_row(row) if row else None

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        participation_id: int,
        giveaway_id: int,
        user_id: int,
        now: datetime,
    ) -> int:
        return await BaseRepository.insert(
            conn,
            """INSERT INTO story_requests (participation_id, giveaway_id, user_id, status, submitted_at)
               VALUES (?, ?, ?, ?, ?)""",
            (participation_id, giveaway_id, user_id, StoryStatus.PENDING.value, format_ts(now)),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, request_id: int) -> None:
        await BaseRepository.execute(conn, "DELETE FROM story_requests WHERE id=?", (request_id,))

    @staticmethod
    async def review(
        conn: aiosqlite.Connection,
        request_id: int,
        new_status: StoryStatus,
        reviewer_id: int,
        now: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        """Move a PENDING request to a final status; False if it was no longer pending."""
        affected = await BaseRepository.execute(
            conn,
            """UPDATE story_requests
               SET status=?, reviewed_by=?, reviewed_at=?, reject_reason=?
               WHERE id=? AND status=?""",
            (new_status.value, reviewer_id, format_ts(now), reason, request_id, StoryStatus.PENDING.value),
        )
        return affected == 1

    @staticmethod
    async def list_for_giveaway(
        conn: aiosqlite.Connection,
        giveaway_id: int,
        status: Optional[StoryStatus] = None,
    ) -> List[StoryRequest]:
        query = "SELECT * FROM story_requests WHERE giveaway_id=?"
        params: List[Any] = [giveaway_id]
        if status is not None:
            query += " AND status=?"
            params.append(status.value)
        query += " ORDER BY submitted_at, id"
        rows = await BaseRepository.fetch_all(conn, query, params)
        return [StoryRequest.from_row(row) for row in rows]

    @staticmethod
    async def count_by_status(conn: aiosqlite.Connection, giveaway_id: int) -> Dict[StoryStatus, int]:
        rows = await BaseRepository.fetch_all(
            conn,
            "SELECT status, COUNT(*) AS total FROM story_requests WHERE giveaway_id=? GROUP BY status",
            (giveaway_id,),
        )
        counts = {status: 0 for status in StoryStatus}
        for row in rows:
            counts[StoryStatus(row["status"])] = int(row["total"])
        return counts


class CustomTaskRepository(BaseRepository):
    """Repository for owner-defined tasks and their completions."""

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        giveaway_id: int,
        title: str,
        url: Optional[str],
        bonus_tickets: int,
        now: datetime,
    ) -> int:
        return await BaseRepository.insert(
            conn,
            "INSERT INTO custom_tasks (giveaway_id, title, url, bonus_tickets, created_at) VALUES (?, ?, ?, ?, ?)",
            (giveaway_id, title, url, bonus_tickets, format_ts(now)),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, giveaway_id: int, task_id: int) -> Optional[CustomTask]:
        row = await BaseRepository.fetch_one(
            conn, "SELECT * FROM custom_tasks WHERE id=? AND giveaway_id=?", (task_id, giveaway_id)
        )
        return CustomTask.from_row(row) if row else None

    @staticmethod
    async def update(conn: aiosqlite.Connection, task: CustomTask) -> None:
        await BaseRepository.execute(
            conn,
            "UPDATE custom_tasks SET title=?, url=?, bonus_tickets=? WHERE id=? AND giveaway_id=?",
            (task.title, task.url, task.bonus_tickets, task.id, task.giveaway_id),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, giveaway_id: int, task_id: int) -> bool:
        affected = await BaseRepository.execute(
            conn, "DELETE FROM custom_tasks WHERE id=? AND giveaway_id=?", (task_id, giveaway_id)
        )
        return affected == 1

    @staticmethod
    async def list_for_giveaway(conn: aiosqlite.Connection, giveaway_id: int) -> List[CustomTask]:
        rows = await BaseRepository.fetch_all(
            conn, "SELECT * FROM custom_tasks WHERE giveaway_id=? ORDER BY id", (giveaway_id,)
        )
        return [CustomTask.from_row(row) for row in rows]

    @staticmethod
    async def record_completion(conn: aiosqlite.Connection, participation_id: int, task_id: int, now: datetime) -> bool:
        """Insert a completion once; False when it was already recorded."""
        affected = await BaseRepository.execute(
            conn,
            "INSERT OR IGNORE INTO custom_task_completions (participation_id, task_id, completed_at) VALUES (?, ?, ?)",
            (participation_id, task_id, format_ts(now)),
        )
        return affected == 1

    @staticmethod
    async def list_completions(conn: aiosqlite.Connection, participation_id: int) -> List[Dict[str, Any]]:
        rows = await BaseRepository.fetch_all(
            conn,
            """SELECT c.task_id, c.completed_at, t.bonus_tickets
               FROM custom_task_completions c JOIN custom_tasks t ON t.id = c.task_id
               WHERE c.participation_id=? ORDER BY c.completed_at""",
            (participation_id,),
        )
        return [
            {"task_id": row["task_id"], "completed_at": row["completed_at"], "bonus_tickets": row["bonus_tickets"]}
            for row in rows
        ]


class FraudLogRepository(BaseRepository):
    """Repository for suspicious activity records."""

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        user_id: int,
        giveaway_id: Optional[int],
        activity_type: str,
        score: int,
        details: Dict[str, Any],
        now: datetime,
    ) -> None:
        await BaseRepository.insert(
            conn,
            """INSERT INTO fraud_log (user_id, giveaway_id, activity_type, score, details, detected_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (user_id, giveaway_id, activity_type, score, json.dumps(details, ensure_ascii=False), format_ts(now)),
        )

    @staticmethod
    async def list_for_user(conn: aiosqlite.Connection, user_id: int) -> List[Dict[str, Any]]:
        rows = await BaseRepository.fetch_all(
            conn,
            "SELECT * FROM fraud_log WHERE user_id=? ORDER BY id",
            (user_id,),
        )
        return [
            {
                "giveaway_id": row["giveaway_id"],
                "activity_type": row["activity_type"],
                "score": row["score"],
                "details": json.loads(row["details"]) if row["details"] else {},
                "detected_at": row["detected_at"],
            }
            for row in rows
        ]
