"""Referral credit tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import aiosqlite

from core.constants import CreditSource
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import utcnow
from database.repositories import GiveawayRepository, ParticipationRepository, TicketCreditRepository

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ReferralDecision:
    credited: bool
    reason: Optional[str] = None


class ReferralTracker:
    """Credits invite tickets; every credit is a conditional update on the referrer row."""

    def __init__(self, pool: OptimizedSQLitePool):
        self.pool = pool

    async def credit_referral(
        self,
        conn: aiosqlite.Connection,
        giveaway_id: int,
        referrer_user_id: int,
        new_user_id: int,
        invite_max: int,
        now: Optional[datetime] = None,
    ) -> ReferralDecision:
        """Try to credit ``referrer_user_id`` for bringing in ``new_user_id``.

        Must run inside the caller's write transaction so the credit commits
        or rolls back together with the new participation. A refused credit
        never blocks the join itself.
        """
        if referrer_user_id == new_user_id:
            return ReferralDecision(credited=False, reason="self_referral")

        referrer_participation_id = await ParticipationRepository.get_id(conn, giveaway_id, referrer_user_id)
        if referrer_participation_id is None:
            return ReferralDecision(credited=False, reason="referrer_not_participating")

        if not await ParticipationRepository.credit_referral(conn, referrer_participation_id, invite_max):
            logger.info(
                "Referral cap reached",
                extra={"giveaway_id": giveaway_id, "referrer_user_id": referrer_user_id},
            )
            return ReferralDecision(credited=False, reason="cap_reached")

        await TicketCreditRepository.add(
            conn, referrer_participation_id, CreditSource.REFERRAL, 1, f"user:{new_user_id}", now or utcnow()
        )
        return ReferralDecision(credited=True)

    async def get_referral_stats(self, giveaway_id: int, user_id: int) -> Dict[str, Any]:
        async with self.pool.connection() as conn:
            condition = await GiveawayRepository.get_condition(conn, giveaway_id)
            participation = await ParticipationRepository.get(conn, giveaway_id, user_id)
            credits = (
                await TicketCreditRepository.sum_by_source(conn, participation.id) if participation else {}
            )
        return {
            "invited_count": participation.referral_credits if participation else 0,
            "invite_max": condition.invite_max if condition else 0,
            "invite_enabled": bool(condition and condition.invite_enabled),
            "tickets_from_invites": credits.get(CreditSource.REFERRAL, 0),
        }

    async def list_invites(self, giveaway_id: int, user_id: int) -> list[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            return await ParticipationRepository.list_invited(conn, giveaway_id, user_id)
