"""Channel boost verification and incremental ticket credit."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from core.constants import BoostDefaults, CreditSource
from core.exceptions import (
    ApplicationError,
    ChannelNotConfiguredError,
    FeatureDisabledError,
    NotParticipatingError,
    UpstreamError,
)
from core.logger import get_logger
from database.connection import OptimizedSQLitePool
from database.models import utcnow
from database.repositories import GiveawayRepository, ParticipationRepository, TicketCreditRepository
from services.collaborators import BoostChecker
from services.lifecycle_service import LifecycleService
from services.metrics import TICKETS_CREDITED

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BoostResult:
    new_boosts: int
    total_boosts_for_channel: int
    tickets_added: int
    total_tickets: int


def boost_credit(previous: int, actual: int, cap: int) -> int:
    """Tickets owed when the observed count moves from ``previous`` to ``actual``."""
    return max(0, min(actual, cap) - min(previous, cap))


class BoostVerifier:
    """Turns boost counts reported by the checker into capped ticket credit.

    The snapshot keeps the last uncapped count per channel, so repeated
    verification without new boosts credits nothing.
    """

    def __init__(
        self,
        pool: OptimizedSQLitePool,
        lifecycle: LifecycleService,
        checker: BoostChecker,
        max_boosts_per_channel: int = BoostDefaults.MAX_BOOSTS_PER_CHANNEL,
    ):
        self.pool = pool
        self.lifecycle = lifecycle
        self.checker = checker
        self.max_boosts_per_channel = max_boosts_per_channel

    async def verify_boost(
        self,
        giveaway_id: int,
        user_id: int,
        channel_id: int,
        now: Optional[datetime] = None,
    ) -> BoostResult:
        now = now or utcnow()
        async with self.pool.connection() as conn:
            await self.lifecycle.get_giveaway(giveaway_id, conn)
            condition = await self.lifecycle.get_condition(giveaway_id, conn)
            if not condition.boost_enabled:
                raise FeatureDisabledError("Boosts are disabled for this giveaway", code="BOOSTS_DISABLED")
            if channel_id not in condition.boost_channel_ids:
                raise ChannelNotConfiguredError()
            if await ParticipationRepository.get_id(conn, giveaway_id, user_id) is None:
                raise NotParticipatingError()

        try:
            actual = int(await self.checker.get_boost_count(user_id, channel_id))
        except ApplicationError:
            raise
        except Exception as e:
            logger.error(f"Boost lookup failed for channel {channel_id}: {e}")
            raise UpstreamError("Could not fetch boost count") from e
        if actual < 0:
            raise UpstreamError(f"Boost checker returned a negative count: {actual}")

        async with self.pool.transaction() as conn:
            participation = await ParticipationRepository.get(conn, giveaway_id, user_id)
            if participation is None:
                raise NotParticipatingError()
            previous = participation.boosts_snapshot.get(channel_id)
            tickets_to_add = boost_credit(previous, actual, self.max_boosts_per_channel)

            if actual > previous:
                boosted = set(participation.boosted_channel_ids) | {channel_id}
                await ParticipationRepository.update_boosts(
                    conn,
                    participation.id,
                    participation.boosts_snapshot.with_count(channel_id, actual),
                    sorted(boosted),
                    tickets_to_add,
                )
            if tickets_to_add:
                await TicketCreditRepository.add(
                    conn, participation.id, CreditSource.BOOST, tickets_to_add, f"channel:{channel_id}", now
                )
            total_tickets = participation.total_tickets + tickets_to_add

        if tickets_to_add:
            TICKETS_CREDITED.labels(source="boost").inc(tickets_to_add)
            logger.info(
                f"Boost credit for user {user_id} in giveaway {giveaway_id}",
                extra={"channel_id": channel_id, "previous": previous, "actual": actual, "tickets": tickets_to_add},
            )
        return BoostResult(
            new_boosts=max(0, actual - previous),
            total_boosts_for_channel=actual,
            tickets_added=tickets_to_add,
            total_tickets=total_tickets,
        )

    async def get_boost_status(self, giveaway_id: int, user_id: int) -> Dict[str, Any]:
        """Per-channel boost view for a participant."""
        async with self.pool.connection() as conn:
            condition = await GiveawayRepository.get_condition(conn, giveaway_id)
            participation = await ParticipationRepository.get(conn, giveaway_id, user_id)
        if participation is None:
            raise NotParticipatingError()
        channels = condition.boost_channel_ids if condition else ()
        return {
            "boost_enabled": bool(condition and condition.boost_enabled),
            "max_boosts_per_channel": self.max_boosts_per_channel,
            "channels": [
                {
                    "channel_id": channel_id,
                    "boosts": participation.boosts_snapshot.get(channel_id),
                    "credited": min(participation.boosts_snapshot.get(channel_id), self.max_boosts_per_channel),
                }
                for channel_id in channels
            ],
            "total_tickets": participation.total_tickets,
        }
