"""Database package: pool, schema and repositories."""

from .connection import OptimizedSQLitePool, get_db_pool, init_db_pool
from .migrations import run_migrations
from .repositories import (
    CustomTaskRepository,
    FraudLogRepository,
    GiveawayRepository,
    ParticipationRepository,
    StoryRequestRepository,
    TicketCreditRepository,
)

__all__ = [
    "OptimizedSQLitePool",
    "get_db_pool",
    "init_db_pool",
    "run_migrations",
    "CustomTaskRepository",
    "FraudLogRepository",
    "GiveawayRepository",
    "ParticipationRepository",
    "StoryRequestRepository",
    "TicketCreditRepository",
]
