"""Database schema migrations."""

from __future__ import annotations

from .connection import OptimizedSQLitePool


SCHEMA_SQL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS giveaways (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_user_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'DRAFT',
        start_at TEXT,
        end_at TEXT,
        winners_count INTEGER NOT NULL DEFAULT 1,
        total_participants INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_giveaways_status ON giveaways(status);",
    "CREATE INDEX IF NOT EXISTS idx_giveaways_owner ON giveaways(owner_user_id);",
    """
    CREATE TABLE IF NOT EXISTS giveaway_conditions (
        giveaway_id INTEGER PRIMARY KEY,
        captcha_mode TEXT NOT NULL DEFAULT 'OFF',
        invite_enabled INTEGER NOT NULL DEFAULT 0,
        invite_max INTEGER NOT NULL DEFAULT 10,
        boost_enabled INTEGER NOT NULL DEFAULT 0,
        boost_channel_ids TEXT NOT NULL DEFAULT '[]',
        stories_enabled INTEGER NOT NULL DEFAULT 0,
        required_channel_ids TEXT NOT NULL DEFAULT '[]',
        FOREIGN KEY(giveaway_id) REFERENCES giveaways(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS participations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        giveaway_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'JOINED',
        tickets_base INTEGER NOT NULL DEFAULT 1,
        tickets_extra INTEGER NOT NULL DEFAULT 0 CHECK (tickets_extra >= 0),
        referrer_user_id INTEGER,
        referral_credits INTEGER NOT NULL DEFAULT 0,
        boosted_channel_ids TEXT NOT NULL DEFAULT '[]',
        boosts_snapshot TEXT,
        stories_shared INTEGER NOT NULL DEFAULT 0,
        stories_shared_at TEXT,
        fraud_score INTEGER NOT NULL DEFAULT 0,
        conditions_snapshot TEXT NOT NULL,
        source_tag TEXT,
        joined_at TEXT NOT NULL,
        FOREIGN KEY(giveaway_id) REFERENCES giveaways(id)
    );
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_participations_giveaway_user ON participations(giveaway_id, user_id);",
    "CREATE INDEX IF NOT EXISTS idx_participations_user_joined ON participations(user_id, joined_at);",
    "CREATE INDEX IF NOT EXISTS idx_participations_referrer ON participations(giveaway_id, referrer_user_id);",
    """
    CREATE TABLE IF NOT EXISTS story_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        participation_id INTEGER NOT NULL,
        giveaway_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        submitted_at TEXT NOT NULL,
        reviewed_at TEXT,
        reviewed_by INTEGER,
        reject_reason TEXT,
        FOREIGN KEY(participation_id) REFERENCES participations(id) ON DELETE CASCADE
    );
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_story_requests_participation ON story_requests(participation_id);",
    "CREATE INDEX IF NOT EXISTS idx_story_requests_giveaway ON story_requests(giveaway_id, status);",
    """
    CREATE TABLE IF NOT EXISTS custom_tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        giveaway_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        url TEXT,
        bonus_tickets INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        FOREIGN KEY(giveaway_id) REFERENCES giveaways(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_custom_tasks_giveaway ON custom_tasks(giveaway_id);",
    """
    CREATE TABLE IF NOT EXISTS custom_task_completions (
        participation_id INTEGER NOT NULL,
        task_id INTEGER NOT NULL,
        completed_at TEXT NOT NULL,
        PRIMARY KEY (participation_id, task_id),
        FOREIGN KEY(participation_id) REFERENCES participations(id) ON DELETE CASCADE,
        FOREIGN KEY(task_id) REFERENCES custom_tasks(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_credits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        participation_id INTEGER NOT NULL,
        source TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        ref TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY(participation_id) REFERENCES participations(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_ticket_credits_participation ON ticket_credits(participation_id, source);",
    """
    CREATE TABLE IF NOT EXISTS fraud_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        giveaway_id INTEGER,
        activity_type TEXT NOT NULL,
        score INTEGER NOT NULL DEFAULT 0,
        details TEXT,
        detected_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_fraud_log_user ON fraud_log(user_id, detected_at);",
    "CREATE INDEX IF NOT EXISTS idx_fraud_log_type ON fraud_log(activity_type, detected_at);",
)


async def run_migrations(pool: OptimizedSQLitePool) -> None:
    async with pool.transaction() as conn:
        for statement in SCHEMA_SQL:
            await conn.execute(statement)
