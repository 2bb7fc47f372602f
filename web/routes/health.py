"""Health check blueprint."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from database.connection import OptimizedSQLitePool, get_db_pool
from services.async_runner import run_coroutine_sync


health_bp = Blueprint("health", __name__)


def _current_pool() -> OptimizedSQLitePool:
    engine = current_app.config.get("ENGINE")
    return engine.lifecycle.pool if engine is not None else get_db_pool()


async def _probe_database(pool: OptimizedSQLitePool) -> bool:
    async with pool.connection() as conn:
        cursor = await conn.execute("SELECT 1")
        row = await cursor.fetchone()
    return row is not None


@health_bp.route("/health")
def health_check():
    try:
        database_ok = run_coroutine_sync(_probe_database(_current_pool()), timeout=5)
    except Exception:
        database_ok = False

    data = {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
    }
    return jsonify(data), 200 if database_ok else 503
