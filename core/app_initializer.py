"""Process bootstrap: storage, collaborators, engine, HTTP server and background loops."""

from __future__ import annotations

import asyncio
import os
from typing import Awaitable, Callable, List, Optional, Tuple

from aiohttp import web as aiohttp_web
from aiohttp_wsgi import WSGIHandler

from config import Config, load_config
from core.logger import get_logger
from database import OptimizedSQLitePool, init_db_pool, run_migrations
from services.collaborators import DenyAllSubscriptionChecker, UnavailableBoostChecker
from services.engine import GiveawayEngine, init_engine
from services.expiring_store import ExpiringStore, create_expiring_store

logger = get_logger(__name__)

Closer = Callable[[], Awaitable[None]]


class ApplicationInitializer:
    """Builds the giveaway engine and keeps it serving until stopped.

    Every started resource registers a closer; shutdown runs them in reverse
    start order so the HTTP server stops before the pool it reads from.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or load_config()
        self.pool: Optional[OptimizedSQLitePool] = None
        self.store: Optional[ExpiringStore] = None
        self.collaborators = None
        self.engine: Optional[GiveawayEngine] = None
        self._closers: List[Tuple[str, Closer]] = []
        self._stop_event = asyncio.Event()

    async def initialize(self) -> None:
        await self._open_storage()
        await self._connect_bot()
        self._build_engine()
        await self._serve_http()

    async def run(self) -> None:
        """Start the captcha sweeper and lifecycle scheduler, then wait for stop()."""
        await self.engine.captcha.start(self.config.captcha_sweep_interval_seconds)
        self._closers.append(("captcha sweeper", self.engine.captcha.stop))
        await self.engine.lifecycle.start(self.config.lifecycle_interval_seconds)
        self._closers.append(("lifecycle scheduler", self.engine.lifecycle.stop))

        logger.info("⚡ Giveaway engine running")
        try:
            await self._stop_event.wait()
        finally:
            await self.cleanup()

    def stop(self) -> None:
        self._stop_event.set()

    async def cleanup(self) -> None:
        while self._closers:
            label, close = self._closers.pop()
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error while closing {label}: {e}")
        logger.info("Shutdown complete")

    async def _open_storage(self) -> None:
        self.pool = await init_db_pool(
            database_path=self.config.database_path,
            pool_size=self.config.db_pool_size,
            busy_timeout_ms=self.config.db_busy_timeout,
        )
        self._closers.append(("database pool", self.pool.close))
        await run_migrations(self.pool)
        logger.info(f"✅ Database ready at {self.config.database_path}")

        self.store = await create_expiring_store(self.config.captcha_store_url, self.config.store_max_entries)
        self._closers.append(("expiring store", self.store.close))
        backend = "redis" if self.config.captcha_store_url else "memory"
        logger.info(f"✅ Expiring store ready ({backend})")

    async def _connect_bot(self) -> None:
        if not self.config.bot_configured:
            logger.info("Bot disabled: required channels and boosts cannot be verified")
            return
        # Imported lazily so a bot-less deployment never touches aiogram
        from bot.initializer import BotInitializer

        try:
            self.collaborators = await BotInitializer(self.config).initialize()
        except Exception as e:
            logger.error(f"Bot API unreachable, membership checks will fail closed: {e}")
            return
        self._closers.append(("bot session", self.collaborators.close))

    def _build_engine(self) -> None:
        if self.collaborators:
            subscriptions = self.collaborators.subscriptions
            boosts = self.collaborators.boosts
        else:
            subscriptions, boosts = DenyAllSubscriptionChecker(), UnavailableBoostChecker()
        self.engine = init_engine(GiveawayEngine.build(
            self.config,
            self.pool,
            self.store,
            subscriptions=subscriptions,
            boost_checker=boosts,
        ))
        logger.info("✅ Ticket services ready")

    async def _serve_http(self) -> None:
        from web import create_app

        aio_app = aiohttp_web.Application()
        aio_app.router.add_route("*", "/{path_info:.*}", WSGIHandler(create_app(self.config, engine=self.engine)))

        runner = aiohttp_web.AppRunner(aio_app)
        await runner.setup()
        self._closers.append(("web server", runner.cleanup))

        # Hosting platforms hand out the port through PORT
        port_override = os.getenv("PORT")
        host = "0.0.0.0" if port_override else self.config.web_host
        port = int(port_override or self.config.web_port)
        await aiohttp_web.TCPSite(runner, host, port).start()
        logger.info(f"🚀 API listening on http://{host}:{port}")
