"""Giveaway engine process: database, ticket services, bot checkers and HTTP API."""

from __future__ import annotations

import asyncio
import logging
import os

from config import load_config
from core import setup_logger
from core.app_initializer import ApplicationInitializer
from services import set_main_loop

config = load_config()
logger = setup_logger(
    level=logging.DEBUG if config.debug else logging.INFO,
    log_file=os.path.join(config.log_folder, "app.log"),
    colored=True,
)


async def serve() -> None:
    # Flask views submit coroutines to this loop
    set_main_loop(asyncio.get_running_loop())

    initializer = ApplicationInitializer(config)
    await initializer.initialize()
    await initializer.run()


if __name__ == "__main__":
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting")
    except Exception:
        logger.exception("Giveaway engine crashed")
        raise SystemExit(1)
