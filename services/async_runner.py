"""Utilities to execute coroutines on the main asyncio loop from sync contexts.

Flask views run in aiohttp-wsgi worker threads; they hand service calls
back to the loop that owns the database pool.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar


_loop: Optional[asyncio.AbstractEventLoop] = None
T = TypeVar("T")


def set_main_loop(loop: Optional[asyncio.AbstractEventLoop]) -> None:
    global _loop
    _loop = loop


def get_main_loop() -> asyncio.AbstractEventLoop:
    if _loop is None:
        raise RuntimeError("Asyncio loop is not initialized")
    return _loop


def run_coroutine_sync(coro: Awaitable[T], timeout: Optional[float] = 30.0) -> T:
    """Run ``coro`` on the main loop and block for its result; exceptions propagate."""
    future = asyncio.run_coroutine_threadsafe(coro, get_main_loop())
    return future.result(timeout=timeout)
