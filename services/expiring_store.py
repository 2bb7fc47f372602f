"""Expiring key-value storage for short-lived security state.

Captcha challenges, attempt counters, pass markers and generation windows
all live behind :class:`ExpiringStore`, so a single-process deployment can
use :class:`InMemoryExpiringStore` while several instances share a
:class:`RedisExpiringStore`.
"""

from __future__ import annotations

import json
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Protocol

import redis.asyncio as aioredis
from cachetools import TLRUCache

from core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class WindowDecision:
    """Outcome of a sliding-window rate check."""
    allowed: bool
    count: int
    retry_after_seconds: int = 0


class ExpiringStore(Protocol):
    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None: ...

    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def delete(self, key: str) -> bool: ...

    async def incr(self, key: str, ttl_seconds: float) -> int: ...

    async def increment_counter_window(self, key: str, window_seconds: float, limit: int) -> WindowDecision: ...

    async def sweep(self) -> int: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: Any
    ttl: float


def _entry_ttu(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class InMemoryExpiringStore:
    """Process-local store on a cachetools ``TLRUCache`` with per-item TTL.

    None of the methods await while touching the cache, so each call is
    atomic with respect to other coroutines on the same loop.
    """

    def __init__(self, maxsize: int = 100_000, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_ttu, timer=timer)

    def __len__(self) -> int:
        return len(self._cache)

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        self._cache[key] = _Entry(value=dict(value), ttl=ttl_seconds)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(key)
        if entry is None or not isinstance(entry.value, dict):
            return None
        return dict(entry.value)

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def incr(self, key: str, ttl_seconds: float) -> int:
        entry = self._cache.get(key)
        if entry is None:
            self._cache[key] = _Entry(value=1, ttl=ttl_seconds)
            return 1
        # Mutate in place so the original expiry is kept
        entry.value += 1
        return entry.value

    async def increment_counter_window(self, key: str, window_seconds: float, limit: int) -> WindowDecision:
        now = self._timer()
        entry = self._cache.get(key)
        stamps: Deque[float] = entry.value if entry is not None else deque()
        while stamps and stamps[0] <= now - window_seconds:
            stamps.popleft()

        if len(stamps) >= limit:
            retry_after = max(1, math.ceil(stamps[0] + window_seconds - now))
            return WindowDecision(allowed=False, count=len(stamps), retry_after_seconds=retry_after)

        stamps.append(now)
        # Re-insert to push expiry out to a full window after the newest stamp
        self._cache[key] = _Entry(value=stamps, ttl=window_seconds)
        return WindowDecision(allowed=True, count=len(stamps))

    async def sweep(self) -> int:
        expired = self._cache.expire()
        return len(expired) if expired is not None else 0

    async def close(self) -> None:
        self._cache.clear()


_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  return {0, count, oldest[2]}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('EXPIRE', key, math.ceil(window))
return {1, count + 1, '0'}
"""


class RedisExpiringStore:
    """Shared store for multi-instance deployments; Redis handles expiry."""

    def __init__(self, url: str, prefix: str = "giveaways:") -> None:
        if '://' not in url:
            url = f'redis://{url}'
        self._client = aioredis.from_url(url, decode_responses=True)
        self._prefix = prefix
        self._window_script = self._client.register_script(_WINDOW_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        await self._client.set(self._key(key), json.dumps(value), px=max(1, int(ttl_seconds * 1000)))

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        value = json.loads(raw)
        return value if isinstance(value, dict) else None

    async def delete(self, key: str) -> bool:
        return await self._client.delete(self._key(key)) > 0

    async def incr(self, key: str, ttl_seconds: float) -> int:
        full_key = self._key(key)
        count = await self._client.incr(full_key)
        if count == 1:
            await self._client.pexpire(full_key, max(1, int(ttl_seconds * 1000)))
        return int(count)

    async def increment_counter_window(self, key: str, window_seconds: float, limit: int) -> WindowDecision:
        now = time.time()
        allowed, count, oldest = await self._window_script(
            keys=[self._key(key)],
            args=[now, window_seconds, limit, f"{now}:{uuid.uuid4().hex}"],
        )
        if int(allowed):
            return WindowDecision(allowed=True, count=int(count))
        retry_after = max(1, math.ceil(float(oldest) + window_seconds - now))
        return WindowDecision(allowed=False, count=int(count), retry_after_seconds=retry_after)

    async def sweep(self) -> int:
        return 0

    async def close(self) -> None:
        await self._client.aclose()


async def create_expiring_store(url: Optional[str], maxsize: int = 100_000) -> ExpiringStore:
    """Build the store selected by configuration; falls back to memory without a URL."""
    if not url:
        logger.info("Using in-memory expiring store")
        return InMemoryExpiringStore(maxsize=maxsize)
    store = RedisExpiringStore(url)
    await store.ping()
    logger.info("Using Redis expiring store")
    return store
