"""Arithmetic captcha challenges with one-time tokens."""

from __future__ import annotations

import asyncio
import secrets
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional

from core.constants import CaptchaDefaults
from core.exceptions import RateLimitError
from core.logger import get_logger
from services.expiring_store import ExpiringStore
from services.metrics import CAPTCHA_EVENTS

logger = get_logger(__name__)

_rng = secrets.SystemRandom()


@dataclass(frozen=True, slots=True)
class CaptchaChallenge:
    question: str
    token: str


@dataclass(frozen=True, slots=True)
class CaptchaVerification:
    ok: bool
    attempts_left: Optional[int] = None
    reason: Optional[str] = None


def build_question() -> tuple[str, int]:
    """Return ``(question, answer)`` for a small addition or subtraction."""
    a = _rng.randint(CaptchaDefaults.OPERAND_MIN, CaptchaDefaults.OPERAND_MAX)
    b = _rng.randint(CaptchaDefaults.OPERAND_MIN, CaptchaDefaults.OPERAND_MAX)
    if _rng.random() < 0.5:
        return f"{a} + {b} = ?", a + b
    # Subtraction is always larger minus smaller so answers stay non-negative
    high, low = max(a, b), min(a, b)
    return f"{high} - {low} = ?", high - low


class CaptchaService:
    """Issues and verifies captcha tokens stored in an :class:`ExpiringStore`."""

    CHALLENGE_PREFIX = "captcha:challenge:"
    ATTEMPTS_PREFIX = "captcha:attempts:"
    WINDOW_PREFIX = "captcha:generated:"
    PASS_PREFIX = "captcha:passed:"

    def __init__(
        self,
        store: ExpiringStore,
        ttl_seconds: int = CaptchaDefaults.TTL_SECONDS,
        max_attempts: int = CaptchaDefaults.MAX_ATTEMPTS,
        rate_limit: int = CaptchaDefaults.RATE_LIMIT,
        rate_window_seconds: int = CaptchaDefaults.RATE_WINDOW_SECONDS,
        pass_ttl_seconds: int = CaptchaDefaults.PASS_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.rate_limit = rate_limit
        self.rate_window_seconds = rate_window_seconds
        self.pass_ttl_seconds = pass_ttl_seconds
        self.running = False
        self._sweep_task: Optional[asyncio.Task] = None

    async def generate(self, user_id: int) -> CaptchaChallenge:
        """Issue a new challenge for ``user_id``.

        Raises:
            RateLimitError: If the user generated too many challenges recently
        """
        decision = await self.store.increment_counter_window(
            f"{self.WINDOW_PREFIX}{user_id}", self.rate_window_seconds, self.rate_limit
        )
        if not decision.allowed:
            CAPTCHA_EVENTS.labels(event="rate_limited").inc()
            logger.warning(
                "Captcha generation rate limited",
                extra={"user_id": user_id, "retry_after": decision.retry_after_seconds},
            )
            raise RateLimitError(
                "Too many captcha requests, try again later",
                retry_after_seconds=decision.retry_after_seconds,
            )

        question, answer = build_question()
        token = secrets.token_hex(CaptchaDefaults.TOKEN_BYTES)
        await self.store.put(
            f"{self.CHALLENGE_PREFIX}{token}",
            {"user_id": user_id, "question": question, "answer": answer},
            self.ttl_seconds,
        )
        CAPTCHA_EVENTS.labels(event="generated").inc()
        return CaptchaChallenge(question=question, token=token)

    async def verify(self, token: str, answer: int, user_id: Optional[int] = None) -> CaptchaVerification:
        """Check an answer; a token stops validating once solved or exhausted.

        Unknown, expired and foreign tokens all produce the same generic
        failure so callers cannot probe which tokens exist.
        """
        challenge_key = f"{self.CHALLENGE_PREFIX}{token}"
        challenge = await self.store.get(challenge_key)
        if challenge is None or (user_id is not None and challenge.get("user_id") != user_id):
            CAPTCHA_EVENTS.labels(event="invalid").inc()
            return CaptchaVerification(ok=False, reason="Captcha expired or invalid")

        attempts = await self.store.incr(f"{self.ATTEMPTS_PREFIX}{token}", self.ttl_seconds)
        if attempts > self.max_attempts:
            await self._discard(token)
            CAPTCHA_EVENTS.labels(event="exhausted").inc()
            return CaptchaVerification(ok=False, attempts_left=0, reason="Too many attempts")

        if answer == challenge.get("answer"):
            # Only the caller that actually removes the token wins a concurrent race
            if not await self.store.delete(challenge_key):
                return CaptchaVerification(ok=False, reason="Captcha expired or invalid")
            await self.store.delete(f"{self.ATTEMPTS_PREFIX}{token}")
            await self.store.put(
                f"{self.PASS_PREFIX}{challenge['user_id']}",
                {"token": token},
                self.pass_ttl_seconds,
            )
            CAPTCHA_EVENTS.labels(event="passed").inc()
            return CaptchaVerification(ok=True)

        CAPTCHA_EVENTS.labels(event="failed").inc()
        return CaptchaVerification(ok=False, attempts_left=self.max_attempts - attempts, reason="Wrong answer")

    async def has_passed(self, user_id: int) -> bool:
        return await self.store.get(f"{self.PASS_PREFIX}{user_id}") is not None

    async def consume_pass(self, user_id: int) -> bool:
        """Spend the user's pass marker; only one concurrent caller gets True."""
        return await self.store.delete(f"{self.PASS_PREFIX}{user_id}")

    async def restore_pass(self, user_id: int) -> None:
        """Give back a marker spent on a join that did not go through."""
        await self.store.put(f"{self.PASS_PREFIX}{user_id}", {"restored": True}, self.pass_ttl_seconds)

    async def sweep(self) -> int:
        removed = await self.store.sweep()
        if removed:
            logger.debug(f"Captcha sweep removed {removed} expired entries")
        return removed

    async def _discard(self, token: str) -> None:
        await self.store.delete(f"{self.CHALLENGE_PREFIX}{token}")
        await self.store.delete(f"{self.ATTEMPTS_PREFIX}{token}")

    async def start(self, interval_seconds: int = CaptchaDefaults.SWEEP_INTERVAL_SECONDS) -> None:
        """Start periodic sweeping of expired challenges."""
        if self.running:
            return
        self.running = True
        self._sweep_task = asyncio.create_task(self.sweep_loop(interval_seconds))
        logger.info(f"Captcha sweeper started (every {interval_seconds}s)")

    async def stop(self) -> None:
        self.running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        logger.info("Captcha sweeper stopped")

    async def sweep_loop(self, interval_seconds: int) -> None:
        while self.running:
            try:
                await asyncio.sleep(interval_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Captcha sweep failed: {e}", exc_info=True)
