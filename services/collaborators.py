"""Interfaces of the external systems the engine consults."""

from __future__ import annotations

from typing import Protocol

from core.exceptions import UpstreamError


class SubscriptionChecker(Protocol):
    async def is_member(self, user_id: int, channel_id: int) -> bool:
        """True only when membership is confirmed; any failure must read as False."""
        ...


class BoostChecker(Protocol):
    async def get_boost_count(self, user_id: int, channel_id: int) -> int:
        """Current number of boosts ``user_id`` gives ``channel_id``.

        Raises:
            UpstreamError: If the count cannot be fetched
        """
        ...


class DenyAllSubscriptionChecker:
    """Used when no bot is configured: required channels can never be confirmed."""

    async def is_member(self, user_id: int, channel_id: int) -> bool:
        return False


class UnavailableBoostChecker:
    """Used when no bot is configured: every boost lookup fails upstream."""

    async def get_boost_count(self, user_id: int, channel_id: int) -> int:
        raise UpstreamError("Boost lookups are unavailable without a bot")
