"""Telegram-backed subscription and boost checkers."""

from __future__ import annotations

from aiogram import Bot
from aiogram.enums import ChatMemberStatus
from aiogram.exceptions import TelegramAPIError
from cachetools import TTLCache

from core.exceptions import UpstreamError
from core.logger import get_logger

logger = get_logger(__name__)

_MEMBER_STATUSES = frozenset({
    ChatMemberStatus.CREATOR,
    ChatMemberStatus.ADMINISTRATOR,
    ChatMemberStatus.MEMBER,
})


class TelegramSubscriptionChecker:
    """Confirms channel membership through ``getChatMember``.

    Only confirmed memberships are cached; any API failure reads as
    "not subscribed" so the join gate stays closed.
    """

    def __init__(self, bot: Bot, cache_ttl: int = 60, cache_size: int = 10_000) -> None:
        self.bot = bot
        self._confirmed: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)

    async def is_member(self, user_id: int, channel_id: int) -> bool:
        key = (user_id, channel_id)
        if key in self._confirmed:
            return True
        try:
            member = await self.bot.get_chat_member(chat_id=channel_id, user_id=user_id)
        except TelegramAPIError as e:
            logger.warning(f"getChatMember failed for channel {channel_id}: {e}")
            return False

        if member.status in _MEMBER_STATUSES:
            is_member = True
        elif member.status == ChatMemberStatus.RESTRICTED:
            is_member = bool(getattr(member, "is_member", False))
        else:
            is_member = False

        if is_member:
            self._confirmed[key] = True
        return is_member


class TelegramBoostChecker:
    """Counts a user's active boosts on a channel through ``getUserChatBoosts``."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def get_boost_count(self, user_id: int, channel_id: int) -> int:
        try:
            result = await self.bot.get_user_chat_boosts(chat_id=channel_id, user_id=user_id)
        except TelegramAPIError as e:
            logger.error(f"getUserChatBoosts failed for channel {channel_id}: {e}")
            raise UpstreamError("Telegram did not return boost information") from e
        return len(result.boosts)
