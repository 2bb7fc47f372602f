"""Bot initialization module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from bot.checkers import TelegramBoostChecker, TelegramSubscriptionChecker
from core.logger import get_logger

if TYPE_CHECKING:
    from config import Config

logger = get_logger(__name__)


@dataclass
class BotCollaborators:
    bot: Bot
    subscriptions: TelegramSubscriptionChecker
    boosts: TelegramBoostChecker

    async def close(self) -> None:
        await self.bot.session.close()


class BotInitializer:
    """Creates the Bot API client and the checkers built on it."""

    def __init__(self, config: Config):
        self.config = config

    async def initialize(self) -> BotCollaborators:
        bot = Bot(token=self.config.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        me = await bot.get_me()
        logger.info(f"✅ Bot API connected as @{me.username}")
        return BotCollaborators(
            bot=bot,
            subscriptions=TelegramSubscriptionChecker(bot),
            boosts=TelegramBoostChecker(bot),
        )
