"""Telegram transport: typing indicators and text replies."""

import logging

from telegram import Bot
from telegram.constants import ChatAction
from telegram.error import TelegramError

from .logging import JSONLLogger, get_logger

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n... [truncated]"


class TelegramTransport:
    """Fire-and-forget sends through the Telegram Bot API.

    Errors are logged, never raised to the caller.
    """

    def __init__(
        self,
        token: str | None = None,
        bot: Bot | None = None,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        if bot is None:
            if not token:
                raise ValueError("TELEGRAM_TOKEN not set")
            bot = Bot(token)
        self.bot = bot
        self.json_logger = json_logger or get_logger()

    async def start(self) -> None:
        await self.bot.initialize()

    async def stop(self) -> None:
        await self.bot.shutdown()

    async def send_typing_indicator(self, chat_id: str) -> bool:
        """Show "typing…" in the chat."""
        try:
            await self.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        except TelegramError as e:
            logger.warning("Typing indicator failed for %s: %s", chat_id, e)
            return False
        return True

    async def send_text(self, chat_id: str, text: str) -> bool:
        """Send a text message. Returns False if delivery failed."""
        try:
            await self.bot.send_message(chat_id=chat_id, text=truncate_message(text))
        except TelegramError as e:
            logger.error("Error sending message to %s: %s", chat_id, e)
            self.json_logger.log("send_failed", chat_id=chat_id, error=str(e))
            return False
        return True

    async def set_webhook(self, url: str) -> bool:
        """Point Telegram's webhook at url."""
        return await self.bot.set_webhook(url=url)
