"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
Replies are composed by an LLM and occasionally carry unbalanced Markdown,
so a parse failure is retried once as plain text.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
        except BadRequest as exc:
            if "parse" not in str(exc).lower():
                raise
            logger.warning("Markdown rejected for chat %d, resending as plain text: %s", chat_id, exc)
            await self._bot.send_message(chat_id=chat_id, text=text)
