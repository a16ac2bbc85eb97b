"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
Delivery errors are logged and reported as False, never raised.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError

from src.ports.notification_port import Keyboard

logger = logging.getLogger(__name__)


def build_markup(keyboard: Keyboard | None) -> InlineKeyboardMarkup | None:
    """Convert (text, callback_data) rows into an InlineKeyboardMarkup."""
    if not keyboard:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(text, callback_data=data) for text, data in row]
        for row in keyboard
    ])


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self,
        user_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> bool:
        try:
            await self._bot.send_message(
                chat_id=user_id,
                text=text,
                reply_markup=build_markup(keyboard),
                parse_mode=ParseMode.MARKDOWN if markdown else None,
            )
        except TelegramError as exc:
            logger.error("Telegram delivery to %d failed: %s", user_id, exc)
            return False
        return True
