"""Tests for src.adapters.telegram_notifier — NotificationPort over telegram.Bot."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import Forbidden

from src.adapters.telegram_notifier import TelegramNotifier, build_markup


class TestBuildMarkup:
    def test_none_for_empty(self):
        assert build_markup(None) is None
        assert build_markup([]) is None

    def test_rows_and_callbacks(self):
        markup = build_markup([[("A", "a"), ("B", "b")], [("C", "c")]])
        assert isinstance(markup, InlineKeyboardMarkup)
        rows = markup.inline_keyboard
        assert [len(r) for r in rows] == [2, 1]
        assert rows[0][1].text == "B"
        assert rows[1][0].callback_data == "c"


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_plain(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot)

        assert await notifier.send_message(7, "hello") is True

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == 7
        assert kwargs["text"] == "hello"
        assert kwargs["parse_mode"] is None
        assert kwargs["reply_markup"] is None

    @pytest.mark.asyncio
    async def test_send_markdown_with_keyboard(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot)

        await notifier.send_message(7, "*hi*", keyboard=[[("ok", "done")]], markdown=True)

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN
        assert kwargs["reply_markup"].inline_keyboard[0][0].callback_data == "done"

    @pytest.mark.asyncio
    async def test_telegram_error_reported_as_false(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=Forbidden("bot was blocked by the user"))
        notifier = TelegramNotifier(bot)

        assert await notifier.send_message(7, "hello") is False
