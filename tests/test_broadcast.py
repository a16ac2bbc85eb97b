"""Tests for src.core.broadcast — timezone-gated morning/evening sweeps."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from src.core.broadcast import (
    EVENING_KEYBOARD,
    MORNING_KEYBOARD,
    in_send_window,
    is_completed_today,
    send_evening_summaries,
    send_morning_notifications,
)
from src.core.sweep_report import Outcome
from src.data.models import Habit

MOSCOW = "Europe/Moscow"  # UTC+3, no DST


def _register(user_db, habit_db, user_id=1, tz=MOSCOW, name="Ann"):
    user_db.add_user(user_id, name, tz)
    return habit_db.add_habit(user_id, "Read", now=datetime(2026, 10, 1, tzinfo=timezone.utc))


class TestWindow:
    def test_inside_window(self):
        assert in_send_window(datetime(2026, 10, 19, 9, 7), 9, 10) is True

    def test_at_window_edge(self):
        assert in_send_window(datetime(2026, 10, 19, 9, 0), 9, 10) is True
        assert in_send_window(datetime(2026, 10, 19, 9, 10), 9, 10) is False

    def test_wrong_hour(self):
        assert in_send_window(datetime(2026, 10, 19, 8, 59), 9, 10) is False


class TestCompletedToday:
    def test_uses_user_local_date(self):
        tz = ZoneInfo(MOSCOW)
        # 22:30 UTC on the 18th is 01:30 on the 19th in Moscow
        habit = Habit(id=1, user_id=1, title="x",
                      updated_at=datetime(2026, 10, 18, 22, 30, tzinfo=timezone.utc))
        assert is_completed_today(habit, datetime(2026, 10, 19, 21, 5, tzinfo=tz)) is True

    def test_yesterday_is_not_today(self):
        tz = ZoneInfo(MOSCOW)
        habit = Habit(id=1, user_id=1, title="x",
                      updated_at=datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))
        assert is_completed_today(habit, datetime(2026, 10, 19, 21, 5, tzinfo=tz)) is False

    def test_never_updated(self):
        habit = Habit(id=1, user_id=1, title="x", updated_at=None)
        assert is_completed_today(habit, datetime.now(timezone.utc)) is False


class TestMorningSweep:
    @pytest.mark.asyncio
    async def test_sends_inside_local_window(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db)
        task_db.add_task(1, "Write report")
        generate = AsyncMock(return_value="Доброе утро, Ann!")

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=generate, now=now,
        )

        assert report.outcome_for(1) is Outcome.SENT
        prompt = generate.call_args.args[0]
        assert "Write report" in prompt
        assert "Read" in prompt
        args, kwargs = notifier.send_message.call_args
        assert args[1] == "Доброе утро, Ann!\n\n💪 Удачного дня!"
        assert kwargs["keyboard"] == MORNING_KEYBOARD

    @pytest.mark.asyncio
    async def test_outside_window_is_skipped(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db)
        generate = AsyncMock(return_value="hi")

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=generate, now=now + timedelta(minutes=6),
        )

        assert report.outcome_for(1) is Outcome.SKIPPED
        generate.assert_not_called()
        notifier.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_users_without_timezone_or_items_are_not_considered(
        self, user_db, habit_db, task_db, notifier, now,
    ):
        user_db.add_user(1, "NoTz")
        habit_db.add_habit(1, "Read")
        user_db.add_user(2, "Empty", MOSCOW)

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=AsyncMock(return_value="x"), now=now,
        )

        assert report.results == []

    @pytest.mark.asyncio
    async def test_ai_failure_uses_canned_text(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db)
        generate = AsyncMock(side_effect=RuntimeError("quota exceeded"))

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=generate, now=now,
        )

        assert report.outcome_for(1) is Outcome.SENT
        text = notifier.send_message.call_args.args[1]
        assert "Доброе утро, Ann!" in text
        assert text.endswith("💪 Удачного дня!")

    @pytest.mark.asyncio
    async def test_empty_ai_answer_uses_canned_text(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db)

        await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=AsyncMock(return_value="   "), now=now,
        )

        assert "Доброе утро" in notifier.send_message.call_args.args[1]

    @pytest.mark.asyncio
    async def test_one_bad_user_does_not_stop_the_sweep(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db, user_id=1, tz="Not/AZone")
        _register(user_db, habit_db, user_id=2)

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=AsyncMock(return_value="hi"), now=now,
        )

        assert report.outcome_for(1) is Outcome.FAILED
        assert report.outcome_for(2) is Outcome.SENT
        assert report.failed == 1 and report.sent == 1

    @pytest.mark.asyncio
    async def test_delivery_failure_recorded(self, user_db, habit_db, task_db, now):
        _register(user_db, habit_db)
        notifier = MagicMock()
        notifier.send_message = AsyncMock(return_value=False)

        report = await send_morning_notifications(
            user_db, habit_db, task_db, notifier, generate=AsyncMock(return_value="hi"), now=now,
        )

        assert report.outcome_for(1) is Outcome.FAILED


class TestEveningSweep:
    EVENING_UTC = datetime(2026, 10, 19, 18, 5, tzinfo=timezone.utc)  # 21:05 in Moscow

    @pytest.mark.asyncio
    async def test_ratios_in_prompt(self, user_db, habit_db, task_db, notifier):
        done = _register(user_db, habit_db)
        habit_db.add_habit(1, "Run", now=self.EVENING_UTC)
        habit_db.complete(done.id, now=self.EVENING_UTC - timedelta(hours=2))
        t1 = task_db.add_task(1, "A")
        task_db.add_task(1, "B")
        task_db.add_task(1, "C")
        task_db.add_task(1, "D")
        task_db.complete_task(t1.id)
        generate = AsyncMock(return_value="Отличный день")

        report = await send_evening_summaries(
            user_db, habit_db, task_db, notifier, generate=generate, now=self.EVENING_UTC,
        )

        assert report.outcome_for(1) is Outcome.SENT
        prompt = generate.call_args.args[0]
        assert "Прогресс по задачам: 25%" in prompt
        assert "Прогресс по привычкам: 50%" in prompt
        args, kwargs = notifier.send_message.call_args
        assert args[1] == "Отличный день\n\n😴 Спокойной ночи!"
        assert kwargs["keyboard"] == EVENING_KEYBOARD

    @pytest.mark.asyncio
    async def test_zero_tasks_is_zero_percent(self, user_db, habit_db, task_db, notifier):
        _register(user_db, habit_db)

        await send_evening_summaries(
            user_db, habit_db, task_db, notifier,
            generate=AsyncMock(side_effect=TimeoutError()), now=self.EVENING_UTC,
        )

        text = notifier.send_message.call_args.args[1]
        assert "Задачи выполнены на 0%" in text
        assert "Привычки выполнены на 0%" in text

    @pytest.mark.asyncio
    async def test_completed_tasks_only_user_still_gets_summary(self, user_db, task_db, habit_db, notifier):
        user_db.add_user(5, "Bob", MOSCOW)
        task = task_db.add_task(5, "Done already")
        task_db.complete_task(task.id)

        report = await send_evening_summaries(
            user_db, habit_db, task_db, notifier,
            generate=AsyncMock(return_value="ok"), now=self.EVENING_UTC,
        )

        assert report.outcome_for(5) is Outcome.SENT

    @pytest.mark.asyncio
    async def test_morning_time_is_skipped(self, user_db, habit_db, task_db, notifier, now):
        _register(user_db, habit_db)

        report = await send_evening_summaries(
            user_db, habit_db, task_db, notifier, generate=AsyncMock(return_value="x"), now=now,
        )

        assert report.outcome_for(1) is Outcome.SKIPPED
