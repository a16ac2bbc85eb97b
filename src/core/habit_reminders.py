"""
Ticky Assistant — Per-habit reminders.

Owns the in-memory map from ``habit_reminder_<id>`` (and a pending
``habit_snooze_<id>``) to live APScheduler jobs (create / replace /
cancel), restores them from storage at startup, and implements the
dedup-guarded reminder send that every firing goes through.

A second ``schedule()`` for the same habit always replaces the previous
job; ``cancel()`` is idempotent.
"""

from __future__ import annotations

import logging
import random
import threading
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from src.config import settings
from src.core.clock import server_now, server_tz
from src.core.collaborators import deliver
from src.core.reminder_patterns import compile_pattern
from src.core.sweep_report import Outcome

if TYPE_CHECKING:
    from apscheduler.job import Job
    from apscheduler.schedulers.base import BaseScheduler

    from src.data.db import HabitDB, UserDB
    from src.data.models import Habit
    from src.ports.notification_port import Keyboard, NotificationPort
    from src.ports.skip_port import SkipChecker

logger = logging.getLogger(__name__)

# Canned phrasings keyed by a phrase that must occur in the habit title
_REMINDER_MESSAGES: dict[str, list[str]] = {
    "пить воду каждый час": [
        "💧 Время пить воду! Не забывайте о гидратации!",
        "🚰 Пора выпить стакан воды! Ваш организм скажет спасибо!",
        "💦 Напоминание: время для воды! Поддерживайте водный баланс!",
    ],
    "делать зарядку": [
        "🏃‍♂️ Время для зарядки! Разомните тело!",
        "💪 Пора делать упражнения! Ваше тело ждет движения!",
        "🤸‍♀️ Время зарядки! Несколько упражнений придадут бодрости!",
    ],
    "медитация": [
        "🧘‍♂️ Время для медитации. Найдите несколько минут для себя!",
        "🌸 Пора помедитировать! Успокойте ум и расслабьтесь!",
        "☯️ Время внутренней гармонии! Несколько минут медитации!",
    ],
}


_CRON_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def cron_trigger(expression: str, tz: tzinfo) -> CronTrigger:
    """Build a trigger from a standard five-field crontab line.

    Standard cron numbers weekdays from Sunday (0 or 7) while APScheduler
    counts from Monday, so numeric weekdays are passed on as names.
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Expected 5 cron fields, got {len(fields)}: {expression!r}")
    minute, hour, day, month, day_of_week = fields
    parts = day_of_week.split(",")
    if all(part.isdigit() for part in parts):
        if any(int(part) > 7 for part in parts):
            raise ValueError(f"Day of week out of range: {expression!r}")
        day_of_week = ",".join(_CRON_WEEKDAYS[int(part)] for part in parts)
    return CronTrigger(
        minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week, timezone=tz,
    )


def reminder_message(habit: Habit) -> str:
    """Pick a canned phrasing by keyword, or the generic template."""
    title = habit.title.lower()
    for key, messages in _REMINDER_MESSAGES.items():
        if key in title:
            return random.choice(messages)
    return f"⏰ *Напоминание о привычке*\n\n🎯 {habit.title}\n\nВремя выполнить вашу привычку!"


def reminder_keyboard(habit_id: int) -> Keyboard:
    return [
        [
            ("✅ Выполнил", f"complete_habit_{habit_id}"),
            ("⏰ Отложить на 15 мин", f"snooze_habit_{habit_id}_15"),
        ],
        [
            ("📊 Статистика", f"habit_stats_{habit_id}"),
            ("❌ Пропустить сегодня", f"skip_habit_{habit_id}"),
        ],
        [("🔕 Отключить уведомления", "disable_all_reminders")],
    ]


class StoredSkipChecker:
    """SkipChecker backed by the habit_skips table, keyed by server-local date."""

    def __init__(self, habit_db: HabitDB) -> None:
        self._habit_db = habit_db

    def is_habit_skipped_today(self, habit_id: int, user_id: int) -> bool:
        return self._habit_db.is_skipped(habit_id, user_id, server_now().date())


async def send_habit_reminder(
    habit: Habit,
    *,
    user_db: UserDB,
    habit_db: HabitDB,
    notifier: NotificationPort,
    skip_checker: SkipChecker,
    now: datetime | None = None,
    snoozed_at: datetime | None = None,
) -> Outcome:
    """Send one habit reminder unless a precondition says not to.

    Checks, in order: owner exists, owner has reminders on, habit not
    skipped today, no reminder/completion within the dedup window. On
    success the reminder is delivered and ``updated_at`` is stamped
    whatever the delivery outcome was.

    A snoozed send passes ``snoozed_at`` (when the user asked to be
    reminded later). The window is then measured from that moment, so the
    reminder the user snoozed does not suppress it, but a completion or
    another reminder made since does.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    user = user_db.get_user(habit.user_id)
    if user is None:
        logger.warning("User %d not found for habit %d", habit.user_id, habit.id)
        return Outcome.SKIPPED

    if not user.daily_reminders:
        logger.info("User %d has disabled reminders, skipping habit %d", user.id, habit.id)
        return Outcome.SKIPPED

    if skip_checker.is_habit_skipped_today(habit.id, user.id):
        logger.info("Habit %d is skipped for today, not sending reminder", habit.id)
        return Outcome.SKIPPED

    if snoozed_at is not None:
        if habit.updated_at is not None and habit.updated_at > snoozed_at:
            logger.info("Habit %d was completed or reminded since the snooze, skipping", habit.id)
            return Outcome.SKIPPED
    else:
        window = timedelta(minutes=settings.REMINDER_DEDUP_MINUTES)
        if habit.updated_at is not None and habit.updated_at > now - window:
            logger.info("Habit reminder for %d was already sent recently, skipping", habit.id)
            return Outcome.SKIPPED

    delivered = await deliver(
        notifier, user.id, reminder_message(habit), keyboard=reminder_keyboard(habit.id),
    )
    habit_db.touch(habit.id, now)

    if not delivered:
        return Outcome.FAILED
    logger.info("Sent reminder for habit '%s' to user %d", habit.title, user.id)
    return Outcome.SENT


class HabitReminderRegistry:
    """Sole owner of per-habit reminder jobs on the process-wide scheduler."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        habit_db: HabitDB,
        user_db: UserDB,
        notifier: NotificationPort,
        skip_checker: SkipChecker | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._habit_db = habit_db
        self._user_db = user_db
        self._notifier = notifier
        self._skip_checker = skip_checker or StoredSkipChecker(habit_db)
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()

    @staticmethod
    def job_key(habit_id: int) -> str:
        return f"habit_reminder_{habit_id}"

    @staticmethod
    def snooze_key(habit_id: int) -> str:
        return f"habit_snooze_{habit_id}"

    @property
    def active_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._jobs)

    def schedule(self, habit: Habit) -> bool:
        """Create (or replace) the reminder job for a habit.

        Returns False when the reminder pattern cannot be compiled.
        """
        cron = compile_pattern(habit.reminder_time, habit.frequency)
        if cron is None:
            logger.warning(
                "Could not parse reminder pattern %r for habit %d",
                habit.reminder_time, habit.id,
            )
            return False

        key = self.job_key(habit.id)
        with self._lock:
            self._remove(key)
            try:
                job = self._scheduler.add_job(
                    self._fire,
                    cron_trigger(cron, server_tz()),
                    args=[habit.id],
                    id=key,
                    name=f"Reminder for habit #{habit.id}",
                    replace_existing=True,
                )
            except ValueError as exc:
                logger.error("Failed to schedule reminder for habit %d: %s", habit.id, exc)
                return False
            self._jobs[key] = job

        logger.info("Scheduled reminder for habit '%s' with pattern: %s", habit.title, cron)
        return True

    def cancel(self, habit_id: int) -> bool:
        """Stop and forget the habit's jobs, a pending snooze included.

        Unknown keys are a no-op.
        """
        with self._lock:
            removed = self._remove(self.job_key(habit_id))
            snoozed = self._remove(self.snooze_key(habit_id))
        if not (removed or snoozed):
            return False
        logger.info("Cancelled reminder for habit %d", habit_id)
        return True

    def reschedule(self, habit_id: int) -> bool:
        """Cancel, then schedule again if the stored habit is still eligible."""
        self.cancel(habit_id)
        habit = self._habit_db.get_habit(habit_id)
        if habit is None or not habit.is_active or not habit.reminder_time:
            return False
        return self.schedule(habit)

    def restore(self) -> int:
        """Re-derive every live schedule from storage. Returns how many were created."""
        count = 0
        for habit in self._habit_db.list_reminder_habits():
            if self.schedule(habit):
                count += 1
        logger.info("Restored %d habit reminder(s)", count)
        return count

    def cancel_inactive(self) -> int:
        """Nightly cleanup: drop jobs of habits that are no longer active."""
        cancelled = sum(1 for habit_id in self._habit_db.list_inactive_ids() if self.cancel(habit_id))
        logger.info("Cleaned up %d inactive habit reminder(s)", cancelled)
        return cancelled

    def snooze(self, habit_id: int, minutes: int, now: datetime | None = None) -> None:
        """Re-send the reminder once after ``minutes``.

        The job carries the request time, so a completion or another
        reminder in between still suppresses it.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        key = self.snooze_key(habit_id)
        with self._lock:
            self._remove(key)
            self._jobs[key] = self._scheduler.add_job(
                self._fire,
                DateTrigger(run_date=now + timedelta(minutes=minutes)),
                args=[habit_id],
                kwargs={"snoozed_at": now},
                id=key,
                name=f"Snoozed reminder for habit #{habit_id}",
                replace_existing=True,
            )
        logger.info("Snoozed habit %d for %d minutes", habit_id, minutes)

    async def send(self, habit: Habit, snoozed_at: datetime | None = None) -> Outcome:
        return await send_habit_reminder(
            habit,
            user_db=self._user_db,
            habit_db=self._habit_db,
            notifier=self._notifier,
            skip_checker=self._skip_checker,
            snoozed_at=snoozed_at,
        )

    async def _fire(self, habit_id: int, snoozed_at: datetime | None = None) -> None:
        """Job callback: reload the habit so the dedup guard sees fresh state."""
        if snoozed_at is not None:
            # One-shot jobs leave the scheduler once they run
            with self._lock:
                self._jobs.pop(self.snooze_key(habit_id), None)
        try:
            habit = self._habit_db.get_habit(habit_id)
            if habit is None or not habit.is_active:
                logger.warning("Habit %d missing or inactive, dropping its reminder", habit_id)
                self.cancel(habit_id)
                return
            await self.send(habit, snoozed_at=snoozed_at)
        except Exception as exc:
            logger.error("Failed to send reminder for habit %d: %s", habit_id, exc)

    def _remove(self, key: str) -> bool:
        """Drop one tracked job. Caller holds ``self._lock``."""
        if self._jobs.pop(key, None) is None:
            return False
        try:
            self._scheduler.remove_job(key)
        except JobLookupError:
            logger.debug("Job %s already gone from scheduler", key)
        return True
