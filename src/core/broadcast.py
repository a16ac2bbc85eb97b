"""
Ticky Assistant — Timezone-gated daily broadcasts.

One shared job runs every 30 minutes. For each eligible user it computes
the user's local wall-clock time and fires the morning message only when
the local time falls inside ``[MORNING_HOUR:00, MORNING_HOUR:SEND_WINDOW)``,
and likewise the evening summary around EVENING_HOUR. A 10-minute window
against a 30-minute period means each occasion is caught once per day
without a per-user timer; a sweep that runs late or a process that is down
for the whole window misses that day.

Users are processed one after another; a failure for one user is recorded
in the sweep report and the sweep moves on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from src.config import settings
from src.core import prompts
from src.core.clock import local_now
from src.core.collaborators import TextGenerator, deliver, generate_or_fallback
from src.core.sweep_report import Outcome, SweepReport
from src.data.models import TaskStatus

if TYPE_CHECKING:
    from src.data.db import HabitDB, TaskDB, UserDB
    from src.data.models import Habit, Task, User
    from src.ports.notification_port import Keyboard, NotificationPort

logger = logging.getLogger(__name__)

MORNING_KEYBOARD: Keyboard = [
    [("🎯 Мои привычки", "my_habits")],
    [("📝 Мои задачи", "my_tasks")],
]

EVENING_KEYBOARD: Keyboard = [
    [("📊 Мой прогресс", "my_progress")],
    [("🏠 Главное меню", "back_to_menu")],
]


# ---------------------------------------------------------------------------
# Gating and progress helpers
# ---------------------------------------------------------------------------


def in_send_window(local: datetime, hour: int, window_minutes: int | None = None) -> bool:
    """True when ``local`` is within the first ``window_minutes`` of ``hour``."""
    if window_minutes is None:
        window_minutes = settings.SEND_WINDOW_MINUTES
    return local.hour == hour and local.minute < window_minutes


def is_completed_today(habit: Habit, user_local_now: datetime) -> bool:
    """Whether the habit's last update falls on the user's current local date."""
    if habit.updated_at is None:
        return False
    last_local = habit.updated_at.astimezone(user_local_now.tzinfo)
    return last_local.date() == user_local_now.date()


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return part / whole * 100


def _habit_line(habit: Habit) -> str:
    return f"Привычка {habit.title} - текущий стрик по привычке {habit.current_streak}"


# ---------------------------------------------------------------------------
# Per-user senders
# ---------------------------------------------------------------------------


async def _send_morning(
    user: User,
    habits: list[Habit],
    tasks: list[Task],
    notifier: NotificationPort,
    generate: TextGenerator,
) -> bool:
    tasks_text = ", ".join(t.title for t in tasks)
    habits_text = ", ".join(_habit_line(h) for h in habits)

    advice, _ = await generate_or_fallback(
        generate,
        prompts.morning_prompt(user.first_name, tasks_text, habits_text),
        prompts.morning_fallback(user.first_name, tasks_text, habits_text),
    )
    return await deliver(
        notifier, user.id, f"{advice}\n\n💪 Удачного дня!", keyboard=MORNING_KEYBOARD,
    )


async def _send_evening(
    user: User,
    habits: list[Habit],
    tasks: list[Task],
    user_local_now: datetime,
    notifier: NotificationPort,
    generate: TextGenerator,
) -> bool:
    completed_tasks = [t for t in tasks if t.status is TaskStatus.COMPLETED]
    completed_habits = [h for h in habits if is_completed_today(h, user_local_now)]
    task_progress = _percent(len(completed_tasks), len(tasks))
    habit_progress = _percent(len(completed_habits), len(habits))

    prompt = prompts.evening_prompt(
        user.first_name,
        all_tasks_text=", ".join(t.title for t in tasks),
        completed_tasks_text=", ".join(t.title for t in completed_tasks),
        task_progress=task_progress,
        all_habits_text=", ".join(h.title for h in habits),
        completed_habits_text=", ".join(_habit_line(h) for h in completed_habits),
        habit_progress=habit_progress,
    )
    analysis, _ = await generate_or_fallback(
        generate, prompt, prompts.evening_fallback(task_progress, habit_progress),
    )
    return await deliver(
        notifier, user.id, f"{analysis}\n\n😴 Спокойной ночи!", keyboard=EVENING_KEYBOARD,
    )


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


async def send_morning_notifications(
    user_db: UserDB,
    habit_db: HabitDB,
    task_db: TaskDB,
    notifier: NotificationPort,
    generate: TextGenerator | None = None,
    now: datetime | None = None,
) -> SweepReport:
    """Morning sweep: AI day plan for users whose local time is just past MORNING_HOUR."""
    if generate is None:
        from src.core.llm import generate_text as generate
    if now is None:
        now = datetime.now(timezone.utc)

    report = SweepReport("morning broadcast")
    for user in user_db.list_broadcast_users():
        try:
            local = local_now(user.timezone, now)
            if not in_send_window(local, settings.MORNING_HOUR):
                logger.debug("Skipping user %d, their local time is %s", user.id, local)
                report.record(user.id, Outcome.SKIPPED, "outside window")
                continue

            habits = habit_db.list_for_user(user.id)
            tasks = task_db.list_for_user(user.id, status=TaskStatus.PENDING)
            if await _send_morning(user, habits, tasks, notifier, generate):
                logger.info("Sent morning AI notification to user %d", user.id)
                report.record(user.id, Outcome.SENT)
            else:
                report.record(user.id, Outcome.FAILED, "delivery failed")
        except Exception as exc:
            logger.error("Failed to send morning AI notification to %d: %s", user.id, exc)
            report.record(user.id, Outcome.FAILED, str(exc))

    report.log_summary()
    return report


async def send_evening_summaries(
    user_db: UserDB,
    habit_db: HabitDB,
    task_db: TaskDB,
    notifier: NotificationPort,
    generate: TextGenerator | None = None,
    now: datetime | None = None,
) -> SweepReport:
    """Evening sweep: AI day review with task and habit completion ratios."""
    if generate is None:
        from src.core.llm import generate_text as generate
    if now is None:
        now = datetime.now(timezone.utc)

    report = SweepReport("evening broadcast")
    for user in user_db.list_broadcast_users(include_all_tasks=True):
        try:
            local = local_now(user.timezone, now)
            if not in_send_window(local, settings.EVENING_HOUR):
                logger.debug("Skipping user %d, their local time is %s", user.id, local)
                report.record(user.id, Outcome.SKIPPED, "outside window")
                continue

            habits = habit_db.list_for_user(user.id)
            tasks = task_db.list_for_user(user.id)
            if await _send_evening(user, habits, tasks, local, notifier, generate):
                logger.info("Sent evening AI summary to user %d", user.id)
                report.record(user.id, Outcome.SENT)
            else:
                report.record(user.id, Outcome.FAILED, "delivery failed")
        except Exception as exc:
            logger.error("Failed to send evening AI summary to %d: %s", user.id, exc)
            report.record(user.id, Outcome.FAILED, str(exc))

    report.log_summary()
    return report
