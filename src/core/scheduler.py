"""
Ticky Assistant — Notification engine wiring.

Everything time-driven runs on one process-wide APScheduler instance:

- morning / evening AI broadcasts every 30 minutes (user-local gating);
- dependency-support sweeps at server-local MORNING_HOUR:00 / EVENING_HOUR:00;
- the one-off reminder sweep every minute;
- a midnight cleanup of reminders for inactive habits;
- one cron job per habit reminder, owned by HabitReminderRegistry.

This module is transport-agnostic: it depends on NotificationPort, not on
Telegram.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from src.config import settings
from src.core.broadcast import send_evening_summaries, send_morning_notifications
from src.core.clock import server_tz
from src.core.dependency_support import send_evening_check, send_morning_motivation
from src.core.general_reminders import send_due_reminders
from src.core.habit_reminders import HabitReminderRegistry
from src.core.quota import QuotaLedger
from src.data.db import DependencySupportDB, HabitDB, ReminderDB, TaskDB, UserDB

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from src.core.collaborators import TextGenerator
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class NotificationEngine:
    """Storage, collaborators and the habit registry, bundled for the jobs."""

    user_db: UserDB
    habit_db: HabitDB
    task_db: TaskDB
    reminder_db: ReminderDB
    support_db: DependencySupportDB
    notifier: NotificationPort
    registry: HabitReminderRegistry
    quota: QuotaLedger
    generate: TextGenerator | None = None

    # Job callbacks -----------------------------------------------------

    async def morning_broadcast(self) -> None:
        await send_morning_notifications(
            self.user_db, self.habit_db, self.task_db, self.notifier, self.generate,
        )

    async def evening_broadcast(self) -> None:
        await send_evening_summaries(
            self.user_db, self.habit_db, self.task_db, self.notifier, self.generate,
        )

    async def dependency_morning(self) -> None:
        await send_morning_motivation(self.support_db, self.notifier)

    async def dependency_evening(self) -> None:
        await send_evening_check(self.support_db, self.notifier)

    async def one_off_reminders(self) -> None:
        await send_due_reminders(self.reminder_db, self.user_db, self.notifier)

    async def cleanup_inactive(self) -> None:
        self.registry.cancel_inactive()


def build_engine(
    scheduler: BaseScheduler,
    notifier: NotificationPort,
    db_path: str | None = None,
    generate: TextGenerator | None = None,
) -> NotificationEngine:
    """Create the stores and the habit registry on top of ``scheduler``."""
    user_db = UserDB(db_path)
    habit_db = HabitDB(db_path)
    support_db = DependencySupportDB(db_path)
    return NotificationEngine(
        user_db=user_db,
        habit_db=habit_db,
        task_db=TaskDB(db_path),
        reminder_db=ReminderDB(db_path),
        support_db=support_db,
        notifier=notifier,
        registry=HabitReminderRegistry(scheduler, habit_db, user_db, notifier),
        quota=QuotaLedger(user_db, support_db),
        generate=generate,
    )


def register_jobs(scheduler: BaseScheduler, engine: NotificationEngine) -> list[str]:
    """Add every periodic job. Returns the job ids, in registration order."""
    tz = server_tz()
    jobs = [
        ("morning_ai_notifications", engine.morning_broadcast, CronTrigger(minute="*/30", timezone=tz)),
        ("evening_ai_notifications", engine.evening_broadcast, CronTrigger(minute="*/30", timezone=tz)),
        (
            "dependency_morning_motivation",
            engine.dependency_morning,
            CronTrigger(hour=settings.MORNING_HOUR, minute=0, timezone=tz),
        ),
        (
            "dependency_evening_check",
            engine.dependency_evening,
            CronTrigger(hour=settings.EVENING_HOUR, minute=0, timezone=tz),
        ),
        ("one_off_reminders", engine.one_off_reminders, CronTrigger(minute="*", timezone=tz)),
        ("habit_reminder_cleanup", engine.cleanup_inactive, CronTrigger(hour=0, minute=0, timezone=tz)),
    ]
    for job_id, func, trigger in jobs:
        scheduler.add_job(
            func,
            trigger,
            id=job_id,
            name=job_id.replace("_", " "),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
    logger.info("Registered %d notification jobs (server timezone %s)", len(jobs), settings.TIMEZONE)
    return [job_id for job_id, _, _ in jobs]


def restore_habit_reminders(engine: NotificationEngine) -> int:
    """Startup recovery: the only path that recreates per-habit jobs."""
    if not settings.HABIT_REMINDERS_ENABLED:
        logger.info("Individual habit reminders disabled - using AI notifications only")
        return 0
    return engine.registry.restore()
