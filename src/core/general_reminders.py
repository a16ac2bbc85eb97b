"""
Ticky Assistant — One-off reminder sweep.

Runs every minute. Each ACTIVE reminder whose time has come is delivered
and moved to COMPLETED; if the owner opted out of reminders, or delivery
fails, it is moved to DISMISSED instead. Either way it never fires twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from src.core.collaborators import deliver
from src.core.sweep_report import Outcome, SweepReport
from src.data.models import ReminderStatus

if TYPE_CHECKING:
    from src.data.db import ReminderDB, UserDB
    from src.data.models import Reminder
    from src.ports.notification_port import Keyboard, NotificationPort

logger = logging.getLogger(__name__)


def reminder_keyboard(reminder_id: int) -> Keyboard:
    return [
        [("✅ Готово", f"reminder_done_{reminder_id}")],
        [
            ("⏰ Через 15 мин", f"reminder_snooze_15_{reminder_id}"),
            ("⏰ Через час", f"reminder_snooze_60_{reminder_id}"),
        ],
        [("🔕 Отключить уведомления", "disable_all_reminders")],
    ]


async def _process(
    reminder: Reminder,
    reminder_db: ReminderDB,
    user_db: UserDB,
    notifier: NotificationPort,
) -> Outcome:
    user = user_db.get_user(reminder.user_id)
    if user is None:
        logger.warning("User %d not found for reminder #%d, dismissing", reminder.user_id, reminder.id)
        reminder_db.set_status(reminder.id, ReminderStatus.DISMISSED)
        return Outcome.SKIPPED

    if not user.daily_reminders:
        logger.info("User %d has disabled reminders, dismissing #%d", user.id, reminder.id)
        reminder_db.set_status(reminder.id, ReminderStatus.DISMISSED)
        return Outcome.SKIPPED

    delivered = await deliver(
        notifier,
        user.id,
        f"🔔 *Напоминание!*\n\n{reminder.message}",
        keyboard=reminder_keyboard(reminder.id),
    )
    if not delivered:
        reminder_db.set_status(reminder.id, ReminderStatus.DISMISSED)
        return Outcome.FAILED

    reminder_db.set_status(reminder.id, ReminderStatus.COMPLETED)
    logger.info("Sent reminder #%d to user %d", reminder.id, user.id)
    return Outcome.SENT


async def send_due_reminders(
    reminder_db: ReminderDB,
    user_db: UserDB,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    if now is None:
        now = datetime.now(timezone.utc)

    report = SweepReport("one-off reminders")
    for reminder in reminder_db.list_due(now):
        try:
            report.record(reminder.id, await _process(reminder, reminder_db, user_db, notifier))
        except Exception as exc:
            logger.error("Failed to send reminder %d: %s", reminder.id, exc)
            report.record(reminder.id, Outcome.FAILED, str(exc))

    if report.results:
        report.log_summary()
    return report
