"""
Ticky Assistant — SQLite storage.

Users, habits, tasks, one-off reminders and dependency-support sessions
persist in one SQLite file. Timestamps are stored as UTC ISO strings so
that range filters can be expressed directly in SQL.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from src.data.models import (
    DependencySupport,
    DependencyType,
    Frequency,
    Habit,
    Reminder,
    ReminderStatus,
    SubscriptionType,
    SupportStatus,
    Task,
    TaskStatus,
    User,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                         INTEGER PRIMARY KEY,
    first_name                 TEXT    NOT NULL DEFAULT '',
    timezone                   TEXT,
    daily_reminders            INTEGER NOT NULL DEFAULT 1,
    daily_reminders_used       INTEGER NOT NULL DEFAULT 0,
    daily_tasks_used           INTEGER NOT NULL DEFAULT 0,
    daily_habits_used          INTEGER NOT NULL DEFAULT 0,
    daily_ai_queries_used      INTEGER NOT NULL DEFAULT 0,
    daily_focus_sessions_used  INTEGER NOT NULL DEFAULT 0,
    last_usage_reset           TEXT,
    subscription_type          TEXT    NOT NULL DEFAULT 'FREE',
    is_trial_active            INTEGER NOT NULL DEFAULT 0,
    trial_ends                 TEXT,
    subscription_ends          TEXT
);
CREATE TABLE IF NOT EXISTS habits (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id              INTEGER NOT NULL,
    title                TEXT    NOT NULL,
    frequency            TEXT    NOT NULL DEFAULT 'DAILY',
    reminder_time        TEXT,
    is_active            INTEGER NOT NULL DEFAULT 1,
    current_streak       INTEGER NOT NULL DEFAULT 0,
    max_streak           INTEGER NOT NULL DEFAULT 0,
    total_completions    INTEGER NOT NULL DEFAULT 0,
    xp_reward            INTEGER NOT NULL DEFAULT 5,
    updated_at           TEXT,
    previous_updated_at  TEXT
);
CREATE TABLE IF NOT EXISTS habit_skips (
    habit_id   INTEGER NOT NULL,
    user_id    INTEGER NOT NULL,
    skip_date  TEXT    NOT NULL,
    PRIMARY KEY (habit_id, user_id, skip_date)
);
CREATE TABLE IF NOT EXISTS tasks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    title       TEXT    NOT NULL,
    status      TEXT    NOT NULL DEFAULT 'PENDING',
    created_at  TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS reminders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL,
    message         TEXT    NOT NULL,
    scheduled_time  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'ACTIVE'
);
CREATE TABLE IF NOT EXISTS dependency_support (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL,
    type               TEXT    NOT NULL,
    status             TEXT    NOT NULL DEFAULT 'ACTIVE',
    last_morning_sent  TEXT,
    total_promises     INTEGER NOT NULL DEFAULT 0
);
"""

# Counter columns a relative usage adjustment may touch
USAGE_COLUMNS = frozenset({
    "daily_reminders_used",
    "daily_tasks_used",
    "daily_habits_used",
    "daily_ai_queries_used",
    "daily_focus_sessions_used",
})


def to_iso(value: datetime | None) -> str | None:
    """Serialize an aware datetime as a fixed-width UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _SQLiteStore:
    """Shared connection handling; every store sees the full schema."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("%s schema initialized at %s", type(self).__name__, self._db_path)


class UserDB(_SQLiteStore):
    """Registered users, their plan and daily-usage counters."""

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            first_name=row["first_name"],
            timezone=row["timezone"],
            daily_reminders=bool(row["daily_reminders"]),
            daily_reminders_used=row["daily_reminders_used"],
            daily_tasks_used=row["daily_tasks_used"],
            daily_habits_used=row["daily_habits_used"],
            daily_ai_queries_used=row["daily_ai_queries_used"],
            daily_focus_sessions_used=row["daily_focus_sessions_used"],
            last_usage_reset=from_iso(row["last_usage_reset"]),
            subscription_type=SubscriptionType(row["subscription_type"]),
            is_trial_active=bool(row["is_trial_active"]),
            trial_ends=from_iso(row["trial_ends"]),
            subscription_ends=from_iso(row["subscription_ends"]),
        )

    def add_user(
        self,
        user_id: int,
        first_name: str = "",
        timezone_name: str | None = None,
    ) -> User:
        """Register a new user on the FREE plan."""
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO users (id, first_name, timezone) VALUES (?, ?, ?)",
                (user_id, first_name, timezone_name),
            )
        logger.info("User registered: %d '%s'", user_id, first_name)
        return User(id=user_id, first_name=first_name, timezone=timezone_name)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def set_timezone(self, user_id: int, timezone_name: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET timezone = ? WHERE id = ?", (timezone_name, user_id),
            )
        logger.info("Timezone for user %d set to %s", user_id, timezone_name)

    def set_daily_reminders(self, user_id: int, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET daily_reminders = ? WHERE id = ?", (int(enabled), user_id),
            )
        logger.info("Daily reminders for user %d: %s", user_id, "on" if enabled else "off")

    def set_subscription(
        self,
        user_id: int,
        subscription_type: SubscriptionType,
        ends: datetime | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET subscription_type = ?, subscription_ends = ? WHERE id = ?",
                (subscription_type.value, to_iso(ends), user_id),
            )

    def start_trial(self, user_id: int, trial_ends: datetime, now: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users
                SET is_trial_active = 1, trial_ends = ?, last_usage_reset = ?
                WHERE id = ?
                """,
                (to_iso(trial_ends), to_iso(now), user_id),
            )
        logger.info("Trial started for user %d until %s", user_id, trial_ends.isoformat())

    def reset_usage(self, user_id: int, now: datetime) -> None:
        """Zero every daily counter together and stamp the reset time."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users
                SET daily_reminders_used = 0,
                    daily_tasks_used = 0,
                    daily_habits_used = 0,
                    daily_ai_queries_used = 0,
                    daily_focus_sessions_used = 0,
                    last_usage_reset = ?
                WHERE id = ?
                """,
                (to_iso(now), user_id),
            )

    def adjust_usage(self, user_id: int, column: str, delta: int) -> None:
        """Apply a relative change to one usage counter. Not clamped."""
        if column not in USAGE_COLUMNS:
            raise ValueError(f"Unknown usage counter {column!r}")
        with self._connect() as conn:
            conn.execute(
                f"UPDATE users SET {column} = {column} + ? WHERE id = ?",
                (delta, user_id),
            )

    def list_broadcast_users(self, include_all_tasks: bool = False) -> list[User]:
        """Users with a timezone and at least one active habit or qualifying task.

        By default only PENDING tasks qualify; ``include_all_tasks`` widens
        that to any task (the evening summary reports on completed ones too).
        """
        task_filter = "" if include_all_tasks else "AND t.status = 'PENDING'"
        query = f"""
            SELECT u.* FROM users u
            WHERE u.timezone IS NOT NULL
              AND (
                EXISTS (SELECT 1 FROM habits h WHERE h.user_id = u.id AND h.is_active = 1)
                OR EXISTS (SELECT 1 FROM tasks t WHERE t.user_id = u.id {task_filter})
              )
            ORDER BY u.id
        """
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_user(r) for r in rows]


class HabitDB(_SQLiteStore):
    """Habits plus the per-day skip marks consulted by reminders."""

    @staticmethod
    def _row_to_habit(row: sqlite3.Row) -> Habit:
        return Habit(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            frequency=Frequency(row["frequency"]),
            reminder_time=row["reminder_time"],
            is_active=bool(row["is_active"]),
            current_streak=row["current_streak"],
            max_streak=row["max_streak"],
            total_completions=row["total_completions"],
            xp_reward=row["xp_reward"],
            updated_at=from_iso(row["updated_at"]),
            previous_updated_at=from_iso(row["previous_updated_at"]),
        )

    def add_habit(
        self,
        user_id: int,
        title: str,
        frequency: Frequency = Frequency.DAILY,
        reminder_time: str | None = None,
        xp_reward: int = 5,
        now: datetime | None = None,
    ) -> Habit:
        """Insert a habit. updated_at starts at yesterday so it is not 'done today'."""
        if now is None:
            now = _utcnow()
        yesterday = now - timedelta(days=1)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO habits
                    (user_id, title, frequency, reminder_time, xp_reward, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, title, frequency.value, reminder_time, xp_reward, to_iso(yesterday)),
            )
            habit_id = cursor.lastrowid

        logger.info("Habit added: #%d '%s' for user %d", habit_id, title, user_id)
        return Habit(
            id=habit_id,
            user_id=user_id,
            title=title,
            frequency=frequency,
            reminder_time=reminder_time,
            xp_reward=xp_reward,
            updated_at=from_iso(to_iso(yesterday)),
        )

    def get_habit(self, habit_id: int) -> Habit | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM habits WHERE id = ?", (habit_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_habit(row)

    def list_for_user(self, user_id: int, active_only: bool = True) -> list[Habit]:
        query = "SELECT * FROM habits WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_habit(r) for r in rows]

    def list_reminder_habits(self) -> list[Habit]:
        """Active habits that carry a reminder time."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM habits WHERE is_active = 1 AND reminder_time IS NOT NULL ORDER BY id"
            ).fetchall()
        return [self._row_to_habit(r) for r in rows]

    def list_inactive_ids(self) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id FROM habits WHERE is_active = 0").fetchall()
        return [r["id"] for r in rows]

    def set_active(self, habit_id: int, active: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE habits SET is_active = ? WHERE id = ?", (int(active), habit_id),
            )

    def touch(self, habit_id: int, now: datetime) -> None:
        """Stamp updated_at — the last completed/reminded marker."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE habits SET updated_at = ? WHERE id = ?", (to_iso(now), habit_id),
            )

    def complete(self, habit_id: int, now: datetime | None = None) -> Habit:
        """Record a completion, keeping the previous marker for undo."""
        if now is None:
            now = _utcnow()
        habit = self.get_habit(habit_id)
        if habit is None:
            raise ValueError(f"Habit {habit_id} not found")

        streak = habit.current_streak + 1
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE habits
                SET total_completions = total_completions + 1,
                    current_streak = ?,
                    max_streak = ?,
                    updated_at = ?,
                    previous_updated_at = ?
                WHERE id = ?
                """,
                (
                    streak,
                    max(habit.max_streak, streak),
                    to_iso(now),
                    to_iso(habit.updated_at),
                    habit_id,
                ),
            )
        logger.info("Habit #%d completed, streak %d", habit_id, streak)
        return self.get_habit(habit_id)

    def cancel_completion(self, habit_id: int, now: datetime | None = None) -> Habit:
        """Undo the last completion. The streak is not clamped at zero."""
        if now is None:
            now = _utcnow()
        habit = self.get_habit(habit_id)
        if habit is None:
            raise ValueError(f"Habit {habit_id} not found")

        restored = habit.previous_updated_at or (now - timedelta(days=1))
        streak = habit.current_streak - 1
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE habits
                SET total_completions = total_completions - 1,
                    current_streak = ?,
                    max_streak = ?,
                    updated_at = ?,
                    previous_updated_at = NULL
                WHERE id = ?
                """,
                (streak, max(habit.max_streak, streak), to_iso(restored), habit_id),
            )
        logger.info("Habit #%d completion cancelled, streak %d", habit_id, streak)
        return self.get_habit(habit_id)

    def mark_skipped(self, habit_id: int, user_id: int, day: date) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO habit_skips (habit_id, user_id, skip_date) VALUES (?, ?, ?)",
                (habit_id, user_id, day.isoformat()),
            )
        logger.info("Habit #%d skipped by user %d for %s", habit_id, user_id, day)

    def is_skipped(self, habit_id: int, user_id: int, day: date) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM habit_skips WHERE habit_id = ? AND user_id = ? AND skip_date = ?",
                (habit_id, user_id, day.isoformat()),
            ).fetchone()
        return row is not None


class TaskDB(_SQLiteStore):

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            status=TaskStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
        )

    def add_task(self, user_id: int, title: str) -> Task:
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO tasks (user_id, title, status, created_at) VALUES (?, ?, 'PENDING', ?)",
                (user_id, title, to_iso(now)),
            )
            task_id = cursor.lastrowid
        logger.info("Task added: #%d '%s' for user %d", task_id, title, user_id)
        return Task(id=task_id, user_id=user_id, title=title, created_at=from_iso(to_iso(now)))

    def complete_task(self, task_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = 'COMPLETED' WHERE id = ? AND status = 'PENDING'",
                (task_id,),
            )
        return cursor.rowcount > 0

    def list_for_user(
        self, user_id: int, status: TaskStatus | None = None,
    ) -> list[Task]:
        query = "SELECT * FROM tasks WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]


class ReminderDB(_SQLiteStore):
    """One-off reminders; terminal states are COMPLETED and DISMISSED."""

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            user_id=row["user_id"],
            message=row["message"],
            scheduled_time=from_iso(row["scheduled_time"]),
            status=ReminderStatus(row["status"]),
        )

    def add_reminder(self, user_id: int, message: str, scheduled_time: datetime) -> Reminder:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO reminders (user_id, message, scheduled_time) VALUES (?, ?, ?)",
                (user_id, message, to_iso(scheduled_time)),
            )
            reminder_id = cursor.lastrowid
        logger.info("Reminder #%d added for user %d at %s", reminder_id, user_id, scheduled_time)
        return Reminder(
            id=reminder_id,
            user_id=user_id,
            message=message,
            scheduled_time=from_iso(to_iso(scheduled_time)),
        )

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_due(self, now: datetime) -> list[Reminder]:
        """ACTIVE reminders whose scheduled time is at or before ``now``."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE status = 'ACTIVE' AND scheduled_time <= ?
                ORDER BY scheduled_time
                """,
                (to_iso(now),),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def set_status(self, reminder_id: int, status: ReminderStatus) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE reminders SET status = ? WHERE id = ?", (status.value, reminder_id),
            )

    def reschedule(self, reminder_id: int, scheduled_time: datetime) -> None:
        """Move a reminder to a new time and make it ACTIVE again."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE reminders SET scheduled_time = ?, status = 'ACTIVE' WHERE id = ?",
                (to_iso(scheduled_time), reminder_id),
            )


class DependencySupportDB(_SQLiteStore):
    """Dependency-support sessions and their optimistic morning bookkeeping."""

    @staticmethod
    def _row_to_support(row: sqlite3.Row) -> DependencySupport:
        return DependencySupport(
            id=row["id"],
            user_id=row["user_id"],
            type=DependencyType(row["type"]),
            status=SupportStatus(row["status"]),
            last_morning_sent=from_iso(row["last_morning_sent"]),
            total_promises=row["total_promises"],
        )

    def start_support(self, user_id: int, dependency_type: DependencyType) -> DependencySupport:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO dependency_support (user_id, type) VALUES (?, ?)",
                (user_id, dependency_type.value),
            )
            support_id = cursor.lastrowid
        logger.info(
            "Dependency support #%d (%s) started for user %d",
            support_id, dependency_type.value, user_id,
        )
        return DependencySupport(id=support_id, user_id=user_id, type=dependency_type)

    def get_support(self, support_id: int) -> DependencySupport | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM dependency_support WHERE id = ?", (support_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_support(row)

    def find_active(
        self, user_id: int, dependency_type: DependencyType,
    ) -> DependencySupport | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM dependency_support
                WHERE user_id = ? AND type = ? AND status = 'ACTIVE'
                """,
                (user_id, dependency_type.value),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_support(row)

    def count_active(self, user_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM dependency_support WHERE user_id = ? AND status = 'ACTIVE'",
                (user_id,),
            ).fetchone()
        return row["n"]

    def list_active(self) -> list[DependencySupport]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM dependency_support WHERE status = 'ACTIVE' ORDER BY id"
            ).fetchall()
        return [self._row_to_support(r) for r in rows]

    def list_morning_candidates(self, start_of_today: datetime) -> list[DependencySupport]:
        """ACTIVE sessions not yet sent a morning message since ``start_of_today``."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM dependency_support
                WHERE status = 'ACTIVE'
                  AND (last_morning_sent IS NULL OR last_morning_sent < ?)
                ORDER BY id
                """,
                (to_iso(start_of_today),),
            ).fetchall()
        return [self._row_to_support(r) for r in rows]

    def stop_support(self, support_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE dependency_support SET status = 'STOPPED' WHERE id = ? AND status = 'ACTIVE'",
                (support_id,),
            )
        stopped = cursor.rowcount > 0
        if stopped:
            logger.info("Dependency support #%d stopped", support_id)
        return stopped

    def record_morning_sent(self, support_id: int, now: datetime) -> bool:
        """Conditional update: count the promise only if the session is still ACTIVE.

        Returns False when the row was stopped in the meantime (zero rows matched).
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE dependency_support
                SET total_promises = total_promises + 1,
                    last_morning_sent = ?
                WHERE id = ? AND status = 'ACTIVE'
                """,
                (to_iso(now), support_id),
            )
        return cursor.rowcount > 0
