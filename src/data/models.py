"""
Ticky Assistant — Data Models.

Records the notification engine reads and writes. All timestamps are
timezone-aware datetimes; the storage layer converts to and from ISO strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ReminderStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DISMISSED = "DISMISSED"


class DependencyType(str, Enum):
    SMOKING = "SMOKING"
    ALCOHOL = "ALCOHOL"
    DRUGS = "DRUGS"
    GAMING = "GAMING"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"


class SupportStatus(str, Enum):
    ACTIVE = "ACTIVE"
    STOPPED = "STOPPED"


class SubscriptionType(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"


@dataclass
class User:
    """A registered chat user with plan and daily-usage state."""

    id: int
    first_name: str = ""
    timezone: str | None = None               # IANA name, e.g. "Europe/Berlin"
    daily_reminders: bool = True              # opt-out flag for all reminders
    daily_reminders_used: int = 0
    daily_tasks_used: int = 0
    daily_habits_used: int = 0
    daily_ai_queries_used: int = 0
    daily_focus_sessions_used: int = 0
    last_usage_reset: datetime | None = None
    subscription_type: SubscriptionType = SubscriptionType.FREE
    is_trial_active: bool = False
    trial_ends: datetime | None = None
    subscription_ends: datetime | None = None


@dataclass
class Habit:
    """A recurring habit with an optional free-text reminder time.

    ``updated_at`` doubles as the "last completed / last reminded" marker;
    ``previous_updated_at`` is the single-level undo buffer for the last
    completion.
    """

    id: int
    user_id: int
    title: str
    frequency: Frequency = Frequency.DAILY
    reminder_time: str | None = None
    is_active: bool = True
    current_streak: int = 0
    max_streak: int = 0
    total_completions: int = 0
    xp_reward: int = 5
    updated_at: datetime | None = None
    previous_updated_at: datetime | None = None


@dataclass
class Task:
    id: int
    user_id: int
    title: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime | None = None


@dataclass
class Reminder:
    """A one-off reminder delivered by the minute sweep."""

    id: int
    user_id: int
    message: str
    scheduled_time: datetime
    status: ReminderStatus = ReminderStatus.ACTIVE


@dataclass
class DependencySupport:
    """A user's opt-in to daily support for quitting a dependency."""

    id: int
    user_id: int
    type: DependencyType
    status: SupportStatus = SupportStatus.ACTIVE
    last_morning_sent: datetime | None = None
    total_promises: int = 0
