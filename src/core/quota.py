"""
Ticky Assistant — Usage quota ledger.

Per-user, per-feature daily allowances. One ledger serves every gated
feature, parameterized by a limit table keyed by plan:

- admins (ADMIN_USER_IDS) are always allowed and never counted;
- PREMIUM until ``subscription_ends``, or FREE with a running trial,
  gets the PREMIUM limits;
- ``-1`` means unlimited, and unlimited plans keep no counters;
- counters reset together, on access, the first time a day is seen in
  server-local time.

Counters are adjusted relatively and ``decrement`` does not clamp at zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from src.config import settings
from src.core.clock import server_now, server_tz
from src.data.models import SubscriptionType

if TYPE_CHECKING:
    from src.data.db import DependencySupportDB, UserDB
    from src.data.models import User

logger = logging.getLogger(__name__)

UNLIMITED = -1


class Feature(str, Enum):
    DAILY_REMINDERS = "daily_reminders"
    DAILY_TASKS = "daily_tasks"
    DAILY_HABITS = "daily_habits"
    DAILY_AI_QUERIES = "daily_ai_queries"
    FOCUS_SESSIONS = "focus_sessions"
    DEPENDENCIES = "dependencies"


# Counter column per feature; DEPENDENCIES is a gauge over active sessions.
_COUNTER_COLUMNS: dict[Feature, str] = {
    Feature.DAILY_REMINDERS: "daily_reminders_used",
    Feature.DAILY_TASKS: "daily_tasks_used",
    Feature.DAILY_HABITS: "daily_habits_used",
    Feature.DAILY_AI_QUERIES: "daily_ai_queries_used",
    Feature.FOCUS_SESSIONS: "daily_focus_sessions_used",
}

_FEATURE_NAMES: dict[Feature, str] = {
    Feature.DAILY_REMINDERS: "напоминаний",
    Feature.DAILY_TASKS: "задач",
    Feature.DAILY_HABITS: "привычек",
    Feature.DAILY_AI_QUERIES: "запросов к ИИ",
    Feature.FOCUS_SESSIONS: "сессий фокуса",
    Feature.DEPENDENCIES: "зависимостей",
}

LimitTable = dict[SubscriptionType, dict[Feature, int]]

DEFAULT_LIMITS: LimitTable = {
    SubscriptionType.FREE: {
        Feature.DAILY_REMINDERS: 5,
        Feature.DAILY_TASKS: 10,
        Feature.DAILY_HABITS: 3,
        Feature.DAILY_AI_QUERIES: 10,
        Feature.FOCUS_SESSIONS: 3,
        Feature.DEPENDENCIES: 1,
    },
    SubscriptionType.PREMIUM: {feature: UNLIMITED for feature in Feature},
}


@dataclass
class LimitCheck:
    allowed: bool
    current: int
    limit: int
    remaining: int
    message: str | None = None


def is_trial_active(user: User, now: datetime) -> bool:
    return bool(user.is_trial_active and user.trial_ends is not None and now < user.trial_ends)


def is_premium_active(user: User, now: datetime) -> bool:
    """A paid plan with no end date is open-ended."""
    if user.subscription_type is not SubscriptionType.PREMIUM:
        return False
    return user.subscription_ends is None or now < user.subscription_ends


def limit_message(feature: Feature, limit: int) -> str:
    """Friendly upgrade prompt shown when a check is denied."""
    return (
        f"🚫 Достигнут лимит {_FEATURE_NAMES[feature]} ({limit}/день)\n\n"
        "💎 Обновитесь до Premium для увеличения лимитов!"
    )


class QuotaLedger:
    """Checks and meters feature usage against the user's plan."""

    def __init__(
        self,
        user_db: UserDB,
        support_db: DependencySupportDB | None = None,
        admin_ids: list[int] | None = None,
        limits: LimitTable | None = None,
    ) -> None:
        self._user_db = user_db
        self._support_db = support_db
        self._admin_ids = set(settings.ADMIN_USER_IDS if admin_ids is None else admin_ids)
        self._limits = limits or DEFAULT_LIMITS

    def is_admin(self, user_id: int) -> bool:
        return user_id in self._admin_ids

    def effective_plan(self, user: User, now: datetime | None = None) -> SubscriptionType:
        """PREMIUM until it ends, or FREE promoted to PREMIUM while a trial runs."""
        if now is None:
            now = server_now()
        if is_premium_active(user, now):
            return SubscriptionType.PREMIUM
        if is_trial_active(user, now):
            return SubscriptionType.PREMIUM
        return SubscriptionType.FREE

    def limit_for(self, user: User, feature: Feature, now: datetime | None = None) -> int:
        return self._limits[self.effective_plan(user, now)].get(feature, UNLIMITED)

    def reset_if_needed(self, user: User, now: datetime | None = None) -> bool:
        """Zero all counters when the last reset was not today (server-local)."""
        if now is None:
            now = server_now()
        today = now.astimezone(server_tz()).date()
        last = user.last_usage_reset
        if last is not None and last.astimezone(server_tz()).date() == today:
            return False

        self._user_db.reset_usage(user.id, now)
        for column in _COUNTER_COLUMNS.values():
            setattr(user, column, 0)
        user.last_usage_reset = now
        logger.info("Reset daily limits for user %d", user.id)
        return True

    def _current(self, user: User, feature: Feature) -> int:
        if feature is Feature.DEPENDENCIES:
            if self._support_db is None:
                return 0
            return self._support_db.count_active(user.id)
        return getattr(user, _COUNTER_COLUMNS[feature])

    def check_limit(
        self, user_id: int, feature: Feature, now: datetime | None = None,
    ) -> LimitCheck:
        """Whether one more use of ``feature`` is within the user's allowance."""
        if self.is_admin(user_id):
            return LimitCheck(allowed=True, current=0, limit=UNLIMITED, remaining=UNLIMITED)

        user = self._user_db.get_user(user_id)
        if user is None:
            return LimitCheck(
                allowed=False, current=0, limit=0, remaining=0,
                message="Пользователь не найден",
            )

        self.reset_if_needed(user, now)
        limit = self.limit_for(user, feature, now)
        current = self._current(user, feature)
        if limit == UNLIMITED:
            return LimitCheck(allowed=True, current=current, limit=UNLIMITED, remaining=UNLIMITED)

        allowed = current < limit
        return LimitCheck(
            allowed=allowed,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
            message=None if allowed else limit_message(feature, limit),
        )

    def _adjust(self, user_id: int, feature: Feature, delta: int, now: datetime | None) -> bool:
        if self.is_admin(user_id) or feature not in _COUNTER_COLUMNS:
            return False
        user = self._user_db.get_user(user_id)
        if user is None:
            logger.warning("Usage adjustment for unknown user %d ignored", user_id)
            return False

        self.reset_if_needed(user, now)
        if self.limit_for(user, feature, now) == UNLIMITED:
            return False
        self._user_db.adjust_usage(user_id, _COUNTER_COLUMNS[feature], delta)
        return True

    def increment(self, user_id: int, feature: Feature, now: datetime | None = None) -> bool:
        """Count one use. Returns False when nothing was counted."""
        counted = self._adjust(user_id, feature, 1, now)
        if counted:
            logger.info("Incremented %s usage for user %d", feature.value, user_id)
        return counted

    def decrement(self, user_id: int, feature: Feature, now: datetime | None = None) -> bool:
        """Give one use back. Not clamped: the counter may go negative."""
        return self._adjust(user_id, feature, -1, now)

    def start_trial(self, user_id: int, now: datetime | None = None) -> datetime:
        if now is None:
            now = server_now()
        ends = now + timedelta(days=settings.TRIAL_DAYS)
        self._user_db.start_trial(user_id, ends, now)
        return ends

    def usage_summary(self, user_id: int, now: datetime | None = None) -> str:
        """Human-readable plan and usage overview for /limits."""
        if self.is_admin(user_id):
            return "👑 *Администратор*\n\n♾️ Все функции без ограничений!"

        user = self._user_db.get_user(user_id)
        if user is None:
            return "Пользователь не найден"

        if now is None:
            now = server_now()
        self.reset_if_needed(user, now)
        plan = self.effective_plan(user, now)
        if plan is SubscriptionType.PREMIUM:
            if is_premium_active(user, now):
                header = "💎 *Premium*"
                if user.subscription_ends is not None:
                    ends = user.subscription_ends.astimezone(server_tz())
                    header += f" до {ends.strftime('%d.%m.%Y')}"
            else:
                header = "🎁 *Пробный период активен*"
            return f"{header}\n\n♾️ Все функции без ограничений!"

        lines = ["🆓 *Бесплатная версия*", "", "📊 *Использование сегодня:*"]
        for feature in Feature:
            limit = self._limits[plan].get(feature, UNLIMITED)
            current = self._current(user, feature)
            if limit == UNLIMITED:
                lines.append(f"• {_FEATURE_NAMES[feature]}: {current} (♾️)")
            else:
                remaining = max(0, limit - current)
                lines.append(
                    f"• {_FEATURE_NAMES[feature]}: {current}/{limit} (осталось: {remaining})"
                )
        return "\n".join(lines)
