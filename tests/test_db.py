"""Tests for src.data.db — SQLite stores."""

import pytest
from datetime import date, datetime, timedelta, timezone

from src.data.db import from_iso, to_iso
from src.data.models import (
    DependencyType,
    Frequency,
    ReminderStatus,
    SubscriptionType,
    SupportStatus,
    TaskStatus,
)


class TestIsoHelpers:
    def test_fixed_width_utc(self):
        value = datetime(2026, 10, 19, 9, 0, tzinfo=timezone(timedelta(hours=3)))
        assert to_iso(value) == "2026-10-19T06:00:00.000000+00:00"

    def test_naive_treated_as_utc(self):
        assert from_iso(to_iso(datetime(2026, 1, 1))) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_none(self):
        assert to_iso(None) is None
        assert from_iso(None) is None


class TestUserDB:
    def test_add_and_get(self, user_db):
        user_db.add_user(1, "Ann", "Europe/Moscow")
        user = user_db.get_user(1)
        assert user.first_name == "Ann"
        assert user.timezone == "Europe/Moscow"
        assert user.daily_reminders is True
        assert user.subscription_type is SubscriptionType.FREE

    def test_get_missing(self, user_db):
        assert user_db.get_user(404) is None

    def test_adjust_and_reset_usage(self, user_db, now):
        user_db.add_user(1)
        user_db.adjust_usage(1, "daily_tasks_used", 1)
        user_db.adjust_usage(1, "daily_habits_used", -1)
        user = user_db.get_user(1)
        assert (user.daily_tasks_used, user.daily_habits_used) == (1, -1)

        user_db.reset_usage(1, now)
        user = user_db.get_user(1)
        assert (user.daily_tasks_used, user.daily_habits_used) == (0, 0)
        assert user.last_usage_reset == now

    def test_adjust_rejects_unknown_column(self, user_db):
        user_db.add_user(1)
        with pytest.raises(ValueError):
            user_db.adjust_usage(1, "id", 1)

    def test_start_trial(self, user_db, now):
        user_db.add_user(1)
        user_db.start_trial(1, now + timedelta(days=7), now)
        user = user_db.get_user(1)
        assert user.is_trial_active is True
        assert user.trial_ends == now + timedelta(days=7)

    def test_broadcast_users(self, user_db, habit_db, task_db):
        user_db.add_user(1, "Habit", "UTC")
        habit_db.add_habit(1, "Read")
        user_db.add_user(2, "Task", "UTC")
        task_db.add_task(2, "Pay bills")
        user_db.add_user(3, "Done", "UTC")
        done = task_db.add_task(3, "Old")
        task_db.complete_task(done.id)
        user_db.add_user(4, "NoTz")
        habit_db.add_habit(4, "Read")
        user_db.add_user(5, "Inactive", "UTC")
        inactive = habit_db.add_habit(5, "Gone")
        habit_db.set_active(inactive.id, False)

        assert [u.id for u in user_db.list_broadcast_users()] == [1, 2]
        assert [u.id for u in user_db.list_broadcast_users(include_all_tasks=True)] == [1, 2, 3]


class TestHabitDB:
    def test_new_habit_not_done_today(self, habit_db, now):
        habit = habit_db.add_habit(1, "Read", Frequency.WEEKLY, "10:00", now=now)
        stored = habit_db.get_habit(habit.id)
        assert stored.frequency is Frequency.WEEKLY
        assert stored.reminder_time == "10:00"
        assert stored.updated_at == now - timedelta(days=1)
        assert stored.xp_reward == 5

    def test_complete_tracks_streaks(self, habit_db, now):
        habit = habit_db.add_habit(1, "Read", now=now)
        habit_db.complete(habit.id, now)
        stored = habit_db.complete(habit.id, now + timedelta(days=1))
        assert stored.current_streak == 2
        assert stored.max_streak == 2
        assert stored.total_completions == 2
        assert stored.previous_updated_at == now

    def test_cancel_restores_previous_marker(self, habit_db, now):
        habit = habit_db.add_habit(1, "Read", now=now)
        habit_db.complete(habit.id, now)
        stored = habit_db.cancel_completion(habit.id, now)
        assert stored.updated_at == now - timedelta(days=1)
        assert stored.current_streak == 0
        assert stored.previous_updated_at is None

    def test_cancel_without_buffer_uses_yesterday(self, habit_db, now):
        habit = habit_db.add_habit(1, "Read", now=now - timedelta(days=5))
        stored = habit_db.cancel_completion(habit.id, now)
        assert stored.updated_at == now - timedelta(days=1)
        assert stored.current_streak == -1

    def test_complete_missing_raises(self, habit_db):
        with pytest.raises(ValueError):
            habit_db.complete(404)

    def test_reminder_and_inactive_listing(self, habit_db):
        a = habit_db.add_habit(1, "A", reminder_time="09:00")
        habit_db.add_habit(1, "B")
        c = habit_db.add_habit(1, "C", reminder_time="10:00")
        habit_db.set_active(c.id, False)

        assert [h.id for h in habit_db.list_reminder_habits()] == [a.id]
        assert habit_db.list_inactive_ids() == [c.id]
        assert len(habit_db.list_for_user(1)) == 2
        assert len(habit_db.list_for_user(1, active_only=False)) == 3

    def test_skips_are_per_day(self, habit_db):
        habit_db.mark_skipped(1, 1, date(2026, 10, 19))
        habit_db.mark_skipped(1, 1, date(2026, 10, 19))
        assert habit_db.is_skipped(1, 1, date(2026, 10, 19)) is True
        assert habit_db.is_skipped(1, 1, date(2026, 10, 20)) is False


class TestTaskDB:
    def test_complete_once(self, task_db):
        task = task_db.add_task(1, "Write")
        assert task_db.complete_task(task.id) is True
        assert task_db.complete_task(task.id) is False
        assert task_db.list_for_user(1, status=TaskStatus.PENDING) == []
        assert task_db.list_for_user(1)[0].status is TaskStatus.COMPLETED


class TestReminderDB:
    def test_due_and_reschedule(self, reminder_db, now):
        due = reminder_db.add_reminder(1, "Now", now - timedelta(minutes=1))
        reminder_db.add_reminder(1, "Later", now + timedelta(minutes=1))
        assert [r.id for r in reminder_db.list_due(now)] == [due.id]

        reminder_db.set_status(due.id, ReminderStatus.COMPLETED)
        assert reminder_db.list_due(now) == []

        reminder_db.reschedule(due.id, now)
        stored = reminder_db.get_reminder(due.id)
        assert stored.status is ReminderStatus.ACTIVE
        assert stored.scheduled_time == now


class TestDependencySupportDB:
    def test_find_and_count_active(self, support_db):
        support_db.start_support(1, DependencyType.SMOKING)
        support_db.start_support(1, DependencyType.GAMING)
        assert support_db.count_active(1) == 2
        assert support_db.find_active(1, DependencyType.GAMING).type is DependencyType.GAMING
        assert support_db.find_active(1, DependencyType.ALCOHOL) is None

    def test_stop_is_one_way(self, support_db):
        support = support_db.start_support(1, DependencyType.SMOKING)
        assert support_db.stop_support(support.id) is True
        assert support_db.stop_support(support.id) is False
        assert support_db.get_support(support.id).status is SupportStatus.STOPPED
        assert support_db.list_active() == []

    def test_record_morning_sent_is_conditional(self, support_db, now):
        support = support_db.start_support(1, DependencyType.SMOKING)
        assert support_db.record_morning_sent(support.id, now) is True

        support_db.stop_support(support.id)
        assert support_db.record_morning_sent(support.id, now + timedelta(days=1)) is False
        stored = support_db.get_support(support.id)
        assert stored.total_promises == 1
        assert stored.last_morning_sent == now

    def test_morning_candidates(self, support_db, now):
        sent = support_db.start_support(1, DependencyType.SMOKING)
        fresh = support_db.start_support(2, DependencyType.ALCOHOL)
        support_db.record_morning_sent(sent.id, now)

        midnight = now.replace(hour=0, minute=0)
        assert [s.id for s in support_db.list_morning_candidates(midnight)] == [fresh.id]
        tomorrow = midnight + timedelta(days=1)
        assert len(support_db.list_morning_candidates(tomorrow)) == 2
