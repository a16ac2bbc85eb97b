"""Skip-check port — tells reminder code whether a habit was skipped today."""

from __future__ import annotations

from typing import Protocol


class SkipChecker(Protocol):

    def is_habit_skipped_today(self, habit_id: int, user_id: int) -> bool: ...
