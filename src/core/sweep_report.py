"""Per-item outcome collection for periodic sweeps.

Every sweep records one result per user/session/reminder it looked at, so a
single bad item never hides behind the batch and the run ends with one
summary log line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    item_id: int
    outcome: Outcome
    detail: str = ""


@dataclass
class SweepReport:
    name: str
    results: list[ItemResult] = field(default_factory=list)

    def record(self, item_id: int, outcome: Outcome, detail: str = "") -> None:
        self.results.append(ItemResult(item_id, outcome, detail))

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def sent(self) -> int:
        return self.count(Outcome.SENT)

    @property
    def skipped(self) -> int:
        return self.count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)

    def outcome_for(self, item_id: int) -> Outcome | None:
        for r in self.results:
            if r.item_id == item_id:
                return r.outcome
        return None

    def log_summary(self) -> None:
        logger.info(
            "%s: %d sent, %d skipped, %d failed (of %d)",
            self.name, self.sent, self.skipped, self.failed, len(self.results),
        )
