"""Reminder pattern compiler — pure business logic.

Turns a free-text reminder time ("every 2 hours", "каждые 15 минут",
"09:30") plus the habit frequency into a five-field cron expression.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import re

from src.data.models import Frequency

DAILY_FALLBACK = "0 9 * * *"

_CLOCK_TIME = re.compile(r"(\d{1,2}):(\d{2})")

# Ordered: the first rule whose phrase occurs in the text wins.
_HOUR_RULES: list[tuple[tuple[str, ...], str]] = [
    (("каждый час", "hourly"), "0 * * * *"),
    (("каждые 2 часа", "every 2 hours"), "0 */2 * * *"),
    (("каждые 3 часа", "every 3 hours"), "0 */3 * * *"),
    (("каждые 4 часа", "every 4 hours"), "0 */4 * * *"),
    (("каждые 6 часов", "every 6 hours"), "0 */6 * * *"),
]

_MINUTE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("каждую минуту", "every minute"), "* * * * *"),
    (("каждые две минуты", "каждые 2 минуты", "every 2 minutes"), "*/2 * * * *"),
    (("каждые три минуты", "каждые 3 минуты", "every 3 minutes"), "*/3 * * * *"),
    (("каждые пять минут", "каждые 5 минут", "every 5 minutes"), "*/5 * * * *"),
    (("каждые десять минут", "каждые 10 минут", "every 10 minutes"), "*/10 * * * *"),
    (("каждые 15 минут", "every 15 minutes"), "*/15 * * * *"),
    (("каждые 30 минут", "каждые полчаса", "every 30 minutes"), "*/30 * * * *"),
]


def _match(text: str, rules: list[tuple[tuple[str, ...], str]]) -> str | None:
    for phrases, cron in rules:
        if any(phrase in text for phrase in phrases):
            return cron
    return None


def _clock_time_cron(text: str, frequency: Frequency) -> str | None:
    """'HH:MM' → daily at that time, or Mondays at that time for WEEKLY."""
    match = _CLOCK_TIME.search(text)
    if match is None:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    if frequency is Frequency.DAILY:
        return f"{minutes} {hours} * * *"
    if frequency is Frequency.WEEKLY:
        return f"{minutes} {hours} * * 1"
    return None


def compile_pattern(reminder_time: str | None, frequency: Frequency | str) -> str | None:
    """Compile a reminder phrase into a cron expression.

    Returns None when nothing matches and the habit is not DAILY: an
    unparsable pattern is a normal outcome, not an error.
    """
    frequency = Frequency(frequency)
    text = (reminder_time or "").strip().lower()

    cron = _match(text, _HOUR_RULES)
    if cron is None:
        cron = _clock_time_cron(text, frequency)
    if cron is None:
        cron = _match(text, _MINUTE_RULES)
    if cron is None and frequency is Frequency.DAILY:
        cron = DAILY_FALLBACK
    return cron
