"""Wall-clock helpers: server-local time and per-user local time."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def server_tz() -> ZoneInfo:
    from src.config import settings

    return ZoneInfo(settings.TIMEZONE)


def server_now() -> datetime:
    return datetime.now(server_tz())


def local_now(timezone_name: str, now: datetime | None = None) -> datetime:
    """Current wall-clock time in an IANA zone.

    Raises ZoneInfoNotFoundError (a KeyError) for an unknown zone name.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(timezone_name))


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
