"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides stores backed by one temp SQLite file.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ADMIN_USER_IDS", "999")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all stores in a test."""
    return str(tmp_path / "test_ticky.db")


@pytest.fixture
def user_db(db_path):
    from src.data.db import UserDB
    return UserDB(db_path=db_path)


@pytest.fixture
def habit_db(db_path):
    from src.data.db import HabitDB
    return HabitDB(db_path=db_path)


@pytest.fixture
def task_db(db_path):
    from src.data.db import TaskDB
    return TaskDB(db_path=db_path)


@pytest.fixture
def reminder_db(db_path):
    from src.data.db import ReminderDB
    return ReminderDB(db_path=db_path)


@pytest.fixture
def support_db(db_path):
    from src.data.db import DependencySupportDB
    return DependencySupportDB(db_path=db_path)


@pytest.fixture
def notifier():
    """NotificationPort double that reports every delivery as successful."""
    mock = MagicMock()
    mock.send_message = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def now():
    """A fixed Monday morning, 06:07 UTC."""
    return datetime(2026, 10, 19, 6, 7, tzinfo=timezone.utc)
