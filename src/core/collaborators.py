"""
Ticky Assistant — Guarded collaborator calls.

Wraps the AI text generator and the messaging gateway with a per-call
timeout. Delivery never raises past this module; AI generation falls back
to a caller-supplied canned text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from src.config import settings

if TYPE_CHECKING:
    from src.ports.notification_port import Keyboard, NotificationPort

logger = logging.getLogger(__name__)

T = TypeVar("T")

TextGenerator = Callable[[str], Awaitable[str]]


class CollaboratorTimeout(Exception):
    """Raised when an external call exceeds its time budget."""


async def with_timeout(awaitable: Awaitable[T], what: str) -> T:
    """Await ``awaitable`` within COLLABORATOR_TIMEOUT_SECONDS."""
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.COLLABORATOR_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as exc:
        raise CollaboratorTimeout(
            f"{what} exceeded {settings.COLLABORATOR_TIMEOUT_SECONDS}s"
        ) from exc


async def deliver(
    notifier: NotificationPort,
    user_id: int,
    text: str,
    keyboard: Keyboard | None = None,
    markdown: bool = True,
) -> bool:
    """Send a message; any failure or timeout is logged and returned as False."""
    try:
        return bool(await with_timeout(
            notifier.send_message(user_id, text, keyboard=keyboard, markdown=markdown),
            f"delivery to {user_id}",
        ))
    except Exception as exc:
        logger.error("Delivery to user %d failed: %s", user_id, exc)
        return False


async def generate_or_fallback(
    generate: TextGenerator,
    prompt: str,
    fallback: str,
) -> tuple[str, bool]:
    """Call the AI collaborator; on failure return ``(fallback, False)``."""
    try:
        text = await with_timeout(generate(prompt), "AI generation")
    except Exception as exc:
        logger.warning("AI generation failed, using canned text: %s", exc)
        return fallback, False
    if not text or not text.strip():
        logger.warning("AI generation returned empty text, using canned text")
        return fallback, False
    return text.strip(), True
