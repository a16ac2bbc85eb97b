"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
Implementations must not raise: delivery failures are reported as False.
"""

from __future__ import annotations

from typing import Protocol

# Inline keyboard as rows of (button text, callback data) pairs
Keyboard = list[list[tuple[str, str]]]


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(
        self,
        user_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> bool: ...
