"""Fire-and-forget dispatch of notification side effects."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Runs notification coroutines as detached tasks.

    Callers dispatch only after the triggering write has committed. A failing
    notification is logged and dropped; it is never awaited by the caller and
    never retried inline.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        """Schedule a notification coroutine without waiting for it.

        Args:
            coro: The coroutine performing the send.
            description: Short label used in log messages.
        """
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.error("No running event loop, dropping notification: %s", description)
            return

        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, description))

    def _on_done(self, task: asyncio.Task, description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Notification cancelled: %s", description)
            return
        error = task.exception()
        if error is not None:
            logger.error("Notification failed: %s: %s", description, str(error))

    @property
    def pending(self) -> int:
        """Number of notifications still in flight."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight notifications. Call at shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Global singleton instance
_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the global notification dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


async def shutdown_notification_dispatcher() -> None:
    """Drain pending notifications. Call at app shutdown."""
    if _dispatcher:
        await _dispatcher.drain()
