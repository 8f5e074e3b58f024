"""
Notification dispatch — fire-and-forget messages after an order changes.

Notifications are side effects of a committed change, never part of it:
they run as post-commit hooks, and a failing hook is logged and dropped.
The order outcome returned to the caller does not depend on delivery.
"""
import logging
from typing import Any, Awaitable, Callable, Protocol

import httpx

logger = logging.getLogger(__name__)

ORDER_CREATED = "order_created"
ORDER_STATUS_CHANGED = "order_status_changed"

PostCommitHook = Callable[[], Awaitable[Any]]


class Notifier(Protocol):
    async def notify(self, kind: str, order_id: str, data: dict | None = None) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes the notification to the application log."""

    async def notify(self, kind: str, order_id: str, data: dict | None = None) -> None:
        logger.info(f"Notification {kind} for order {order_id}: {data or {}}")


class HttpNotifier:
    """POST notifications as JSON to an HTTP endpoint (e.g. the mailer service)."""

    def __init__(self, url: str, *, timeout_seconds: float = 5.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def notify(self, kind: str, order_id: str, data: dict | None = None) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                self.url,
                json={"kind": kind, "orderId": order_id, "data": data or {}},
            )
            response.raise_for_status()
        logger.debug(f"Notification {kind} for order {order_id} delivered to {self.url}")


def build_notifier(url: str = "", timeout_seconds: float = 5.0) -> Notifier:
    if url:
        return HttpNotifier(url, timeout_seconds=timeout_seconds)
    return LoggingNotifier()


async def run_post_commit(hooks: list[PostCommitHook]) -> int:
    """
    Run hooks in order after a commit. Each failure is isolated.

    Returns:
        Number of hooks that failed
    """
    failed = 0
    for hook in hooks:
        try:
            await hook()
        except Exception as e:
            failed += 1
            logger.warning(f"Post-commit hook {getattr(hook, '__name__', hook)!r} failed: {e}")
    return failed


def notification_hook(notifier: Notifier, kind: str, order_id: str, data: dict | None = None) -> PostCommitHook:
    async def _notify() -> None:
        await notifier.notify(kind, order_id, data)

    _notify.__name__ = f"notify_{kind}"
    return _notify
