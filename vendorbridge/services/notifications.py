"""
Notification Dispatcher - fire-and-forget user notifications.

Sent after an order reaches a terminal state. Delivery runs in a background
task; failures are logged and never reach the reconciliation unit that
triggered them.
"""

import asyncio
from dataclasses import asdict, dataclass

import httpx
from structlog import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderNotification:
    """Terminal-state notice for one order."""

    order_id: str
    owner_ref: str
    category: str
    status: str
    refunded_minor: int = 0


class NotificationDispatcher:
    """
    Posts OrderNotification JSON to a configured URL.

    Without a URL (or client) notifications are only logged.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, url: str = "") -> None:
        self.http_client = http_client
        self.url = url
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self, notification: OrderNotification) -> None:
        """Schedule delivery and return immediately."""
        task = asyncio.create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _deliver(self, notification: OrderNotification) -> None:
        logger.info(
            "order_notification",
            order_id=notification.order_id,
            owner_ref=notification.owner_ref,
            status=notification.status,
            refunded_minor=notification.refunded_minor,
        )
        if self.http_client is None or not self.url:
            return
        try:
            response = await self.http_client.post(
                self.url, json=asdict(notification), timeout=10.0
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "order_notification_failed",
                order_id=notification.order_id,
                error=str(exc),
            )
