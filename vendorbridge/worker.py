"""
Reconciliation worker - poll loop and periodic sweep.

Usage:
    python -m vendorbridge.worker              # run forever
    python -m vendorbridge.worker --once poll  # one claim-and-poll batch (cron)
    python -m vendorbridge.worker --once sweep # one expiry sweep + stale recovery
"""

import argparse
import asyncio
import signal
import time
from collections.abc import Awaitable
from typing import TypeVar
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError

from vendorbridge.config import Settings, get_reconciler_config, settings
from vendorbridge.db.session import close_engines, get_engine, get_session_factory
from vendorbridge.exceptions import ReconciliationError
from vendorbridge.observability import get_logger, setup_logging, setup_tracing
from vendorbridge.observability.metrics import metrics
from vendorbridge.observability.tracing import instrument_sqlalchemy
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.polling import PollingService
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.sweep import ExpirySweep
from vendorbridge.services.telemetry import VendorCallRecorder

logger = get_logger(__name__)

T = TypeVar("T")


class ReconciliationWorker:
    """Claims due poll units and runs them under a concurrency bound."""

    def __init__(
        self, polling: PollingService, sweep: ExpirySweep, app_settings: Settings
    ) -> None:
        self.polling = polling
        self.sweep = sweep
        self.concurrency = app_settings.worker_concurrency
        self.idle_seconds = app_settings.worker_idle_seconds
        self.sweep_interval = app_settings.sweep_interval_seconds
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def poll_batch(self) -> int:
        """Claim and run one batch of due polls. Returns the number claimed."""
        order_ids = await self.polling.claim_due_orders(limit=self.concurrency * 2)
        if order_ids:
            await asyncio.gather(*(self._run_poll(order_id) for order_id in order_ids))
        return len(order_ids)

    async def sweep_once(self) -> None:
        await self.sweep.run_sweep()
        await self.sweep.recover_stale()

    async def run_forever(self) -> None:
        logger.info(
            "worker_started",
            concurrency=self.concurrency,
            sweep_interval_seconds=self.sweep_interval,
        )
        last_sweep = 0.0
        while not self._stopping.is_set():
            if time.monotonic() - last_sweep >= self.sweep_interval:
                await self._guarded(self.sweep_once(), "sweep")
                last_sweep = time.monotonic()

            claimed = await self._guarded(self.poll_batch(), "poll_batch")
            if not claimed:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.idle_seconds)
                except TimeoutError:
                    pass
        logger.info("worker_stopped")

    async def _run_poll(self, order_id: UUID) -> None:
        """One poll unit. A crash stays with its order; the claim lease brings it back."""
        async with self._semaphore:
            try:
                await self._guarded(self.polling.poll_order(order_id), "poll_order")
            except Exception as exc:
                logger.error(
                    "worker_poll_unit_crashed",
                    order_id=str(order_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                metrics.record_error(type(exc).__name__, "poll_order")

    async def _guarded(self, coro: Awaitable[T], operation: str) -> T | None:
        """Background failures are logged; the loop keeps going."""
        try:
            return await coro
        except (ReconciliationError, SQLAlchemyError) as exc:
            logger.error(
                "worker_unit_failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None


async def main(once: str | None = None) -> None:
    setup_logging()
    setup_tracing()
    instrument_sqlalchemy(get_engine())

    config = get_reconciler_config()
    session_factory = get_session_factory()

    async with httpx.AsyncClient() as http_client:
        registry = ProviderRegistry.from_settings(
            settings, http_client, config, VendorCallRecorder(session_factory)
        )
        notifier = NotificationDispatcher(http_client, settings.notification_url)
        worker = ReconciliationWorker(
            PollingService(session_factory, registry, config, notifier),
            ExpirySweep(session_factory, registry, config, notifier),
            settings,
        )
        try:
            if once == "poll":
                claimed = await worker.poll_batch()
                logger.info("poll_batch_completed", claimed=claimed)
            elif once == "sweep":
                await worker.sweep_once()
            else:
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, worker.stop)
                await worker.run_forever()
        finally:
            await notifier.drain()
            await close_engines()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VendorBridge reconciliation worker")
    parser.add_argument(
        "--once",
        choices=("poll", "sweep"),
        help="Run a single pass and exit instead of looping",
    )
    return parser.parse_args(argv)


def cli() -> None:
    args = parse_args()
    asyncio.run(main(args.once))


if __name__ == "__main__":
    cli()
