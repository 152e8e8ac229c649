"""
Polling Service - one status check per unit of work.

The self-rescheduling chain lives in the database: ``next_check_at`` marks
the next due check. The worker claims due orders (pushing the marker to the end of a short
lease, so an order has at most one check in flight), calls the vendor without any
lock, then applies the result and sets the successor marker in a single
commit.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order, utc_now
from vendorbridge.exceptions import (
    ConcurrencyError,
    VendorRejectedError,
    VendorUnreachableError,
)
from vendorbridge.models.api import OrderCategory, OrderStatus
from vendorbridge.models.domain import CallClass, ObservationSource, ReconcileOutcome, VendorObservation
from vendorbridge.observability import log_context, trace_operation
from vendorbridge.observability.metrics import metrics
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.reconciler import OrderReconciler
from vendorbridge.services.sweep import ACTIVE_STATUSES, resolve_or_expire

logger = get_logger(__name__)


class PollingService:
    """Active polling of vendor status for phone and SMM orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ProviderRegistry,
        config: ReconcilerConfig,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.config = config
        self.notifier = notifier

    async def claim_due_orders(self, limit: int, now: datetime | None = None) -> list[UUID]:
        """
        Claim up to ``limit`` orders whose check is due.

        Rows locked by another claimer are skipped. Claiming moves
        next_check_at to the end of a lease; the unit replaces it with the
        successor when it finishes. A unit that dies mid-way leaves the lease,
        so the order becomes due again once it runs out.
        """
        now = now or utc_now()
        lease_until = now + timedelta(seconds=self.config.poll_claim_lease_seconds)
        stmt = (
            select(Order.id)
            .where(
                Order.next_check_at.is_not(None),
                Order.next_check_at <= now,
                Order.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Order.next_check_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            order_ids = list(result.scalars().all())
            if order_ids:
                await session.execute(
                    update(Order)
                    .where(Order.id.in_(order_ids))
                    .values(next_check_at=lease_until, version=Order.version + 1)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
        return order_ids

    async def poll_order(self, order_id: UUID) -> ReconcileOutcome | None:
        """
        Run one poll unit.

        Returns None when nothing was applied (order gone or final, vendor
        error rescheduled as a retry).
        """
        with log_context(order_id=str(order_id)), trace_operation(
            "poll_order", order_id=str(order_id)
        ):
            async with self.session_factory() as session:
                return await self._poll(session, order_id)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _poll(self, session: AsyncSession, order_id: UUID) -> ReconcileOutcome | None:
        order = await session.get(Order, order_id)
        if order is None or not OrderStatus(order.status).is_active:
            metrics.polls_total.labels(result="skipped").inc()
            return None
        if order.provider_order_id is None:
            logger.warning("poll_without_vendor_reference", order_id=str(order_id))
            order.next_check_at = None
            await session.commit()
            metrics.polls_total.labels(result="skipped").inc()
            return None

        provider = self.registry.get(order.provider)
        # End the read transaction: nothing is held across the vendor call
        await session.commit()

        if order.expires_at is not None and order.expires_at <= utc_now():
            outcome = await resolve_or_expire(session, provider, order, self.config, self.notifier)
            metrics.polls_total.labels(result="expired").inc()
            return outcome

        try:
            result = await provider.check_status(
                order.provider_order_id, owner_ref=order.owner_ref, call_class=CallClass.BACKGROUND
            )
        except (VendorUnreachableError, VendorRejectedError) as exc:
            await self._schedule_retry(session, order_id, str(exc))
            metrics.polls_total.labels(result="vendor_error").inc()
            return None

        reconciler = OrderReconciler(session, self.config, self.notifier)
        try:
            outcome = await reconciler.apply_observation(
                order_id,
                VendorObservation.from_status(result, ObservationSource.POLL),
                schedule=self._schedule_next,
            )
        except ConcurrencyError as exc:
            await self._schedule_retry(session, order_id, str(exc))
            metrics.polls_total.labels(result="conflict").inc()
            return None

        metrics.polls_total.labels(result=outcome.decision).inc()
        return outcome

    def _interval(self, order: Order) -> timedelta:
        if order.category == OrderCategory.SMM.value:
            return timedelta(seconds=self.config.smm_poll_interval_seconds)
        return timedelta(seconds=self.config.poll_interval_seconds)

    def _schedule_next(self, order: Order) -> None:
        """Successor marker for an order still active after a successful check."""
        order.poll_failures = 0
        order.check_attempts += 1
        if order.check_attempts >= self.config.poll_max_attempts:
            order.next_check_at = None
            logger.warning(
                "poll_chain_exhausted",
                order_id=str(order.id),
                attempts=order.check_attempts,
            )
            return
        order.next_check_at = utc_now() + self._interval(order)

    async def _schedule_retry(self, session: AsyncSession, order_id: UUID, error: str) -> None:
        """Re-run the same check later, bounded; order state is untouched."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None or not OrderStatus(order.status).is_active:
            await session.commit()
            return

        order.poll_failures += 1
        if order.poll_failures > self.config.poll_max_retries:
            order.next_check_at = None
            logger.warning(
                "poll_retries_exhausted",
                order_id=str(order_id),
                failures=order.poll_failures,
                error=error,
            )
        else:
            order.next_check_at = utc_now() + timedelta(
                seconds=self.config.poll_retry_delay_seconds
            )
            logger.info(
                "poll_retry_scheduled",
                order_id=str(order_id),
                failures=order.poll_failures,
                error=error,
            )
        await session.commit()
