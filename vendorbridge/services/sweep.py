"""
Expiry Sweep - periodic safety net for orders no event resolved.

Phone orders past their expiry (or older than the age ceiling) are checked
with the vendor once; anything the vendor cannot resolve is force-expired,
with a best-effort vendor cancel and the usual refund guard.

eSIM and SMM orders are never force-expired. recover_stale() re-queries the
old ones to pick up results whose webhook never arrived.
"""

from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order, utc_now
from vendorbridge.exceptions import (
    ReconciliationError,
    VendorRejectedError,
    VendorUnreachableError,
)
from vendorbridge.models.api import OrderCategory, OrderStatus
from vendorbridge.models.domain import (
    CallClass,
    ObservationSource,
    ReconcileOutcome,
    StatusResult,
    SweepReport,
    VendorObservation,
)
from vendorbridge.observability import log_context, trace_operation
from vendorbridge.observability.metrics import metrics
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.base import VendorProvider
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.reconciler import OrderReconciler

logger = get_logger(__name__)

ACTIVE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)


async def query_vendor_once(provider: VendorProvider, order: Order) -> StatusResult | None:
    """One background status check; None when the vendor could not answer."""
    if order.provider_order_id is None:
        return None
    try:
        return await provider.check_status(
            order.provider_order_id, owner_ref=order.owner_ref, call_class=CallClass.BACKGROUND
        )
    except (VendorUnreachableError, VendorRejectedError) as exc:
        logger.warning(
            "sweep_vendor_check_failed",
            order_id=str(order.id),
            provider=order.provider,
            error=str(exc),
        )
        return None


async def resolve_or_expire(
    session: AsyncSession,
    provider: VendorProvider,
    order: Order,
    config: ReconcilerConfig,
    notifier: NotificationDispatcher | None = None,
) -> ReconcileOutcome:
    """
    Expired order: ask the vendor once, then force expiry if still unresolved.

    A final vendor status other than expired is applied normally. Otherwise
    the order is expired; the vendor status and any payload seen in the same
    check are recorded, and the refund guard decides about the credit.
    """
    reconciler = OrderReconciler(session, config, notifier)
    result = await query_vendor_once(provider, order)

    observation = None
    if result is not None:
        observation = VendorObservation.from_status(result, ObservationSource.SWEEP)
        if result.canonical.is_final and result.canonical != OrderStatus.EXPIRED:
            outcome = await reconciler.apply_observation(order.id, observation)
            if outcome.status.is_final:
                return outcome

    if order.provider_order_id is not None:
        await _cancel_best_effort(provider, order)

    return await reconciler.force_expire(order.id, observation)


async def _cancel_best_effort(provider: VendorProvider, order: Order) -> None:
    try:
        result = await provider.cancel_order(
            order.provider_order_id, owner_ref=order.owner_ref, call_class=CallClass.BACKGROUND
        )
    except ReconciliationError as exc:
        logger.warning(
            "sweep_vendor_cancel_failed",
            order_id=str(order.id),
            provider=order.provider,
            error=str(exc),
        )
        return
    if not result.success:
        logger.warning(
            "sweep_vendor_cancel_failed",
            order_id=str(order.id),
            provider=order.provider,
            error=result.message,
        )


class ExpirySweep:
    """Batch pass over overdue orders."""

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

    async def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """Expire-or-resolve every overdue active phone order in one batch."""
        now = now or utc_now()
        with trace_operation("expiry_sweep"):
            order_ids = await self._overdue_phone_orders(now)
            report = await self._process(order_ids, self._sweep_one)
        logger.info("expiry_sweep_completed", **asdict(report))
        return report

    async def recover_stale(self, now: datetime | None = None) -> SweepReport:
        """Re-query old active eSIM/SMM orders and apply what the vendor says."""
        now = now or utc_now()
        with trace_operation("stale_recovery"):
            order_ids = await self._stale_async_orders(now)
            report = await self._process(order_ids, self._recover_one)
        logger.info("stale_recovery_completed", **asdict(report))
        return report

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _process(
        self,
        order_ids: list[UUID],
        unit: Callable[[UUID], Awaitable[ReconcileOutcome | None]],
    ) -> SweepReport:
        updated = expired = refunded = failed = 0
        for order_id in order_ids:
            with log_context(order_id=str(order_id)):
                try:
                    outcome = await unit(order_id)
                except (ReconciliationError, SQLAlchemyError) as exc:
                    failed += 1
                    metrics.sweep_orders_total.labels(result="failed").inc()
                    logger.error(
                        "sweep_order_failed",
                        order_id=str(order_id),
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    continue

            if outcome is None:
                metrics.sweep_orders_total.labels(result="skipped").inc()
                continue
            if outcome.decision in ("apply", "attach"):
                updated += 1
            if outcome.status == OrderStatus.EXPIRED:
                expired += 1
            if outcome.refunded_minor:
                refunded += 1
            metrics.sweep_orders_total.labels(result=outcome.decision).inc()

        return SweepReport(
            examined=len(order_ids),
            updated=updated,
            expired=expired,
            refunded=refunded,
            failed=failed,
        )

    async def _sweep_one(self, order_id: UUID) -> ReconcileOutcome | None:
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None or not OrderStatus(order.status).is_active:
                return None
            provider = self.registry.get(order.provider)
            # Nothing stays open across the vendor call
            await session.commit()
            return await resolve_or_expire(session, provider, order, self.config, self.notifier)

    async def _recover_one(self, order_id: UUID) -> ReconcileOutcome | None:
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None or not OrderStatus(order.status).is_active:
                return None
            provider = self.registry.get(order.provider)
            await session.commit()

            result = await query_vendor_once(provider, order)
            if result is None:
                return None
            reconciler = OrderReconciler(session, self.config, self.notifier)
            return await reconciler.apply_observation(
                order.id, VendorObservation.from_status(result, ObservationSource.SWEEP)
            )

    async def _overdue_phone_orders(self, now: datetime) -> list[UUID]:
        age_cutoff = now - timedelta(minutes=self.config.order_age_ceiling_minutes)
        stmt = (
            select(Order.id)
            .where(
                Order.status.in_(ACTIVE_STATUSES),
                Order.category == OrderCategory.PHONE.value,
                (Order.expires_at <= now) | (Order.created_at <= age_cutoff),
            )
            .order_by(Order.created_at)
            .limit(self.config.sweep_batch_size)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _stale_async_orders(self, now: datetime) -> list[UUID]:
        cutoff = now - timedelta(minutes=self.config.stale_recheck_minutes)
        stmt = (
            select(Order.id)
            .where(
                Order.status.in_(ACTIVE_STATUSES),
                Order.category.in_((OrderCategory.ESIM.value, OrderCategory.SMM.value)),
                Order.provider_order_id.is_not(None),
                Order.created_at <= cutoff,
            )
            .order_by(Order.created_at)
            .limit(self.config.sweep_batch_size)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
