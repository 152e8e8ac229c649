"""
Purchase Service - wallet debit plus vendor placement.

Three short transactions, none of which spans the vendor call:

1. debit the wallet and create the pending order (commit)
2. place the order with the vendor (no lock, no open transaction)
3. record the placement, or reverse the debit through the normal
   pending -> failed transition with its exactly-once refund
"""

from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order, utc_now
from vendorbridge.exceptions import (
    InsufficientFundsError,
    OrderNotFoundError,
    VendorRejectedError,
    VendorUnreachableError,
)
from vendorbridge.models.api import OrderCategory, OrderStatus, PurchaseRequest
from vendorbridge.models.domain import (
    ObservationSource,
    OrderSelectors,
    PlacementResult,
    VendorObservation,
)
from vendorbridge.observability.metrics import metrics
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.reconciler import OrderReconciler
from vendorbridge.services.wallet import WalletService

logger = get_logger(__name__)

# Native status recorded when a placement is reversed before the vendor knew the order
PLACEMENT_REVERSED = "PLACEMENT_REVERSED"


def first_check_delay(category: OrderCategory, config: ReconcilerConfig) -> timedelta | None:
    """Delay before the first poll; eSIM orders wait for the webhook instead."""
    if category == OrderCategory.PHONE:
        return timedelta(seconds=config.poll_interval_seconds)
    if category == OrderCategory.SMM:
        return timedelta(seconds=config.smm_poll_interval_seconds)
    return None


class PurchaseService:
    """Turns a priced purchase request into a placed vendor order."""

    def __init__(
        self,
        session: AsyncSession,
        registry: ProviderRegistry,
        config: ReconcilerConfig,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.config = config
        self.notifier = notifier

    async def purchase(self, request: PurchaseRequest) -> Order:
        """
        Charge the wallet and place the order.

        Returns:
            The persisted order, pending with its vendor reference

        Raises:
            ProviderNotFoundError / ProviderDisabledError: Unroutable provider
            InsufficientFundsError: Wallet cannot cover amount (nothing written)
            VendorRejectedError: Vendor refused; the debit was reversed
            VendorUnreachableError: Vendor call failed; the debit was reversed
        """
        provider = self.registry.get_enabled(request.provider)
        if provider.category != request.category:
            raise VendorRejectedError(
                provider.identifier,
                f"provider sells {provider.category.value}, not {request.category.value}",
                code="category_mismatch",
            )

        order_id = uuid4()
        selectors = OrderSelectors(
            category=request.category,
            service=request.service,
            country=request.country,
            operator=request.operator,
            link=request.link,
            quantity=request.quantity,
            reference=str(order_id),
        )

        await self._create_pending_order(order_id, request)

        try:
            placement = await provider.place_order(selectors, owner_ref=request.owner_ref)
        except VendorUnreachableError as exc:
            metrics.purchases_total.labels(provider=provider.identifier, outcome="unreachable").inc()
            await self._reverse(order_id, f"vendor unreachable: {exc.message}")
            raise

        if not placement.success:
            reason = placement.error_message or "rejected"
            metrics.purchases_total.labels(provider=provider.identifier, outcome="rejected").inc()
            await self._reverse(order_id, reason)
            raise VendorRejectedError(provider.identifier, reason, code=placement.error_code)

        order = await self._record_placement(order_id, request.category, placement)
        metrics.purchases_total.labels(provider=provider.identifier, outcome="placed").inc()
        logger.info(
            "order_placed",
            order_id=str(order.id),
            owner_ref=order.owner_ref,
            provider=order.provider,
            provider_order_id=order.provider_order_id,
            amount_minor=order.charged_amount_minor,
        )
        return order

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _create_pending_order(self, order_id: UUID, request: PurchaseRequest) -> None:
        wallet = WalletService(self.session, self.config.default_currency)
        order = Order(
            id=order_id,
            owner_ref=request.owner_ref,
            category=request.category.value,
            provider=request.provider,
            service_code=request.service,
            country_code=request.country,
            status=OrderStatus.PENDING.value,
            charged_amount_minor=request.amount_minor,
            currency=request.currency,
            refund_issued=False,
        )
        self.session.add(order)
        try:
            # Order row first: the purchase ledger entry references it
            await self.session.flush()
            await wallet.debit(
                request.owner_ref,
                request.amount_minor,
                reason=f"Purchase {request.provider}/{request.service}",
                order_id=order_id,
                currency=request.currency,
            )
        except InsufficientFundsError:
            await self.session.rollback()
            metrics.purchases_total.labels(
                provider=request.provider, outcome="insufficient_funds"
            ).inc()
            raise
        await self.session.commit()

    async def _record_placement(
        self, order_id: UUID, category: OrderCategory, placement: PlacementResult
    ) -> Order:
        order = await self._lock_order_for_update(order_id)
        now = utc_now()

        order.provider_order_id = placement.provider_order_id
        order.placement = {
            "price": placement.price,
            "native_status": placement.native_status,
            **placement.details,
        }
        order.expires_at = placement.expires_at
        if order.expires_at is None and category == OrderCategory.PHONE:
            order.expires_at = now + timedelta(minutes=self.config.default_phone_expiry_minutes)

        delay = first_check_delay(category, self.config)
        order.next_check_at = now + delay if delay is not None else None

        await self.session.commit()
        return order

    async def _reverse(self, order_id: UUID, reason: str) -> None:
        """Placement failed: pending -> failed, refunding the debit."""
        reconciler = OrderReconciler(self.session, self.config, self.notifier)
        await reconciler.apply_observation(
            order_id,
            VendorObservation(
                native_status=PLACEMENT_REVERSED,
                canonical=OrderStatus.FAILED,
                source=ObservationSource.ACTION,
            ),
        )
        order = await self._lock_order_for_update(order_id)
        order.status_message = reason[:500]
        await self.session.commit()
        logger.warning("order_placement_reversed", order_id=str(order_id), reason=reason)

    async def _lock_order_for_update(self, order_id: UUID) -> Order:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order
