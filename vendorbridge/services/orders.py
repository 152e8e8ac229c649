"""
Order Action Service - user and operator actions on an order.

Each action tells the vendor first (no lock held), then hands the matching
plan to the reconciler. Refill is the exception: it is a vendor-side request
on a completed SMM order and never changes our state.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order
from vendorbridge.exceptions import (
    OrderNotActiveError,
    OrderNotFoundError,
    UnsupportedActionError,
    VendorRejectedError,
    VendorUnreachableError,
)
from vendorbridge.models.api import OrderAction, OrderCategory, OrderStatus
from vendorbridge.models.domain import ActionResult
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.base import VendorProvider
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.reconciler import OrderReconciler

logger = get_logger(__name__)

# Failure outcomes a report can still turn into refunded
REPORTABLE_FINAL = frozenset({OrderStatus.FAILED, OrderStatus.EXPIRED})


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one order action."""

    order: Order
    action: OrderAction
    vendor_acknowledged: bool
    message: str | None = None


class OrderActionService:
    """finish / cancel / report / refill."""

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

    async def get_order(self, order_id: UUID) -> Order:
        """
        Raises:
            OrderNotFoundError: No such order
        """
        result = await self.session.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def perform(self, order_id: UUID, action: OrderAction) -> ActionOutcome:
        """Dispatch an action by name."""
        handlers = {
            OrderAction.FINISH: self.finish,
            OrderAction.CANCEL: self.cancel,
            OrderAction.REPORT: self.report,
            OrderAction.REFILL: self.refill,
        }
        return await handlers[action](order_id)

    async def finish(self, order_id: UUID) -> ActionOutcome:
        """
        Confirm a delivered order with the vendor and complete it.

        Raises:
            OrderNotActiveError: Order final, or nothing delivered yet
            UnsupportedActionError: Vendor has no finish
            VendorRejectedError: Vendor refused
        """
        order, provider = await self._load_active(order_id, OrderAction.FINISH)
        if not order.fulfillment:
            raise OrderNotActiveError(order.id, "awaiting delivery")

        result = await provider.finish_order(order.provider_order_id, owner_ref=order.owner_ref)
        self._require_success(provider, OrderAction.FINISH, result)
        return await self._reconcile(order, OrderAction.FINISH, result)

    async def cancel(self, order_id: UUID) -> ActionOutcome:
        """
        Cancel with the vendor; refunds when nothing was delivered.

        Raises:
            OrderNotActiveError: Order already final
            UnsupportedActionError: Vendor has no cancel
            VendorRejectedError: Vendor refused (e.g. SMS already received)
        """
        order, provider = await self._load_active(order_id, OrderAction.CANCEL)
        if order.provider_order_id is None:
            return await self._reconcile(order, OrderAction.CANCEL, None)

        result = await provider.cancel_order(order.provider_order_id, owner_ref=order.owner_ref)
        self._require_success(provider, OrderAction.CANCEL, result)
        return await self._reconcile(order, OrderAction.CANCEL, result)

    async def report(self, order_id: UUID) -> ActionOutcome:
        """
        Report a bad order: ban/cancel it at the vendor and refund it.

        Operator decision: the refund signal is applied even when the vendor
        does not acknowledge the ban.

        Raises:
            OrderNotActiveError: Order cannot be refunded any more
        """
        order = await self.get_order(order_id)
        status = OrderStatus(order.status)
        if not status.is_active:
            if status in REPORTABLE_FINAL and not order.refund_issued and not order.fulfillment:
                return await self._reconcile(order, OrderAction.REPORT, None)
            raise OrderNotActiveError(order.id, order.status)

        provider = self.registry.get(order.provider)
        result = None
        if order.provider_order_id is not None:
            result = await self._ban_or_cancel(provider, order)
        return await self._reconcile(order, OrderAction.REPORT, result)

    async def refill(self, order_id: UUID) -> ActionOutcome:
        """
        Ask the vendor to refill a completed SMM order. No state change.

        Raises:
            OrderNotActiveError: Not a completed SMM order
            UnsupportedActionError: Vendor has no refill
            VendorRejectedError: Vendor refused
        """
        order = await self.get_order(order_id)
        if (
            order.category != OrderCategory.SMM.value
            or order.status != OrderStatus.COMPLETED.value
            or order.provider_order_id is None
        ):
            raise OrderNotActiveError(order.id, order.status)

        provider = self.registry.get(order.provider)
        await self.session.commit()
        result = await provider.refill_order(order.provider_order_id, owner_ref=order.owner_ref)
        self._require_success(provider, OrderAction.REFILL, result)
        logger.info(
            "order_refill_requested",
            order_id=str(order.id),
            provider=order.provider,
            refill_id=result.reference,
        )
        return ActionOutcome(
            order=order,
            action=OrderAction.REFILL,
            vendor_acknowledged=True,
            message=result.reference,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_active(
        self, order_id: UUID, action: OrderAction
    ) -> tuple[Order, VendorProvider]:
        order = await self.get_order(order_id)
        if not OrderStatus(order.status).is_active:
            raise OrderNotActiveError(order.id, order.status)
        provider = self.registry.get(order.provider)
        # No transaction stays open across the vendor call
        await self.session.commit()
        return order, provider

    async def _ban_or_cancel(self, provider: VendorProvider, order: Order) -> ActionResult | None:
        """Ban where the vendor supports it, otherwise cancel. None when neither went through."""
        await self.session.commit()
        for call in (provider.ban_order, provider.cancel_order):
            try:
                return await call(order.provider_order_id, owner_ref=order.owner_ref)
            except UnsupportedActionError:
                continue
            except (VendorUnreachableError, VendorRejectedError) as exc:
                logger.warning(
                    "report_vendor_ack_failed",
                    order_id=str(order.id),
                    provider=order.provider,
                    error=str(exc),
                )
                return None
        return None

    def _require_success(
        self, provider: VendorProvider, action: OrderAction, result: ActionResult
    ) -> None:
        if not result.success:
            raise VendorRejectedError(
                provider.identifier, result.message or f"{action.value} refused", code=action.value
            )

    async def _reconcile(
        self, order: Order, action: OrderAction, result: ActionResult | None
    ) -> ActionOutcome:
        reconciler = OrderReconciler(self.session, self.config, self.notifier)
        outcome = await reconciler.apply_action(order.id, action)
        logger.info(
            "order_action_applied",
            order_id=str(order.id),
            action=action.value,
            decision=outcome.decision,
            status=outcome.status.value,
            refunded_minor=outcome.refunded_minor,
        )
        return ActionOutcome(
            order=order,
            action=action,
            vendor_acknowledged=bool(result and result.success),
            message=result.message if result else None,
        )
