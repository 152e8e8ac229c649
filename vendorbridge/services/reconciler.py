"""
Order Reconciler - applies state machine plans to persisted orders.

NO DICTIONARIES - Outcomes are typed; only vendor payloads stay opaque.

Every unit follows the same shape: lock the order row, plan against a
snapshot, apply (status, vendor status, payload, refund) and commit once.
The caller has already talked to the vendor; no lock is held across a
vendor call.
"""

from collections.abc import Callable
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order, utc_now
from vendorbridge.exceptions import ConcurrencyError, OrderNotFoundError, RefundAlreadyIssuedError
from vendorbridge.models.api import OrderAction, OrderStatus
from vendorbridge.models.domain import (
    ObservationSource,
    OrderSnapshot,
    ReconcileOutcome,
    VendorObservation,
)
from vendorbridge.observability.metrics import metrics
from vendorbridge.services.notifications import NotificationDispatcher, OrderNotification
from vendorbridge.services.state_machine import (
    TransitionDecision,
    TransitionPlan,
    plan_forced_expiry,
    plan_terminal_action,
    plan_transition,
)
from vendorbridge.services.wallet import WalletService

logger = get_logger(__name__)

Planner = Callable[[OrderSnapshot], TransitionPlan]
Scheduler = Callable[[Order], None]


def snapshot_of(order: Order) -> OrderSnapshot:
    """State machine view of an order row."""
    return OrderSnapshot(
        order_id=order.id,
        status=OrderStatus(order.status),
        vendor_status=order.vendor_status,
        has_fulfillment=bool(order.fulfillment),
        refund_issued=order.refund_issued,
        charged_amount_minor=order.charged_amount_minor,
        fulfillment=order.fulfillment,
    )


def merge_fulfillment(
    current: dict[str, Any] | None, payload: dict[str, Any]
) -> dict[str, Any]:
    """Later payload keys replace earlier ones; a new dict so the JSON column is dirtied."""
    return {**(current or {}), **payload}


class OrderReconciler:
    """Applies observations, forced expiry and user actions to orders."""

    def __init__(
        self,
        session: AsyncSession,
        config: ReconcilerConfig,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.notifier = notifier

    async def apply_observation(
        self,
        order_id: UUID,
        observation: VendorObservation,
        schedule: Scheduler | None = None,
    ) -> ReconcileOutcome:
        """
        Apply a vendor observation (poll, webhook or sweep).

        Args:
            order_id: Order to reconcile
            observation: What the vendor just reported
            schedule: Called with the locked order when it is still active
                afterwards, to set the next poll marker in the same commit

        Raises:
            OrderNotFoundError: No such order
            ConcurrencyError: The row changed under us; safe to retry
        """
        return await self._reconcile(
            order_id,
            lambda snapshot: plan_transition(snapshot, observation),
            observation.source,
            schedule,
        )

    async def force_expire(
        self, order_id: UUID, observation: VendorObservation | None = None
    ) -> ReconcileOutcome:
        """Expire an active order the vendor could not resolve."""
        return await self._reconcile(
            order_id,
            lambda snapshot: plan_forced_expiry(snapshot, observation),
            ObservationSource.SWEEP,
        )

    async def apply_action(self, order_id: UUID, action: OrderAction) -> ReconcileOutcome:
        """Apply a finish/cancel/report action after the vendor was told."""
        return await self._reconcile(
            order_id,
            lambda snapshot: plan_terminal_action(snapshot, action),
            ObservationSource.ACTION,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _reconcile(
        self,
        order_id: UUID,
        planner: Planner,
        source: ObservationSource,
        schedule: Scheduler | None = None,
    ) -> ReconcileOutcome:
        try:
            order = await self._lock_order_for_update(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)

            plan = planner(snapshot_of(order))
            refunded = 0
            if plan.mutates:
                refunded = await self._apply_plan(order, plan, source)
            else:
                self._log_skip(order, plan, source)

            if schedule is not None and OrderStatus(order.status).is_active:
                schedule(order)

            outcome = ReconcileOutcome(
                order_id=order.id,
                decision=plan.decision.value,
                status=OrderStatus(order.status),
                refunded_minor=refunded,
            )
            notification = self._notification_for(order, plan, refunded)

            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            metrics.record_error("ConcurrencyError", f"reconcile_{source.value}")
            raise ConcurrencyError(f"order {order_id}") from exc
        except RefundAlreadyIssuedError:
            # The whole unit is void; the ledger already holds this order's refund
            await self.session.rollback()
            logger.error("refund_invariant_violation", order_id=str(order_id))
            metrics.record_error("RefundAlreadyIssuedError", f"reconcile_{source.value}")
            raise

        for from_status, to_status in plan.edges:
            metrics.record_transition(from_status.value, to_status.value, source.value)
        if refunded:
            metrics.record_refund(source.value, refunded)
        if notification is not None and self.notifier is not None:
            self.notifier.notify(notification)
        return outcome

    async def _apply_plan(self, order: Order, plan: TransitionPlan, source: ObservationSource) -> int:
        """Write one plan to the locked order. Returns the refunded amount."""
        if plan.vendor_status is not None:
            order.vendor_status = plan.vendor_status
        if plan.payload:
            order.fulfillment = merge_fulfillment(order.fulfillment, plan.payload)
            logger.info(
                "order_fulfillment_attached",
                order_id=str(order.id),
                keys=sorted(plan.payload),
            )

        if plan.status_changes:
            order.status = plan.to_status.value
            order.status_message = plan.reason
            if plan.to_status == OrderStatus.COMPLETED:
                order.completed_at = utc_now()
        if plan.to_status.is_final:
            order.next_check_at = None

        refunded = 0
        if plan.issue_refund:
            wallet = WalletService(self.session, self.config.default_currency)
            entry = await wallet.refund_order(
                order, reason=f"Refund for order {order.id} ({plan.to_status.value})"
            )
            refunded = entry.delta_minor

        await self.session.flush()

        logger.info(
            "order_transition_applied",
            order_id=str(order.id),
            provider=order.provider,
            source=source.value,
            decision=plan.decision.value,
            from_status=plan.from_status.value,
            via_status=plan.via_status.value if plan.via_status else None,
            to_status=plan.to_status.value,
            vendor_status=order.vendor_status,
            refunded_minor=refunded,
            reason=plan.reason,
        )
        return refunded

    def _log_skip(self, order: Order, plan: TransitionPlan, source: ObservationSource) -> None:
        event = (
            "vendor_status_duplicate"
            if plan.decision == TransitionDecision.DUPLICATE
            else "observation_skipped"
        )
        logger.info(
            event,
            order_id=str(order.id),
            provider=order.provider,
            source=source.value,
            decision=plan.decision.value,
            status=order.status,
            reason=plan.reason,
        )
        metrics.record_skip(plan.decision.value, source.value)

    def _notification_for(
        self, order: Order, plan: TransitionPlan, refunded: int
    ) -> OrderNotification | None:
        if not (plan.status_changes and plan.to_status.is_final):
            return None
        return OrderNotification(
            order_id=str(order.id),
            owner_ref=order.owner_ref,
            category=order.category,
            status=order.status,
            refunded_minor=refunded,
        )

    async def _lock_order_for_update(self, order_id: UUID) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
