"""
Order State Machine - canonical lifecycle and transition guards.

Pure functions only: given what we know about an order and what a vendor just
told us, decide what should happen. Applying the plan (row lock, refund,
commit) is the reconciler's job.

Edges:
    pending    -> processing, completed, failed, cancelled, expired
    processing -> completed, failed, cancelled, expired
    failed     -> refunded
    expired    -> refunded

pending -> {completed, failed, cancelled, expired} are fast paths: the vendor
resolved the order before we observed an intermediate status, the placement
was reversed, or the order was force-expired. A refund signal on an active
order walks active -> failed -> refunded within one unit.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from vendorbridge.models.api import OrderAction, OrderStatus
from vendorbridge.models.domain import OrderSnapshot, VendorObservation

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
            OrderStatus.FAILED,
            OrderStatus.CANCELLED,
            OrderStatus.EXPIRED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {
            OrderStatus.COMPLETED,
            OrderStatus.FAILED,
            OrderStatus.CANCELLED,
            OrderStatus.EXPIRED,
        }
    ),
    OrderStatus.FAILED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.EXPIRED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

FAST_PATHS: frozenset[tuple[OrderStatus, OrderStatus]] = frozenset(
    (OrderStatus.PENDING, target)
    for target in (
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    )
)

_ACTIVE_RANK = {OrderStatus.PENDING: 0, OrderStatus.PROCESSING: 1}


class TransitionDecision(str, Enum):
    """What the state machine decided to do with an observation."""

    APPLY = "apply"  # status changes
    ATTACH = "attach"  # same status, new vendor status and/or payload
    DUPLICATE = "duplicate"
    ALREADY_FINAL = "already_final"
    REGRESSION = "regression"
    MISSING_FULFILLMENT = "missing_fulfillment"


@dataclass(frozen=True)
class TransitionPlan:
    """Outcome of planning one observation against one order."""

    decision: TransitionDecision
    from_status: OrderStatus
    to_status: OrderStatus
    vendor_status: str | None = None
    payload: dict[str, Any] | None = None
    issue_refund: bool = False
    reason: str = ""
    via_status: OrderStatus | None = None  # passed through within the same unit

    def __post_init__(self) -> None:
        """An applied plan only walks allowed edges."""
        if self.decision != TransitionDecision.APPLY:
            return
        for from_status, to_status in self.edges:
            if not can_transition(from_status, to_status):
                raise ValueError(
                    f"Illegal transition {from_status.value} -> {to_status.value}"
                )

    @property
    def mutates(self) -> bool:
        """Plan writes to the order row."""
        return self.decision in (TransitionDecision.APPLY, TransitionDecision.ATTACH)

    @property
    def status_changes(self) -> bool:
        return self.from_status != self.to_status

    @property
    def edges(self) -> list[tuple[OrderStatus, OrderStatus]]:
        """Canonical edges walked by this plan, in order."""
        if not self.status_changes:
            return []
        if self.via_status is None:
            return [(self.from_status, self.to_status)]
        return [(self.from_status, self.via_status), (self.via_status, self.to_status)]


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """Check a canonical edge."""
    return to_status in ALLOWED_TRANSITIONS[from_status]


def is_fast_path(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return (from_status, to_status) in FAST_PATHS


def _skip(
    snapshot: OrderSnapshot, decision: TransitionDecision, reason: str
) -> TransitionPlan:
    return TransitionPlan(
        decision=decision,
        from_status=snapshot.status,
        to_status=snapshot.status,
        reason=reason,
    )


def _refund_owed(snapshot: OrderSnapshot, payload: dict[str, Any] | None) -> bool:
    """No value delivered and nothing refunded yet."""
    return not snapshot.has_fulfillment and not payload and not snapshot.refund_issued


def _is_new_payload(snapshot: OrderSnapshot, payload: dict[str, Any] | None) -> bool:
    """Payload carries something the order does not hold yet."""
    if not payload:
        return False
    current = snapshot.fulfillment or {}
    return any(current.get(key) != value for key, value in payload.items())


def _plan_refund_signal(
    snapshot: OrderSnapshot, vendor_status: str | None, payload: dict[str, Any] | None
) -> TransitionPlan:
    """An explicit refund signal (vendor ban, operator report)."""
    if snapshot.status.is_final:
        if (
            can_transition(snapshot.status, OrderStatus.REFUNDED)
            and _refund_owed(snapshot, payload)
        ):
            return TransitionPlan(
                decision=TransitionDecision.APPLY,
                from_status=snapshot.status,
                to_status=OrderStatus.REFUNDED,
                vendor_status=vendor_status,
                issue_refund=True,
                reason="refund signal on unrefunded failure",
            )
        return _skip(snapshot, TransitionDecision.ALREADY_FINAL, "order is final")

    if _refund_owed(snapshot, payload):
        return TransitionPlan(
            decision=TransitionDecision.APPLY,
            from_status=snapshot.status,
            via_status=OrderStatus.FAILED,
            to_status=OrderStatus.REFUNDED,
            vendor_status=vendor_status,
            issue_refund=True,
            reason="refund signal",
        )
    return TransitionPlan(
        decision=TransitionDecision.APPLY,
        from_status=snapshot.status,
        to_status=OrderStatus.FAILED,
        vendor_status=vendor_status,
        payload=payload,
        reason="refund signal after delivery, no refund",
    )


def plan_transition(snapshot: OrderSnapshot, observation: VendorObservation) -> TransitionPlan:
    """
    Plan how a vendor observation changes an order.

    Rules, in order:
    - final orders ignore everything except the failed/expired -> refunded edge
    - a native status equal to the last recorded one is a duplicate, unless an
      active observation brings a payload the order does not hold yet
    - active -> earlier active is a regression and is ignored
    - completed requires a fulfillment payload (new or already attached)
    - failed/expired/cancelled refund exactly once when nothing was delivered
    """
    target = observation.canonical
    payload = observation.payload or None

    if target == OrderStatus.REFUNDED:
        if observation.native_status == snapshot.vendor_status:
            return _skip(snapshot, TransitionDecision.DUPLICATE, "same vendor status")
        return _plan_refund_signal(snapshot, observation.native_status, payload)

    if snapshot.status.is_final:
        return _skip(snapshot, TransitionDecision.ALREADY_FINAL, "order is final")

    # Phone vendors keep one status while SMS messages accumulate
    if observation.native_status == snapshot.vendor_status and not (
        target.is_active and _is_new_payload(snapshot, payload)
    ):
        return _skip(snapshot, TransitionDecision.DUPLICATE, "same vendor status")

    if target.is_active:
        if _ACTIVE_RANK[target] < _ACTIVE_RANK[snapshot.status]:
            return _skip(
                snapshot,
                TransitionDecision.REGRESSION,
                f"{snapshot.status.value} -> {target.value}",
            )
        decision = (
            TransitionDecision.ATTACH if target == snapshot.status else TransitionDecision.APPLY
        )
        return TransitionPlan(
            decision=decision,
            from_status=snapshot.status,
            to_status=target,
            vendor_status=observation.native_status,
            payload=payload,
            reason="vendor progress",
        )

    if target == OrderStatus.COMPLETED:
        if payload is None and not snapshot.has_fulfillment:
            return _skip(
                snapshot, TransitionDecision.MISSING_FULFILLMENT, "completed without payload"
            )
        return TransitionPlan(
            decision=TransitionDecision.APPLY,
            from_status=snapshot.status,
            to_status=OrderStatus.COMPLETED,
            vendor_status=observation.native_status,
            payload=payload,
            reason="vendor completed",
        )

    return TransitionPlan(
        decision=TransitionDecision.APPLY,
        from_status=snapshot.status,
        to_status=target,
        vendor_status=observation.native_status,
        payload=payload,
        issue_refund=_refund_owed(snapshot, payload),
        reason=f"vendor {target.value}",
    )


def plan_forced_expiry(
    snapshot: OrderSnapshot, observation: VendorObservation | None = None
) -> TransitionPlan:
    """
    Force an active order to expired.

    Used by the sweep once the vendor could not resolve an order past its
    expiry. The vendor status, when known, is still recorded.
    """
    if snapshot.status.is_final:
        return _skip(snapshot, TransitionDecision.ALREADY_FINAL, "order is final")

    payload = observation.payload if observation else None
    return TransitionPlan(
        decision=TransitionDecision.APPLY,
        from_status=snapshot.status,
        to_status=OrderStatus.EXPIRED,
        vendor_status=observation.native_status if observation else None,
        payload=payload or None,
        issue_refund=_refund_owed(snapshot, payload),
        reason="expired without resolution",
    )


def plan_terminal_action(snapshot: OrderSnapshot, action: OrderAction) -> TransitionPlan:
    """
    Plan an explicit user/operator action.

    finish needs a delivered payload; cancel refunds when nothing was
    delivered; report is a refund signal. refill is not planned here.
    """
    if action == OrderAction.REPORT:
        return _plan_refund_signal(snapshot, None, None)

    if action == OrderAction.REFILL:
        raise ValueError("refill is not a status transition")

    if snapshot.status.is_final:
        return _skip(snapshot, TransitionDecision.ALREADY_FINAL, "order is final")

    if action == OrderAction.FINISH:
        if not snapshot.has_fulfillment:
            return _skip(
                snapshot, TransitionDecision.MISSING_FULFILLMENT, "nothing delivered to finish"
            )
        return TransitionPlan(
            decision=TransitionDecision.APPLY,
            from_status=snapshot.status,
            to_status=OrderStatus.COMPLETED,
            reason="finished by user",
        )

    return TransitionPlan(
        decision=TransitionDecision.APPLY,
        from_status=snapshot.status,
        to_status=OrderStatus.CANCELLED,
        issue_refund=_refund_owed(snapshot, None),
        reason="cancelled by user",
    )
