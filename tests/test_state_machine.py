"""
Tests for the order state machine.

Covers the canonical edges, the idempotency guards and the refund rules,
plus Hypothesis properties over arbitrary snapshots and observations.
"""

from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vendorbridge.models.api import OrderAction, OrderStatus
from vendorbridge.models.domain import ObservationSource, OrderSnapshot, VendorObservation
from vendorbridge.services.state_machine import (
    ALLOWED_TRANSITIONS,
    TransitionDecision,
    TransitionPlan,
    can_transition,
    is_fast_path,
    plan_forced_expiry,
    plan_terminal_action,
    plan_transition,
)

SMS = {"sms": [{"code": "1234", "text": "Your code is 1234"}]}


def snapshot(
    status: OrderStatus = OrderStatus.PENDING,
    vendor_status: str | None = None,
    has_fulfillment: bool = False,
    refund_issued: bool = False,
    fulfillment: dict | None = None,
) -> OrderSnapshot:
    return OrderSnapshot(
        order_id=uuid4(),
        status=status,
        vendor_status=vendor_status,
        has_fulfillment=has_fulfillment or bool(fulfillment),
        refund_issued=refund_issued,
        charged_amount_minor=500,
        fulfillment=fulfillment,
    )


def observe(
    native: str, canonical: OrderStatus, payload: dict | None = None
) -> VendorObservation:
    return VendorObservation(
        native_status=native,
        canonical=canonical,
        source=ObservationSource.POLL,
        payload=payload,
    )


class TestOrderStatus:
    """isActive / isFinal partition the status set."""

    def test_partition_has_no_overlap_and_no_gap(self):
        for status in OrderStatus:
            assert status.is_active != status.is_final

    def test_active_statuses(self):
        assert {s for s in OrderStatus if s.is_active} == {
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
        }


class TestEdges:
    """Tests for the canonical transition table."""

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)

    def test_terminal_statuses_without_edges(self):
        for status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_failed_and_expired_only_to_refunded(self):
        assert can_transition(OrderStatus.FAILED, OrderStatus.REFUNDED)
        assert can_transition(OrderStatus.EXPIRED, OrderStatus.REFUNDED)
        assert not can_transition(OrderStatus.FAILED, OrderStatus.COMPLETED)

    def test_no_edge_back_to_pending(self):
        assert not can_transition(OrderStatus.PROCESSING, OrderStatus.PENDING)

    def test_fast_paths(self):
        assert is_fast_path(OrderStatus.PENDING, OrderStatus.COMPLETED)
        assert is_fast_path(OrderStatus.PENDING, OrderStatus.EXPIRED)
        assert not is_fast_path(OrderStatus.PROCESSING, OrderStatus.COMPLETED)

    def test_plan_rejects_illegal_edge(self):
        with pytest.raises(ValueError, match="pending -> refunded"):
            TransitionPlan(
                decision=TransitionDecision.APPLY,
                from_status=OrderStatus.PENDING,
                to_status=OrderStatus.REFUNDED,
            )

    def test_plan_rejects_illegal_intermediate_edge(self):
        with pytest.raises(ValueError, match="completed -> refunded"):
            TransitionPlan(
                decision=TransitionDecision.APPLY,
                from_status=OrderStatus.PROCESSING,
                via_status=OrderStatus.COMPLETED,
                to_status=OrderStatus.REFUNDED,
            )


class TestPlanTransition:
    """Tests for plan_transition."""

    def test_pending_to_processing(self):
        plan = plan_transition(snapshot(), observe("PENDING", OrderStatus.PROCESSING))

        assert plan.decision == TransitionDecision.APPLY
        assert plan.to_status == OrderStatus.PROCESSING
        assert plan.vendor_status == "PENDING"
        assert not plan.issue_refund

    def test_same_native_status_is_duplicate(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="PENDING"),
            observe("PENDING", OrderStatus.PROCESSING),
        )

        assert plan.decision == TransitionDecision.DUPLICATE
        assert not plan.mutates

    def test_active_regression_is_ignored(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="IN_PROGRESS"),
            observe("ACCEPTED", OrderStatus.PENDING),
        )

        assert plan.decision == TransitionDecision.REGRESSION
        assert plan.to_status == OrderStatus.PROCESSING

    def test_new_payload_on_same_status_is_attached(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="PENDING"),
            observe("RECEIVED", OrderStatus.PROCESSING, SMS),
        )

        assert plan.decision == TransitionDecision.ATTACH
        assert plan.payload == SMS
        assert not plan.status_changes

    def test_sms_under_unchanged_vendor_status_is_attached(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="RECEIVED"),
            observe("RECEIVED", OrderStatus.PROCESSING, SMS),
        )

        assert plan.decision == TransitionDecision.ATTACH
        assert plan.payload == SMS
        assert plan.vendor_status == "RECEIVED"

    def test_same_sms_again_is_duplicate(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="RECEIVED", fulfillment=SMS),
            observe("RECEIVED", OrderStatus.PROCESSING, SMS),
        )

        assert plan.decision == TransitionDecision.DUPLICATE

    def test_second_sms_is_attached(self):
        both = {"sms": SMS["sms"] + [{"code": "5678", "text": "Your code is 5678"}]}

        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="RECEIVED", fulfillment=SMS),
            observe("RECEIVED", OrderStatus.PROCESSING, both),
        )

        assert plan.decision == TransitionDecision.ATTACH
        assert plan.payload == both

    def test_completed_requires_payload(self):
        plan = plan_transition(snapshot(), observe("DONE", OrderStatus.COMPLETED))

        assert plan.decision == TransitionDecision.MISSING_FULFILLMENT
        assert plan.to_status == OrderStatus.PENDING

    def test_completed_with_existing_fulfillment(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="RECEIVED", has_fulfillment=True),
            observe("FINISHED", OrderStatus.COMPLETED),
        )

        assert plan.decision == TransitionDecision.APPLY
        assert plan.to_status == OrderStatus.COMPLETED

    def test_pending_straight_to_completed(self):
        plan = plan_transition(snapshot(), observe("DONE", OrderStatus.COMPLETED, {"iccid": "89"}))

        assert plan.decision == TransitionDecision.APPLY
        assert plan.to_status == OrderStatus.COMPLETED
        assert plan.payload == {"iccid": "89"}

    @pytest.mark.parametrize(
        "canonical",
        [OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.CANCELLED],
    )
    def test_failure_without_delivery_refunds(self, canonical: OrderStatus):
        plan = plan_transition(snapshot(OrderStatus.PROCESSING), observe("X", canonical))

        assert plan.to_status == canonical
        assert plan.issue_refund

    def test_failure_after_delivery_does_not_refund(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, has_fulfillment=True),
            observe("CANCELED", OrderStatus.CANCELLED),
        )

        assert plan.to_status == OrderStatus.CANCELLED
        assert not plan.issue_refund

    def test_failure_with_payload_in_same_observation_does_not_refund(self):
        plan = plan_transition(snapshot(), observe("TIMEOUT", OrderStatus.EXPIRED, SMS))

        assert plan.to_status == OrderStatus.EXPIRED
        assert not plan.issue_refund

    def test_already_refunded_order_is_not_refunded_again(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, refund_issued=True),
            observe("FAILED", OrderStatus.FAILED),
        )

        assert not plan.issue_refund

    def test_final_order_ignores_observations(self):
        plan = plan_transition(
            snapshot(OrderStatus.COMPLETED, vendor_status="FINISHED", has_fulfillment=True),
            observe("CANCELED", OrderStatus.CANCELLED),
        )

        assert plan.decision == TransitionDecision.ALREADY_FINAL
        assert not plan.mutates


class TestRefundSignal:
    """An observation mapped to refunded (vendor ban)."""

    def test_active_order_without_delivery_is_refunded(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, vendor_status="PENDING"),
            observe("BANNED", OrderStatus.REFUNDED),
        )

        assert plan.decision == TransitionDecision.APPLY
        assert plan.to_status == OrderStatus.REFUNDED
        assert plan.issue_refund
        assert plan.via_status == OrderStatus.FAILED
        assert plan.edges == [
            (OrderStatus.PROCESSING, OrderStatus.FAILED),
            (OrderStatus.FAILED, OrderStatus.REFUNDED),
        ]

    def test_pending_order_walks_through_failed(self):
        plan = plan_transition(snapshot(), observe("BANNED", OrderStatus.REFUNDED))

        assert plan.from_status == OrderStatus.PENDING
        assert plan.to_status == OrderStatus.REFUNDED
        assert all(can_transition(a, b) for a, b in plan.edges)

    def test_active_order_with_delivery_fails_without_refund(self):
        plan = plan_transition(
            snapshot(OrderStatus.PROCESSING, has_fulfillment=True),
            observe("BANNED", OrderStatus.REFUNDED),
        )

        assert plan.to_status == OrderStatus.FAILED
        assert not plan.issue_refund

    def test_unrefunded_failure_moves_to_refunded(self):
        plan = plan_transition(
            snapshot(OrderStatus.FAILED, vendor_status="FAILED"),
            observe("BANNED", OrderStatus.REFUNDED),
        )

        assert plan.from_status == OrderStatus.FAILED
        assert plan.to_status == OrderStatus.REFUNDED
        assert plan.issue_refund
        assert plan.via_status is None

    def test_refunded_failure_stays_final(self):
        plan = plan_transition(
            snapshot(OrderStatus.EXPIRED, refund_issued=True),
            observe("BANNED", OrderStatus.REFUNDED),
        )

        assert plan.decision == TransitionDecision.ALREADY_FINAL

    def test_repeated_signal_is_duplicate(self):
        plan = plan_transition(
            snapshot(OrderStatus.REFUNDED, vendor_status="BANNED", refund_issued=True),
            observe("BANNED", OrderStatus.REFUNDED),
        )

        assert plan.decision == TransitionDecision.DUPLICATE


class TestForcedExpiry:
    """Tests for plan_forced_expiry."""

    def test_active_order_expires_with_refund(self):
        plan = plan_forced_expiry(snapshot(OrderStatus.PROCESSING, vendor_status="PENDING"))

        assert plan.to_status == OrderStatus.EXPIRED
        assert plan.issue_refund
        assert plan.vendor_status is None

    def test_records_vendor_status_from_last_check(self):
        plan = plan_forced_expiry(snapshot(), observe("PENDING", OrderStatus.PROCESSING))

        assert plan.vendor_status == "PENDING"

    def test_late_payload_blocks_refund(self):
        plan = plan_forced_expiry(snapshot(), observe("RECEIVED", OrderStatus.PROCESSING, SMS))

        assert plan.payload == SMS
        assert not plan.issue_refund

    def test_final_order_is_left_alone(self):
        plan = plan_forced_expiry(snapshot(OrderStatus.EXPIRED, refund_issued=True))

        assert plan.decision == TransitionDecision.ALREADY_FINAL


class TestTerminalActions:
    """Tests for plan_terminal_action."""

    def test_finish_requires_delivery(self):
        plan = plan_terminal_action(snapshot(OrderStatus.PROCESSING), OrderAction.FINISH)

        assert plan.decision == TransitionDecision.MISSING_FULFILLMENT

    def test_finish_completes_delivered_order(self):
        plan = plan_terminal_action(
            snapshot(OrderStatus.PROCESSING, has_fulfillment=True), OrderAction.FINISH
        )

        assert plan.to_status == OrderStatus.COMPLETED
        assert not plan.issue_refund

    def test_cancel_refunds_undelivered_order(self):
        plan = plan_terminal_action(snapshot(), OrderAction.CANCEL)

        assert plan.to_status == OrderStatus.CANCELLED
        assert plan.issue_refund

    def test_cancel_on_final_order(self):
        plan = plan_terminal_action(snapshot(OrderStatus.COMPLETED), OrderAction.CANCEL)

        assert plan.decision == TransitionDecision.ALREADY_FINAL

    def test_report_is_a_refund_signal(self):
        plan = plan_terminal_action(snapshot(OrderStatus.PROCESSING), OrderAction.REPORT)

        assert plan.to_status == OrderStatus.REFUNDED
        assert plan.issue_refund
        assert plan.via_status == OrderStatus.FAILED

    def test_refill_is_not_a_transition(self):
        with pytest.raises(ValueError):
            plan_terminal_action(snapshot(OrderStatus.COMPLETED), OrderAction.REFILL)


# ============================================================================
# Hypothesis Properties
# ============================================================================

native_statuses = st.sampled_from(
    ["PENDING", "RECEIVED", "FINISHED", "CANCELED", "TIMEOUT", "BANNED", "DONE", "garbage"]
)
payloads = st.one_of(st.none(), st.just(SMS), st.just({}))

snapshots = st.builds(
    OrderSnapshot,
    order_id=st.uuids(),
    status=st.sampled_from(list(OrderStatus)),
    vendor_status=st.one_of(st.none(), native_statuses),
    has_fulfillment=st.booleans(),
    refund_issued=st.booleans(),
    charged_amount_minor=st.integers(min_value=1, max_value=10**7),
)

observations = st.builds(
    VendorObservation,
    native_status=native_statuses,
    canonical=st.sampled_from(list(OrderStatus)),
    source=st.sampled_from(list(ObservationSource)),
    payload=payloads,
)


class TestTransitionProperties:
    """Invariants that hold for any snapshot and observation."""

    @given(snap=snapshots, obs=observations)
    def test_status_changes_follow_edges(self, snap: OrderSnapshot, obs: VendorObservation):
        plan = plan_transition(snap, obs)
        if plan.decision == TransitionDecision.APPLY:
            assert plan.edges
            assert all(can_transition(a, b) for a, b in plan.edges)

    @given(
        snap=snapshots,
        action=st.sampled_from([OrderAction.FINISH, OrderAction.CANCEL, OrderAction.REPORT]),
    )
    def test_actions_follow_edges(self, snap: OrderSnapshot, action: OrderAction):
        plan = plan_terminal_action(snap, action)
        assert all(can_transition(a, b) for a, b in plan.edges)

    @given(snap=snapshots)
    def test_forced_expiry_follows_edges(self, snap: OrderSnapshot):
        plan = plan_forced_expiry(snap)
        assert all(can_transition(a, b) for a, b in plan.edges)

    @given(snap=snapshots, obs=observations)
    def test_refund_only_when_owed(self, snap: OrderSnapshot, obs: VendorObservation):
        plan = plan_transition(snap, obs)
        if plan.issue_refund:
            assert not snap.refund_issued
            assert not snap.has_fulfillment
            assert not obs.payload

    @given(snap=snapshots, obs=observations)
    def test_completed_always_has_fulfillment(self, snap: OrderSnapshot, obs: VendorObservation):
        plan = plan_transition(snap, obs)
        if plan.status_changes and plan.to_status == OrderStatus.COMPLETED:
            assert snap.has_fulfillment or plan.payload

    @given(snap=snapshots, obs=observations)
    def test_final_orders_only_move_to_refunded(
        self, snap: OrderSnapshot, obs: VendorObservation
    ):
        plan = plan_transition(snap, obs)
        if snap.status.is_final and plan.status_changes:
            assert plan.from_status in (OrderStatus.FAILED, OrderStatus.EXPIRED)
            assert plan.to_status == OrderStatus.REFUNDED

    @given(snap=snapshots, obs=observations)
    def test_repeat_of_recorded_status_never_mutates(
        self, snap: OrderSnapshot, obs: VendorObservation
    ):
        repeated = VendorObservation(
            native_status=snap.vendor_status or "PENDING",
            canonical=obs.canonical,
            source=obs.source,
            payload=None,
        )
        if snap.vendor_status is not None:
            assert not plan_transition(snap, repeated).mutates

    @given(snap=snapshots, obs=observations)
    def test_repeat_with_payload_only_attaches_to_active_orders(
        self, snap: OrderSnapshot, obs: VendorObservation
    ):
        repeated = VendorObservation(
            native_status=snap.vendor_status or "PENDING",
            canonical=obs.canonical,
            source=obs.source,
            payload=obs.payload,
        )
        plan = plan_transition(snap, repeated)
        if snap.vendor_status is not None and plan.mutates:
            assert snap.status.is_active
            assert plan.to_status.is_active
            assert plan.payload
