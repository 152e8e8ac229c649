"""
Tests for the expiry sweep and stale recovery.
"""

from dataclasses import replace
from datetime import timedelta

from vendorbridge.db.models import utc_now
from vendorbridge.exceptions import VendorUnreachableError
from vendorbridge.models.api import OrderCategory, OrderStatus
from vendorbridge.services.sweep import ExpirySweep

ESIM_PAYLOAD = {"iccid": "8944000000000000001", "lpa": "LPA:1$smdp.example$ABC123"}


class TestRunSweep:
    """Tests for run_sweep()."""

    async def test_expired_phone_order_refunded_once(
        self, db, session_factory, registry, reconciler_config, phone_provider, notifier
    ):
        """expires_at T, sweep at T+1s: expired, cancel attempted, one refund."""
        expires = utc_now() - timedelta(minutes=1)
        order_id = await db.seed_order(
            status=OrderStatus.PROCESSING,
            vendor_status="PENDING",
            amount_minor=500,
            expires_at=expires,
        )
        phone_provider.queue_status(phone_provider.status("PENDING"))
        sweep = ExpirySweep(session_factory, registry, reconciler_config, notifier)

        report = await sweep.run_sweep(now=expires + timedelta(seconds=1))

        order = await db.load_order(order_id)
        assert order.status == OrderStatus.EXPIRED.value
        assert order.refund_issued
        assert phone_provider.called("cancel") == 1
        assert len(await db.refund_entries(order_id)) == 1
        assert await db.balance("user-1") == 500
        assert report.examined == 1
        assert report.expired == 1
        assert report.refunded == 1
        assert [n.status for n in notifier.sent] == ["expired"]

        second = await sweep.run_sweep(now=expires + timedelta(seconds=2))

        assert second.examined == 0
        assert len(await db.refund_entries(order_id)) == 1

    async def test_delivered_order_expires_without_refund(
        self, db, session_factory, registry, reconciler_config, phone_provider
    ):
        order_id = await db.seed_order(
            status=OrderStatus.PROCESSING,
            vendor_status="RECEIVED",
            fulfillment={"sms": [{"code": "1"}]},
            expires_at=utc_now() - timedelta(minutes=1),
        )
        phone_provider.queue_status(phone_provider.status("RECEIVED"))

        report = await ExpirySweep(session_factory, registry, reconciler_config).run_sweep()

        order = await db.load_order(order_id)
        assert order.status == OrderStatus.EXPIRED.value
        assert not order.refund_issued
        assert report.refunded == 0
        assert await db.balance("user-1") == 0

    async def test_vendor_final_status_wins(
        self, db, session_factory, registry, reconciler_config, phone_provider
    ):
        order_id = await db.seed_order(expires_at=utc_now() - timedelta(minutes=1))
        phone_provider.queue_status(phone_provider.status("CANCELED"))

        report = await ExpirySweep(session_factory, registry, reconciler_config).run_sweep()

        assert (await db.load_order(order_id)).status == OrderStatus.CANCELLED.value
        assert phone_provider.called("cancel") == 0
        assert report.updated == 1
        assert report.expired == 0

    async def test_unreachable_vendor_still_expires(
        self, db, session_factory, registry, reconciler_config, phone_provider
    ):
        order_id = await db.seed_order(expires_at=utc_now() - timedelta(minutes=1))
        phone_provider.queue_status(VendorUnreachableError("5sim", "check_status", "down"))
        phone_provider.actions["cancel"] = VendorUnreachableError("5sim", "cancel", "down")

        report = await ExpirySweep(session_factory, registry, reconciler_config).run_sweep()

        assert (await db.load_order(order_id)).status == OrderStatus.EXPIRED.value
        assert report.failed == 0
        assert report.refunded == 1

    async def test_age_ceiling_without_expiry(
        self, db, session_factory, registry, reconciler_config, phone_provider
    ):
        order_id = await db.seed_order(created_at=utc_now() - timedelta(minutes=61))
        phone_provider.queue_status(phone_provider.status("PENDING"))

        await ExpirySweep(session_factory, registry, reconciler_config).run_sweep()

        assert (await db.load_order(order_id)).status == OrderStatus.EXPIRED.value

    async def test_fresh_and_non_phone_orders_untouched(
        self, db, session_factory, registry, reconciler_config, phone_provider
    ):
        past = utc_now() - timedelta(minutes=1)
        fresh = await db.seed_order(expires_at=utc_now() + timedelta(minutes=10))
        esim = await db.seed_order(
            category=OrderCategory.ESIM, provider="zendit", provider_order_id="T1", expires_at=past
        )

        report = await ExpirySweep(session_factory, registry, reconciler_config).run_sweep()

        assert report.examined == 0
        assert (await db.load_order(fresh)).status == OrderStatus.PENDING.value
        assert (await db.load_order(esim)).status == OrderStatus.PENDING.value

    async def test_batch_size(self, db, session_factory, registry, reconciler_config, phone_provider):
        past = utc_now() - timedelta(minutes=1)
        for _ in range(3):
            await db.seed_order(expires_at=past)
        phone_provider.queue_status(phone_provider.status("PENDING"))
        config = replace(reconciler_config, sweep_batch_size=2)

        report = await ExpirySweep(session_factory, registry, config).run_sweep()

        assert report.examined == 2


class TestRecoverStale:
    """Tests for recover_stale()."""

    async def test_old_esim_order_picks_up_result(
        self, db, session_factory, registry, reconciler_config, esim_provider
    ):
        order_id = await db.seed_order(
            category=OrderCategory.ESIM,
            provider="zendit",
            provider_order_id="T1",
            created_at=utc_now() - timedelta(days=2),
        )
        esim_provider.queue_status(esim_provider.status("DONE", ESIM_PAYLOAD))

        report = await ExpirySweep(session_factory, registry, reconciler_config).recover_stale()

        order = await db.load_order(order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.fulfillment == ESIM_PAYLOAD
        assert report.updated == 1

    async def test_stale_order_is_never_force_expired(
        self, db, session_factory, registry, reconciler_config, smm_provider
    ):
        order_id = await db.seed_order(
            category=OrderCategory.SMM,
            provider="jap",
            provider_order_id="J1",
            created_at=utc_now() - timedelta(days=2),
        )
        smm_provider.queue_status(VendorUnreachableError("jap", "check_status", "down"))

        report = await ExpirySweep(session_factory, registry, reconciler_config).recover_stale()

        assert (await db.load_order(order_id)).status == OrderStatus.PENDING.value
        assert report.examined == 1
        assert report.updated == 0
        assert report.failed == 0

    async def test_recent_orders_not_examined(
        self, db, session_factory, registry, reconciler_config
    ):
        await db.seed_order(category=OrderCategory.ESIM, provider="zendit", provider_order_id="T1")

        report = await ExpirySweep(session_factory, registry, reconciler_config).recover_stale()

        assert report.examined == 0
