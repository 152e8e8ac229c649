"""
Tests for WalletService.

Runs against the in-memory database: ledger arithmetic, insufficient funds
and the exactly-once refund guard.
"""

import pytest
from sqlalchemy import select

from vendorbridge.db.models import LedgerEntry, Order
from vendorbridge.exceptions import (
    DataIntegrityError,
    InsufficientFundsError,
    RefundAlreadyIssuedError,
)
from vendorbridge.models.api import LedgerKind
from vendorbridge.services.wallet import WalletService


class TestCredit:
    """Tests for credit()."""

    async def test_first_credit_creates_wallet(self, db_session):
        wallet = WalletService(db_session)

        entry = await wallet.credit("user-1", 1000, reason="top up")
        await db_session.commit()

        assert entry.balance_before == 0
        assert entry.balance_after == 1000
        assert entry.kind == LedgerKind.DEPOSIT.value
        assert await wallet.get_balance("user-1") == 1000

    async def test_credits_accumulate(self, db_session):
        wallet = WalletService(db_session)

        await wallet.credit("user-1", 300, reason="one")
        entry = await wallet.credit("user-1", 200, reason="two", kind=LedgerKind.ADJUSTMENT)

        assert entry.balance_before == 300
        assert entry.balance_after == 500
        assert entry.kind == LedgerKind.ADJUSTMENT.value

    async def test_non_positive_amount_rejected(self, db_session):
        with pytest.raises(DataIntegrityError):
            await WalletService(db_session).credit("user-1", 0, reason="nothing")

    async def test_currency_mismatch_rejected(self, db_session):
        wallet = WalletService(db_session)
        await wallet.credit("user-1", 100, reason="usd", currency="USD")

        with pytest.raises(DataIntegrityError):
            await wallet.credit("user-1", 100, reason="eur", currency="EUR")


class TestDebit:
    """Tests for debit()."""

    async def test_debit_reduces_balance(self, db_session):
        wallet = WalletService(db_session)
        await wallet.credit("user-1", 1000, reason="top up")

        entry = await wallet.debit("user-1", 400, reason="purchase")

        assert entry.delta_minor == -400
        assert entry.balance_after == 600
        assert entry.kind == LedgerKind.PURCHASE.value

    async def test_insufficient_funds_writes_nothing(self, db_session):
        wallet = WalletService(db_session)
        await wallet.credit("user-1", 100, reason="top up")
        await db_session.commit()

        with pytest.raises(InsufficientFundsError) as exc_info:
            await wallet.debit("user-1", 500, reason="too much")

        assert exc_info.value.balance == 100
        assert exc_info.value.required == 500
        assert await wallet.get_balance("user-1") == 100
        entries = await wallet.list_entries("user-1")
        assert [e.kind for e in entries] == [LedgerKind.DEPOSIT.value]

    async def test_debit_without_wallet(self, db_session):
        with pytest.raises(InsufficientFundsError):
            await WalletService(db_session).debit("nobody", 1, reason="purchase")


class TestRefundOrder:
    """Tests for refund_order()."""

    async def test_refund_credits_charged_amount_once(self, db, session_factory):
        order_id = await db.seed_order(amount_minor=500)

        async with session_factory() as session:
            order = await session.get(Order, order_id)
            entry = await WalletService(session).refund_order(order, reason="failed")
            await session.commit()

        assert entry.delta_minor == 500
        assert entry.kind == LedgerKind.REFUND.value
        assert await db.balance("user-1") == 500
        assert (await db.load_order(order_id)).refund_issued

    async def test_second_refund_raises(self, db, session_factory):
        order_id = await db.seed_order(amount_minor=500)

        async with session_factory() as session:
            order = await session.get(Order, order_id)
            wallet = WalletService(session)
            await wallet.refund_order(order, reason="failed")
            await session.commit()

            with pytest.raises(RefundAlreadyIssuedError):
                await wallet.refund_order(order, reason="again")

        assert len(await db.refund_entries(order_id)) == 1
        assert await db.balance("user-1") == 500

    async def test_ledger_is_checked_even_if_flag_is_clear(self, db, session_factory):
        """The ledger entry, not the order flag, is the source of truth."""
        order_id = await db.seed_order(amount_minor=500)

        async with session_factory() as session:
            order = await session.get(Order, order_id)
            wallet = WalletService(session)
            await wallet.refund_order(order, reason="failed")
            await session.commit()

            order.refund_issued = False
            with pytest.raises(RefundAlreadyIssuedError):
                await wallet.refund_order(order, reason="again")

    async def test_refunded_amount(self, db, session_factory):
        order_id = await db.seed_order(amount_minor=750)

        async with session_factory() as session:
            wallet = WalletService(session)
            assert await wallet.refunded_amount(order_id) == 0
            order = await session.get(Order, order_id)
            await wallet.refund_order(order, reason="failed")
            await session.commit()
            assert await wallet.refunded_amount(order_id) == 750


class TestLedger:
    """Ledger entries mirror every mutation."""

    async def test_entries_chain_balances(self, db_session):
        wallet = WalletService(db_session)
        await wallet.credit("user-1", 1000, reason="top up")
        await wallet.debit("user-1", 250, reason="purchase")
        await wallet.credit("user-1", 250, reason="refund-ish", kind=LedgerKind.ADJUSTMENT)
        await db_session.commit()

        result = await db_session.execute(
            select(LedgerEntry).where(LedgerEntry.owner_ref == "user-1")
        )
        entries = list(result.scalars().all())

        assert len(entries) == 3
        for entry in entries:
            assert entry.balance_after == entry.balance_before + entry.delta_minor
        assert sum(e.delta_minor for e in entries) == await wallet.get_balance("user-1")

    async def test_get_balance_without_wallet(self, db_session):
        assert await WalletService(db_session).get_balance("nobody") == 0
