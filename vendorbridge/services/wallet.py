"""
Wallet Service - ledger-backed balance mutations.

NO DICTIONARIES - All operations return typed ledger entries.

Every mutation is a locked read-modify-write that appends one LedgerEntry.
Methods flush but never commit: the caller's transaction decides whether the
wallet change lands together with the order change that caused it.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.db.models import LedgerEntry, Order, Wallet
from vendorbridge.exceptions import (
    DataIntegrityError,
    InsufficientFundsError,
    RefundAlreadyIssuedError,
)
from vendorbridge.models.api import LedgerKind
from vendorbridge.models.domain import LedgerEntryData

logger = get_logger(__name__)


class WalletService:
    """
    Wallet ledger integration.

    credit() and refund_order() are additive; refund_order() is the only way
    an order's charge comes back, and it refuses a second refund for the same
    order both by lookup and by the partial unique index on ledger_entries.
    """

    def __init__(self, session: AsyncSession, default_currency: str = "USD") -> None:
        """Initialize wallet service with database session."""
        self.session = session
        self.default_currency = default_currency

    async def credit(
        self,
        owner_ref: str,
        amount_minor: int,
        reason: str,
        kind: LedgerKind = LedgerKind.DEPOSIT,
        order_id: UUID | None = None,
        currency: str | None = None,
    ) -> LedgerEntryData:
        """
        Add funds to a wallet.

        Raises:
            DataIntegrityError: Currency mismatch or non-positive amount
        """
        if amount_minor <= 0:
            raise DataIntegrityError(f"Credit amount must be positive: {amount_minor}")

        wallet = await self._lock_or_create_wallet(owner_ref, currency)
        self._check_currency(wallet, currency)
        return await self._append(wallet, amount_minor, kind, reason, order_id)

    async def debit(
        self,
        owner_ref: str,
        amount_minor: int,
        reason: str,
        order_id: UUID | None = None,
        currency: str | None = None,
    ) -> LedgerEntryData:
        """
        Take funds from a wallet for a purchase.

        Raises:
            InsufficientFundsError: Balance cannot cover the amount (nothing written)
            DataIntegrityError: Currency mismatch or non-positive amount
        """
        if amount_minor <= 0:
            raise DataIntegrityError(f"Debit amount must be positive: {amount_minor}")

        wallet = await self._lock_or_create_wallet(owner_ref, currency)
        self._check_currency(wallet, currency)

        if wallet.balance_minor < amount_minor:
            raise InsufficientFundsError(wallet.balance_minor, amount_minor)

        return await self._append(wallet, -amount_minor, LedgerKind.PURCHASE, reason, order_id)

    async def refund_order(self, order: Order, reason: str) -> LedgerEntryData:
        """
        Credit an order's full charged amount back, exactly once.

        Marks the order's refund_issued flag in the same flush.

        Raises:
            RefundAlreadyIssuedError: A refund entry already exists for the order
        """
        existing = await self._find_refund_for_order(order.id)
        if existing is not None or order.refund_issued:
            raise RefundAlreadyIssuedError(order.id)

        wallet = await self._lock_or_create_wallet(order.owner_ref, order.currency)
        self._check_currency(wallet, order.currency)

        try:
            async with self.session.begin_nested():
                entry = await self._append(
                    wallet, order.charged_amount_minor, LedgerKind.REFUND, reason, order.id
                )
                order.refund_issued = True
                await self.session.flush()
        except IntegrityError as exc:
            # Concurrent refund won the unique index
            logger.warning("refund_race_lost", order_id=str(order.id), error=str(exc))
            raise RefundAlreadyIssuedError(order.id) from exc

        logger.info(
            "order_refunded",
            order_id=str(order.id),
            owner_ref=order.owner_ref,
            amount_minor=order.charged_amount_minor,
            balance_after=entry.balance_after,
        )
        return entry

    async def get_balance(self, owner_ref: str) -> int:
        """Current balance, zero for an owner without a wallet."""
        wallet = await self._find_wallet(owner_ref)
        return wallet.balance_minor if wallet else 0

    async def get_wallet(self, owner_ref: str) -> Wallet | None:
        return await self._find_wallet(owner_ref)

    async def list_entries(self, owner_ref: str, limit: int = 50) -> list[LedgerEntryData]:
        """Most recent ledger entries first."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.owner_ref == owner_ref)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._entry_to_domain(entry) for entry in result.scalars().all()]

    async def refunded_amount(self, order_id: UUID) -> int:
        """Sum of refund entries for an order (0 or the charged amount)."""
        stmt = select(func.coalesce(func.sum(LedgerEntry.delta_minor), 0)).where(
            LedgerEntry.order_id == order_id,
            LedgerEntry.kind == LedgerKind.REFUND.value,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _append(
        self,
        wallet: Wallet,
        delta_minor: int,
        kind: LedgerKind,
        reason: str,
        order_id: UUID | None,
    ) -> LedgerEntryData:
        """Apply delta to a locked wallet and write its ledger entry."""
        balance_before = wallet.balance_minor
        balance_after = balance_before + delta_minor
        if balance_after < 0:
            raise DataIntegrityError(f"Wallet {wallet.id} would go negative: {balance_after}")

        entry = LedgerEntry(
            wallet_id=wallet.id,
            owner_ref=wallet.owner_ref,
            order_id=order_id,
            kind=kind.value,
            delta_minor=delta_minor,
            balance_before=balance_before,
            balance_after=balance_after,
            reason=reason,
        )
        self.session.add(entry)
        wallet.balance_minor = balance_after
        await self.session.flush()

        if wallet.balance_minor != balance_after:
            raise DataIntegrityError(
                f"Balance mismatch: expected {balance_after}, got {wallet.balance_minor}"
            )

        return self._entry_to_domain(entry)

    def _check_currency(self, wallet: Wallet, currency: str | None) -> None:
        if currency is not None and wallet.currency != currency:
            raise DataIntegrityError(
                f"Currency mismatch: wallet={wallet.currency}, request={currency}"
            )

    async def _lock_or_create_wallet(self, owner_ref: str, currency: str | None) -> Wallet:
        """Lock the owner's wallet row (SELECT FOR UPDATE), creating it on first use."""
        wallet = await self._lock_wallet_for_update(owner_ref)
        if wallet is not None:
            return wallet

        try:
            async with self.session.begin_nested():
                self.session.add(
                    Wallet(
                        owner_ref=owner_ref,
                        balance_minor=0,
                        currency=currency or self.default_currency,
                    )
                )
                await self.session.flush()
        except IntegrityError:
            # Another transaction created it first
            logger.info("wallet_create_race", owner_ref=owner_ref)

        wallet = await self._lock_wallet_for_update(owner_ref)
        if wallet is None:
            raise DataIntegrityError(f"Wallet for {owner_ref} missing after create")
        return wallet

    async def _find_wallet(self, owner_ref: str) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.owner_ref == owner_ref)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_wallet_for_update(self, owner_ref: str) -> Wallet | None:
        stmt = (
            select(Wallet)
            .where(Wallet.owner_ref == owner_ref)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_refund_for_order(self, order_id: UUID) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(
            LedgerEntry.order_id == order_id,
            LedgerEntry.kind == LedgerKind.REFUND.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _entry_to_domain(self, entry: LedgerEntry) -> LedgerEntryData:
        """Convert ORM ledger entry to domain model."""
        return LedgerEntryData(
            entry_id=entry.id,
            owner_ref=entry.owner_ref,
            order_id=entry.order_id,
            kind=entry.kind,
            delta_minor=entry.delta_minor,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            reason=entry.reason,
            created_at=entry.created_at,
        )
