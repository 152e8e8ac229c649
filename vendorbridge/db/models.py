"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Vendor payloads are the exception: they live in JSON columns.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from vendorbridge.models.api import OrderStatus

JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime that always comes back in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            raise ValueError("Naive datetime not allowed")
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in OrderStatus)


class Order(Base):
    """
    ORM model for orders table.

    One vendor-backed purchase tracked to a terminal outcome.
    """

    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ownership and routing
    owner_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Selectors as requested (internal codes)
    service_code: Mapped[str] = mapped_column(String(100), nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )
    vendor_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Money - charged_amount_minor is write-once
    charged_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    refund_issued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Vendor data
    placement: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    fulfillment: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)

    # Poll chain marker
    next_check_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    check_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    poll_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Optimistic version token
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("charged_amount_minor > 0", name="ck_order_amount_positive"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_order_status"),
        CheckConstraint("category IN ('phone', 'esim', 'smm')", name="ck_order_category"),
        UniqueConstraint("provider", "provider_order_id", name="uq_order_provider_reference"),
        Index("idx_orders_owner_ref", "owner_ref"),
        Index("idx_orders_status_category", "status", "category"),
        Index("idx_orders_next_check_at", "next_check_at"),
    )

    @validates("charged_amount_minor")
    def _validate_charged_amount(self, key: str, value: int) -> int:
        """Charged amount is set once at creation."""
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"charged_amount_minor is immutable ({current} -> {value})")
        return value


class Wallet(Base):
    """
    ORM model for wallets table.

    The user directory lives elsewhere; a wallet row exists per owner ref.
    """

    __tablename__ = "wallets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_ref: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("balance_minor >= 0", name="ck_wallet_balance_non_negative"),)


class LedgerEntry(Base):
    """
    ORM model for ledger_entries table.

    Append-only audit trail of every wallet mutation.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    wallet_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("wallets.id", ondelete="RESTRICT"), nullable=False
    )
    owner_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    delta_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("delta_minor != 0", name="ck_ledger_delta_non_zero"),
        CheckConstraint(
            "balance_after = balance_before + delta_minor", name="ck_ledger_balance_arithmetic"
        ),
        CheckConstraint(
            "kind IN ('purchase', 'refund', 'deposit', 'adjustment')", name="ck_ledger_kind"
        ),
        Index("idx_ledger_owner_created", "owner_ref", "created_at"),
        Index("idx_ledger_order_id", "order_id"),
        # At most one refund per order
        Index(
            "uq_ledger_refund_per_order",
            "order_id",
            unique=True,
            postgresql_where=text("kind = 'refund'"),
            sqlite_where=text("kind = 'refund'"),
        ),
    )


class VendorCallLog(Base):
    """
    ORM model for vendor_call_logs table.

    Telemetry for every outbound vendor call, successful or not.
    """

    __tablename__ = "vendor_call_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_vendor_call_logs_provider_created", "provider", "created_at"),
    )
