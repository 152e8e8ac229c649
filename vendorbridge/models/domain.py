"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
Vendor payloads (SMS lists, eSIM activation data) stay opaque mappings: their
shape belongs to the category, not to the reconciliation core.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from vendorbridge.models.api import OrderCategory, OrderStatus


class CallClass(str, Enum):
    """Vendor call timeout class."""

    INTERACTIVE = "interactive"  # purchase path, a user is waiting
    BACKGROUND = "background"  # polling, sweep, webhook follow-ups


class ObservationSource(str, Enum):
    """Where a vendor status observation came from."""

    POLL = "poll"
    WEBHOOK = "webhook"
    SWEEP = "sweep"
    ACTION = "action"


@dataclass(frozen=True)
class OrderSelectors:
    """Normalized purchase selectors, expressed in internal codes."""

    category: OrderCategory
    service: str
    country: str | None = None
    operator: str | None = None
    link: str | None = None
    quantity: int | None = None
    reference: str | None = None  # caller-chosen vendor transaction id

    def __post_init__(self) -> None:
        """Validate selector constraints."""
        if not self.service:
            raise ValueError("service cannot be empty")
        if self.category == OrderCategory.SMM:
            if not self.link:
                raise ValueError("SMM orders require a link")
            if not self.quantity or self.quantity <= 0:
                raise ValueError(f"SMM quantity must be positive: {self.quantity}")


@dataclass(frozen=True)
class PlacementResult:
    """Outcome of a vendor place-order call."""

    success: bool
    provider_order_id: str | None = None
    price: float | None = None
    expires_at: datetime | None = None
    native_status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        """A successful placement must carry the vendor reference."""
        if self.success and not self.provider_order_id:
            raise ValueError("Successful placement requires provider_order_id")
        if not self.success and not self.error_message:
            raise ValueError("Failed placement requires error_message")

    @classmethod
    def rejected(cls, message: str, code: str | None = None) -> "PlacementResult":
        return cls(success=False, error_code=code, error_message=message)


@dataclass(frozen=True)
class StatusResult:
    """Vendor status for one order, already mapped to canonical."""

    native_status: str
    canonical: OrderStatus
    payload: dict[str, Any] | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a terminal action call (finish/cancel/ban/refill)."""

    success: bool
    message: str | None = None
    reference: str | None = None


@dataclass(frozen=True)
class BalanceResult:
    """Vendor account balance."""

    balance: float
    currency: str


@dataclass(frozen=True)
class CatalogItem:
    """Country, product or service exposed by a vendor catalog."""

    code: str
    name: str
    price: float | None = None
    available: int | None = None
    currency: str | None = None


@dataclass(frozen=True)
class VendorObservation:
    """A vendor status observation fed into the state machine."""

    native_status: str
    canonical: OrderStatus
    source: ObservationSource
    payload: dict[str, Any] | None = None

    @classmethod
    def from_status(cls, result: StatusResult, source: ObservationSource) -> "VendorObservation":
        return cls(
            native_status=result.native_status,
            canonical=result.canonical,
            source=source,
            payload=result.payload,
        )


@dataclass(frozen=True)
class OrderSnapshot:
    """The slice of an order the state machine reasons about."""

    order_id: UUID
    status: OrderStatus
    vendor_status: str | None
    has_fulfillment: bool
    refund_issued: bool
    charged_amount_minor: int
    fulfillment: dict[str, Any] | None = None


@dataclass(frozen=True)
class LedgerEntryData:
    """Ledger entry after persistence."""

    entry_id: UUID
    owner_ref: str
    order_id: UUID | None
    kind: str
    delta_minor: int
    balance_before: int
    balance_after: int
    reason: str
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate ledger arithmetic."""
        if self.balance_after != self.balance_before + self.delta_minor:
            raise ValueError(
                f"Ledger arithmetic broken: {self.balance_before} + {self.delta_minor} "
                f"!= {self.balance_after}"
            )


@dataclass(frozen=True)
class ReconcileOutcome:
    """What applying one observation did to an order."""

    order_id: UUID
    decision: str
    status: OrderStatus
    refunded_minor: int = 0


@dataclass(frozen=True)
class SweepReport:
    """Counters from one sweep pass."""

    examined: int = 0
    updated: int = 0
    expired: int = 0
    refunded: int = 0
    failed: int = 0
