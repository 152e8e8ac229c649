"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class OrderStatus(str, Enum):
    """Canonical, vendor-independent order status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"

    @property
    def is_active(self) -> bool:
        """Order can still change through reconciliation."""
        return self in (OrderStatus.PENDING, OrderStatus.PROCESSING)

    @property
    def is_final(self) -> bool:
        """Terminal state: no further reconciliation transition."""
        return not self.is_active


class OrderCategory(str, Enum):
    """Capacity category sold through a vendor."""

    PHONE = "phone"
    ESIM = "esim"
    SMM = "smm"


class LedgerKind(str, Enum):
    """Wallet ledger entry type."""

    PURCHASE = "purchase"
    REFUND = "refund"
    DEPOSIT = "deposit"
    ADJUSTMENT = "adjustment"


class OrderAction(str, Enum):
    """Explicit user/operator actions on an order."""

    FINISH = "finish"
    CANCEL = "cancel"
    REPORT = "report"
    REFILL = "refill"


# ============================================================================
# Order Models
# ============================================================================


class PurchaseRequest(BaseModel):
    """POST /v1/orders request body. The storefront prices the order."""

    owner_ref: str = Field(..., min_length=1, max_length=255)
    provider: str = Field(..., min_length=1, max_length=50)
    category: OrderCategory
    service: str = Field(..., min_length=1, max_length=100)
    country: str | None = Field(None, max_length=100)
    operator: str | None = Field(None, max_length=100)
    link: str | None = Field(None, max_length=2048, description="SMM target link")
    quantity: int | None = Field(None, gt=0, description="SMM quantity")
    amount_minor: int = Field(..., gt=0, description="Charged amount in minor units")
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Currency codes are upper-case ISO 4217."""
        return v.upper()

    @model_validator(mode="after")
    def validate_smm_fields(self) -> "PurchaseRequest":
        """SMM orders need a target link and a quantity."""
        if self.category == OrderCategory.SMM and (not self.link or not self.quantity):
            raise ValueError("SMM orders require link and quantity")
        return self


class OrderResponse(BaseModel):
    """Order as seen by the storefront."""

    order_id: UUID
    owner_ref: str
    category: OrderCategory
    provider: str
    provider_order_id: str | None
    status: OrderStatus
    vendor_status: str | None
    charged_amount_minor: int
    currency: str
    placement: dict[str, Any] | None = None
    fulfillment: dict[str, Any] | None = None
    refund_issued: bool
    status_message: str | None = None
    created_at: str
    expires_at: str | None = None
    completed_at: str | None = None


class OrderActionResponse(BaseModel):
    """POST /v1/orders/{id}/{action} response."""

    order: OrderResponse
    action: OrderAction
    vendor_acknowledged: bool
    message: str | None = None


# ============================================================================
# Wallet Models
# ============================================================================


class WalletCreditRequest(BaseModel):
    """POST /v1/wallets/{owner_ref}/credits request body (non-order credits)."""

    amount_minor: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)
    kind: LedgerKind = LedgerKind.DEPOSIT
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: LedgerKind) -> LedgerKind:
        """Purchase debits and refunds are only written by the order flow."""
        if v not in (LedgerKind.DEPOSIT, LedgerKind.ADJUSTMENT):
            raise ValueError("kind must be deposit or adjustment")
        return v


class LedgerEntryItem(BaseModel):
    """A single ledger line."""

    entry_id: UUID
    order_id: UUID | None
    kind: LedgerKind
    delta_minor: int
    balance_before: int
    balance_after: int
    reason: str
    created_at: str


class WalletResponse(BaseModel):
    """GET /v1/wallets/{owner_ref} response."""

    owner_ref: str
    balance_minor: int
    currency: str
    entries: list[LedgerEntryItem] = Field(default_factory=list)


# ============================================================================
# Provider Models
# ============================================================================


class ProviderItem(BaseModel):
    """Registered vendor."""

    identifier: str
    category: OrderCategory
    enabled: bool
    contract_version: int


class ProviderListResponse(BaseModel):
    """GET /v1/providers response."""

    providers: list[ProviderItem]


class ProviderBalanceResponse(BaseModel):
    """GET /v1/providers/{identifier}/balance response."""

    identifier: str
    balance: float
    currency: str


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAck(BaseModel):
    """Acknowledgement returned to a vendor."""

    status: Literal["ok"] = "ok"
    result: str


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
