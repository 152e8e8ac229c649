"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Ambiguous vendor statuses and duplicate notifications are not errors: the
state machine reports them as transition decisions.
"""

from uuid import UUID


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    pass


class VendorUnreachableError(ReconciliationError):
    """Raised on network failure, timeout or a 5xx from a vendor. Retryable."""

    def __init__(self, provider: str, operation: str, message: str) -> None:
        self.provider = provider
        self.operation = operation
        self.message = message
        super().__init__(f"Vendor {provider} unreachable during {operation}: {message}")


class VendorRejectedError(ReconciliationError):
    """Raised when a vendor answers with a structured error (e.g. no stock)."""

    def __init__(self, provider: str, reason: str, code: str | None = None) -> None:
        self.provider = provider
        self.reason = reason
        self.code = code
        super().__init__(f"Vendor {provider} rejected request: {reason}")


class UnsupportedActionError(ReconciliationError):
    """Raised when a vendor has no equivalent of a terminal action."""

    def __init__(self, provider: str, action: str) -> None:
        self.provider = provider
        self.action = action
        super().__init__(f"Provider {provider} does not support {action}")


class WebhookVerificationError(ReconciliationError):
    """Raised when a webhook authenticity token does not match."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class RefundAlreadyIssuedError(ReconciliationError):
    """Raised when a second refund is attempted for the same order."""

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Refund already issued for order {order_id}")


class InsufficientFundsError(ReconciliationError):
    """Raised when a wallet balance cannot cover a debit."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient funds. Balance: {balance}, Required: {required}")


class OrderNotFoundError(ReconciliationError):
    """Raised when an order doesn't exist."""

    def __init__(self, reference: UUID | str) -> None:
        self.reference = reference
        super().__init__(f"Order not found: {reference}")


class OrderNotActiveError(ReconciliationError):
    """Raised when an action needs an order in a different state."""

    def __init__(self, order_id: UUID, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}")


class ProviderNotFoundError(ReconciliationError):
    """Raised when no provider is registered under an identifier."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Unknown provider: {identifier}")


class ProviderDisabledError(ReconciliationError):
    """Raised when a provider exists but is disabled or unconfigured."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Provider {identifier} is disabled")


class DataIntegrityError(ReconciliationError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class ConcurrencyError(ReconciliationError):
    """Raised when concurrent modification detected."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")
