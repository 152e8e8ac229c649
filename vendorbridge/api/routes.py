"""
API Routes - FastAPI endpoints for the storefront.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.api.dependencies import (
    get_config,
    get_notifier,
    get_registry,
    require_api_key,
)
from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order
from vendorbridge.db.session import get_db
from vendorbridge.exceptions import (
    ConcurrencyError,
    DataIntegrityError,
    InsufficientFundsError,
    OrderNotActiveError,
    OrderNotFoundError,
    ProviderDisabledError,
    ProviderNotFoundError,
    RefundAlreadyIssuedError,
    UnsupportedActionError,
    VendorRejectedError,
    VendorUnreachableError,
)
from vendorbridge.models.api import (
    HealthResponse,
    LedgerEntryItem,
    LedgerKind,
    OrderAction,
    OrderActionResponse,
    OrderCategory,
    OrderResponse,
    OrderStatus,
    ProviderBalanceResponse,
    ProviderItem,
    ProviderListResponse,
    PurchaseRequest,
    WalletCreditRequest,
    WalletResponse,
)
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.orders import OrderActionService
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.purchase import PurchaseService
from vendorbridge.services.wallet import WalletService

logger = get_logger(__name__)

router = APIRouter()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def order_to_response(order: Order) -> OrderResponse:
    """Convert ORM order to API response."""
    return OrderResponse(
        order_id=order.id,
        owner_ref=order.owner_ref,
        category=OrderCategory(order.category),
        provider=order.provider,
        provider_order_id=order.provider_order_id,
        status=OrderStatus(order.status),
        vendor_status=order.vendor_status,
        charged_amount_minor=order.charged_amount_minor,
        currency=order.currency,
        placement=order.placement,
        fulfillment=order.fulfillment,
        refund_issued=order.refund_issued,
        status_message=order.status_message,
        created_at=order.created_at.isoformat(),
        expires_at=_iso(order.expires_at),
        completed_at=_iso(order.completed_at),
    )


# ============================================================================
# Orders
# ============================================================================


@router.post(
    "/v1/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
async def create_order(
    request: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    config: ReconcilerConfig = Depends(get_config),
    notifier: NotificationDispatcher | None = Depends(get_notifier),
) -> OrderResponse:
    """
    Purchase: debit the wallet and place the order with the vendor.

    On vendor rejection or an unreachable vendor the debit is reversed
    before the error is returned.
    """
    service = PurchaseService(db, registry, config, notifier)

    try:
        order = await service.purchase(request)
    except ProviderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ProviderDisabledError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except InsufficientFundsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient funds: balance {exc.balance}, required {exc.required}",
        ) from exc
    except VendorRejectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Vendor rejected order: {exc.reason}",
        ) from exc
    except VendorUnreachableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vendor unavailable, please retry",
        ) from exc
    except DataIntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return order_to_response(order)


@router.get(
    "/v1/orders/{order_id}",
    response_model=OrderResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    config: ReconcilerConfig = Depends(get_config),
) -> OrderResponse:
    """Get an order's current state."""
    service = OrderActionService(db, registry, config)
    try:
        order = await service.get_order(order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return order_to_response(order)


@router.post(
    "/v1/orders/{order_id}/{action}",
    response_model=OrderActionResponse,
    dependencies=[Depends(require_api_key)],
)
async def order_action(
    order_id: UUID,
    action: OrderAction,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    config: ReconcilerConfig = Depends(get_config),
    notifier: NotificationDispatcher | None = Depends(get_notifier),
) -> OrderActionResponse:
    """
    finish, cancel, report or refill an order.

    finish needs a delivered payload; cancel refunds when nothing was
    delivered; report refunds and marks the order refunded; refill is
    SMM-only and leaves the order as it is.
    """
    service = OrderActionService(db, registry, config, notifier)

    try:
        outcome = await service.perform(order_id, action)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (OrderNotActiveError, ConcurrencyError, RefundAlreadyIssuedError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (UnsupportedActionError, VendorRejectedError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except VendorUnreachableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vendor unavailable, please retry",
        ) from exc

    return OrderActionResponse(
        order=order_to_response(outcome.order),
        action=outcome.action,
        vendor_acknowledged=outcome.vendor_acknowledged,
        message=outcome.message,
    )


# ============================================================================
# Wallets
# ============================================================================


async def _wallet_response(service: WalletService, owner_ref: str) -> WalletResponse:
    wallet = await service.get_wallet(owner_ref)
    if wallet is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"No wallet for {owner_ref}"
        )
    entries = await service.list_entries(owner_ref)
    return WalletResponse(
        owner_ref=wallet.owner_ref,
        balance_minor=wallet.balance_minor,
        currency=wallet.currency,
        entries=[
            LedgerEntryItem(
                entry_id=entry.entry_id,
                order_id=entry.order_id,
                kind=LedgerKind(entry.kind),
                delta_minor=entry.delta_minor,
                balance_before=entry.balance_before,
                balance_after=entry.balance_after,
                reason=entry.reason,
                created_at=entry.created_at.isoformat(),
            )
            for entry in entries
        ],
    )


@router.post(
    "/v1/wallets/{owner_ref}/credits",
    response_model=WalletResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
async def credit_wallet(
    owner_ref: str,
    request: WalletCreditRequest,
    db: AsyncSession = Depends(get_db),
    config: ReconcilerConfig = Depends(get_config),
) -> WalletResponse:
    """Deposit or adjustment credit (not tied to an order)."""
    service = WalletService(db, config.default_currency)
    try:
        await service.credit(
            owner_ref,
            request.amount_minor,
            reason=request.reason,
            kind=request.kind,
            currency=request.currency,
        )
        await db.commit()
    except DataIntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    logger.info(
        "wallet_credited",
        owner_ref=owner_ref,
        amount_minor=request.amount_minor,
        kind=request.kind.value,
    )
    return await _wallet_response(service, owner_ref)


@router.get(
    "/v1/wallets/{owner_ref}",
    response_model=WalletResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_wallet(
    owner_ref: str,
    db: AsyncSession = Depends(get_db),
    config: ReconcilerConfig = Depends(get_config),
) -> WalletResponse:
    """Balance and most recent ledger entries."""
    return await _wallet_response(WalletService(db, config.default_currency), owner_ref)


# ============================================================================
# Providers
# ============================================================================


@router.get(
    "/v1/providers",
    response_model=ProviderListResponse,
    dependencies=[Depends(require_api_key)],
)
async def list_providers(
    registry: ProviderRegistry = Depends(get_registry),
) -> ProviderListResponse:
    """Registered vendors and whether they take new orders."""
    return ProviderListResponse(
        providers=[
            ProviderItem(
                identifier=provider.identifier,
                category=provider.category,
                enabled=provider.is_enabled(),
                contract_version=provider.contract_version,
            )
            for provider in registry.all()
        ]
    )


@router.get(
    "/v1/providers/{identifier}/balance",
    response_model=ProviderBalanceResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_provider_balance(
    identifier: str,
    registry: ProviderRegistry = Depends(get_registry),
) -> ProviderBalanceResponse:
    """Our account balance at a vendor."""
    try:
        provider = registry.get_enabled(identifier)
        balance = await provider.get_balance()
    except ProviderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ProviderDisabledError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except VendorRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except VendorUnreachableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc

    return ProviderBalanceResponse(
        identifier=identifier, balance=balance.balance, currency=balance.currency
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
