"""
Webhook routes - inbound vendor notifications.

Authenticated deliveries with a transactionId are always acknowledged with
200, even when processing fails: the failure is logged for manual recovery
and the stale-order recovery pass re-queries the vendor later.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.api.dependencies import get_config, get_notifier, get_registry
from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.session import get_db
from vendorbridge.exceptions import ProviderNotFoundError, WebhookVerificationError
from vendorbridge.models.api import WebhookAck
from vendorbridge.observability import log_context, metrics, trace_operation
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.registry import ProviderRegistry
from vendorbridge.services.webhooks import ZenditNotification, ZenditWebhookHandler, verify_token

logger = get_logger(__name__)
router = APIRouter(tags=["webhooks"])

# Vendors that push notifications
WEBHOOK_PROVIDERS = frozenset({"zendit"})


@router.api_route("/v1/webhooks/{provider}", methods=["GET", "HEAD"])
async def webhook_liveness(provider: str) -> Response:
    """Vendors probe the endpoint before enabling delivery."""
    return Response(status_code=status.HTTP_200_OK)


@router.post("/v1/webhooks/{provider}", response_model=WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    config: ReconcilerConfig = Depends(get_config),
    notifier: NotificationDispatcher | None = Depends(get_notifier),
) -> WebhookAck:
    """
    Receive a vendor purchase notification.

    401 on a bad token, 400 without a transactionId, 200 otherwise.
    """
    if provider not in WEBHOOK_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown webhook")

    try:
        verify_token(config.webhook_secret, authorization)
    except WebhookVerificationError as exc:
        metrics.webhooks_total.labels(provider=provider, result="unauthorized").inc()
        logger.warning("webhook_rejected", provider=provider, reason=exc.message)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc

    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        notification = ZenditNotification.from_payload(body)
    except ValueError as exc:
        metrics.webhooks_total.labels(provider=provider, result="bad_request").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    with log_context(provider=provider, transaction_id=notification.transaction_id), trace_operation(
        "webhook", provider=provider, transaction_id=notification.transaction_id
    ):
        try:
            vendor = registry.get(provider)
            handler = ZenditWebhookHandler(db, vendor, config, notifier)
            result = await handler.handle(notification)
        except ProviderNotFoundError:
            logger.error("webhook_provider_not_registered", provider=provider)
            result = "provider_not_registered"
        except Exception as exc:
            await db.rollback()
            logger.error(
                "webhook_processing_failed",
                provider=provider,
                transaction_id=notification.transaction_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            metrics.record_error(type(exc).__name__, "webhook")
            result = "error"

    metrics.webhooks_total.labels(provider=provider, result=result).inc()
    return WebhookAck(result=result)
