"""
Webhook Reconciler - passive path for vendor push notifications.

Zendit posts purchase results keyed by the transactionId we chose at
placement. The handler maps the notification into a VendorObservation and
runs it through the same reconciler as polling, so duplicates, regressions
and refunds behave identically on both paths.
"""

import hmac
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig
from vendorbridge.db.models import Order
from vendorbridge.exceptions import WebhookVerificationError
from vendorbridge.models.domain import ObservationSource, VendorObservation
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.base import VendorProvider
from vendorbridge.services.providers.zendit import extract_activation
from vendorbridge.services.reconciler import OrderReconciler

logger = get_logger(__name__)


def verify_token(secret: str, authorization: str | None) -> None:
    """
    Check the webhook authenticity token.

    Accepts ``Bearer <secret>`` or the raw secret. With no secret configured
    every delivery is accepted and the degraded mode is logged.

    Raises:
        WebhookVerificationError: Token missing or wrong
    """
    if not secret:
        logger.warning("webhook_secret_not_configured")
        return
    if not authorization:
        raise WebhookVerificationError("missing authorization token")

    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    if not hmac.compare_digest(token.encode(), secret.encode()):
        raise WebhookVerificationError("invalid authorization token")


@dataclass(frozen=True)
class ZenditNotification:
    """The parts of a Zendit purchase notification we act on."""

    transaction_id: str
    status: str
    confirmation: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, data: Any) -> "ZenditNotification":
        """
        Parse a webhook body; some deliveries wrap the purchase in ``data``.

        Raises:
            ValueError: transactionId missing
        """
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict) or not data.get("transactionId"):
            raise ValueError("transactionId is required")

        confirmation = data.get("confirmation")
        error = data.get("error")
        return cls(
            transaction_id=str(data["transactionId"]),
            status=str(data.get("status") or ""),
            confirmation=confirmation if isinstance(confirmation, dict) else None,
            error=str(error) if error else None,
        )


class ZenditWebhookHandler:
    """Applies Zendit notifications to orders."""

    def __init__(
        self,
        session: AsyncSession,
        provider: VendorProvider,
        config: ReconcilerConfig,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.config = config
        self.notifier = notifier

    async def handle(self, notification: ZenditNotification) -> str:
        """
        Reconcile one notification.

        Returns:
            Short result label (the transition decision, or order_not_found)
        """
        order = await self._find_order_by_reference(notification.transaction_id)
        if order is None:
            logger.warning(
                "webhook_order_not_found",
                provider=self.provider.identifier,
                transaction_id=notification.transaction_id,
            )
            return "order_not_found"

        order_id = order.id
        # Release the read transaction before the reconciler takes its lock
        await self.session.commit()

        observation = VendorObservation(
            native_status=notification.status,
            canonical=self.provider.map_status(notification.status),
            source=ObservationSource.WEBHOOK,
            payload=extract_activation(notification.confirmation),
        )
        reconciler = OrderReconciler(self.session, self.config, self.notifier)
        outcome = await reconciler.apply_observation(order_id, observation)

        logger.info(
            "webhook_processed",
            provider=self.provider.identifier,
            order_id=str(order_id),
            vendor_status=notification.status,
            decision=outcome.decision,
            status=outcome.status.value,
            vendor_error=notification.error,
        )
        return outcome.decision

    async def _find_order_by_reference(self, provider_order_id: str) -> Order | None:
        stmt = select(Order).where(
            Order.provider == self.provider.identifier,
            Order.provider_order_id == provider_order_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
