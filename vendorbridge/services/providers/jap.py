"""
JustAnotherPanel (JAP) SMM provider.

Standard SMM panel API v2: form POSTs to one endpoint with ``key`` and
``action``. Any reply carrying an ``error`` key is a rejection.
"""

from typing import Any

from structlog import get_logger

from vendorbridge.exceptions import VendorRejectedError
from vendorbridge.models.api import OrderCategory, OrderStatus
from vendorbridge.models.domain import (
    ActionResult,
    BalanceResult,
    CallClass,
    CatalogItem,
    OrderSelectors,
    PlacementResult,
    StatusResult,
)
from vendorbridge.services.providers.base import BaseVendorProvider

logger = get_logger(__name__)


def delivery_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Delivery report for a completed or partial order."""
    return {
        "start_count": data.get("start_count"),
        "remains": data.get("remains"),
        "charge": data.get("charge"),
        "partial": str(data.get("status", "")).strip().lower() == "partial",
    }


class JapProvider(BaseVendorProvider):
    """JustAnotherPanel API v2."""

    identifier = "jap"
    category = OrderCategory.SMM
    DEFAULT_BASE_URL = "https://justanotherpanel.com/api/v2"

    async def _call(
        self,
        action: str,
        *,
        operation: str,
        call_class: CallClass,
        owner_ref: str | None = None,
        **fields: Any,
    ) -> Any:
        """
        POST one panel action.

        Raises:
            VendorRejectedError: 4xx, non-JSON body or an ``error`` key
        """
        response = await self._request(
            "POST",
            "",
            operation=operation,
            call_class=call_class,
            owner_ref=owner_ref,
            data={"key": self.config.api_key, "action": action, **fields},
        )
        data = self._json_or_reject(response, operation)
        if isinstance(data, dict) and data.get("error"):
            raise VendorRejectedError(self.identifier, str(data["error"]), code=action)
        return data

    async def get_balance(self) -> BalanceResult:
        data = await self._call("balance", operation="balance", call_class=CallClass.INTERACTIVE)
        return BalanceResult(
            balance=float(data.get("balance", 0)), currency=data.get("currency") or "USD"
        )

    async def list_catalog(self, country: str | None = None) -> list[CatalogItem]:
        data = await self._call("services", operation="catalog", call_class=CallClass.INTERACTIVE)
        return [
            CatalogItem(
                code=str(service.get("service")),
                name=service.get("name") or str(service.get("service")),
                price=float(service["rate"]) if service.get("rate") is not None else None,
            )
            for service in data or []
            if isinstance(service, dict)
        ]

    async def place_order(
        self, selectors: OrderSelectors, owner_ref: str | None = None
    ) -> PlacementResult:
        try:
            data = await self._call(
                "add",
                operation="place_order",
                call_class=CallClass.INTERACTIVE,
                owner_ref=owner_ref,
                service=self.map_service_code(selectors.service),
                link=selectors.link,
                quantity=selectors.quantity,
            )
        except VendorRejectedError as exc:
            return PlacementResult.rejected(exc.reason, code=exc.code)

        if not isinstance(data, dict) or not data.get("order"):
            return PlacementResult.rejected("order reply without id")

        return PlacementResult(
            success=True,
            provider_order_id=str(data["order"]),
            details={"link": selectors.link, "quantity": selectors.quantity},
        )

    async def check_status(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.BACKGROUND,
    ) -> StatusResult:
        data = await self._call(
            "status",
            operation="check_status",
            call_class=call_class,
            owner_ref=owner_ref,
            order=provider_order_id,
        )
        native = str(data.get("status") or "")
        canonical = self.map_status(native)
        payload = delivery_payload(data) if canonical == OrderStatus.COMPLETED else None
        return StatusResult(
            native_status=native,
            canonical=canonical,
            payload=payload,
            details={"remains": data.get("remains"), "start_count": data.get("start_count")},
        )

    async def cancel_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._order_action("cancel", provider_order_id, owner_ref, call_class)

    async def refill_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._order_action("refill", provider_order_id, owner_ref, call_class)

    async def _order_action(
        self, action: str, provider_order_id: str, owner_ref: str | None, call_class: CallClass
    ) -> ActionResult:
        try:
            data = await self._call(
                action,
                operation=action,
                call_class=call_class,
                owner_ref=owner_ref,
                order=provider_order_id,
            )
        except VendorRejectedError as exc:
            logger.warning(
                "vendor_action_rejected",
                provider=self.identifier,
                action=action,
                provider_order_id=provider_order_id,
                reason=exc.reason,
            )
            return ActionResult(success=False, message=exc.reason)

        reference = data.get(action) if isinstance(data, dict) else None
        return ActionResult(
            success=True,
            message=f"{action} accepted",
            reference=str(reference) if reference is not None else None,
        )
