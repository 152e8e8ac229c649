"""
5SIM phone-number provider.

Bearer-token REST API. Orders are activations: buy a number, read the SMS
list off /user/check, then finish, cancel or ban.
"""

from typing import Any

from structlog import get_logger

from vendorbridge.exceptions import VendorRejectedError
from vendorbridge.models.api import OrderCategory
from vendorbridge.models.domain import (
    ActionResult,
    BalanceResult,
    CallClass,
    CatalogItem,
    OrderSelectors,
    PlacementResult,
    StatusResult,
)
from vendorbridge.services.providers.base import BaseVendorProvider, parse_vendor_datetime

logger = get_logger(__name__)


def extract_sms(data: dict[str, Any]) -> dict[str, Any] | None:
    """SMS payload from a /user/check reply, None when nothing arrived yet."""
    messages = [
        {
            "code": sms.get("code"),
            "text": sms.get("text"),
            "sender": sms.get("sender"),
            "received_at": sms.get("created_at") or sms.get("date"),
        }
        for sms in data.get("sms") or []
        if isinstance(sms, dict)
    ]
    return {"sms": messages} if messages else None


class FiveSimProvider(BaseVendorProvider):
    """5SIM activation API."""

    identifier = "5sim"
    category = OrderCategory.PHONE
    DEFAULT_BASE_URL = "https://5sim.net/v1"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def get_balance(self) -> BalanceResult:
        response = await self._request(
            "GET", "/user/profile", operation="balance", call_class=CallClass.INTERACTIVE
        )
        data = self._json_or_reject(response, "balance")
        return BalanceResult(balance=float(data.get("balance", 0)), currency="RUB")

    async def list_countries(self) -> list[CatalogItem]:
        response = await self._request(
            "GET", "/guest/countries", operation="countries", call_class=CallClass.INTERACTIVE
        )
        data = self._json_or_reject(response, "countries")
        return [
            CatalogItem(
                code=code,
                name=(info.get("text_en") if isinstance(info, dict) else None)
                or code.capitalize(),
            )
            for code, info in data.items()
        ]

    async def list_catalog(self, country: str | None = None) -> list[CatalogItem]:
        vendor_country = self.map_country_code(country) if country else "any"
        response = await self._request(
            "GET",
            f"/guest/products/{vendor_country}/any",
            operation="catalog",
            call_class=CallClass.INTERACTIVE,
        )
        data = self._json_or_reject(response, "catalog")
        return [
            CatalogItem(
                code=product,
                name=product.capitalize(),
                price=info.get("Price"),
                available=info.get("Qty"),
                currency="RUB",
            )
            for product, info in data.items()
            if isinstance(info, dict)
        ]

    async def place_order(
        self, selectors: OrderSelectors, owner_ref: str | None = None
    ) -> PlacementResult:
        country = self.map_country_code(selectors.country) if selectors.country else "any"
        operator = selectors.operator or "any"
        product = self.map_service_code(selectors.service)

        response = await self._request(
            "GET",
            f"/user/buy/activation/{country}/{operator}/{product}",
            operation="place_order",
            call_class=CallClass.INTERACTIVE,
            owner_ref=owner_ref,
        )
        try:
            data = self._json_or_reject(response, "place_order")
        except VendorRejectedError as exc:
            # 5SIM answers "no free phones" and friends as plain text
            return PlacementResult.rejected(exc.reason, code=exc.code)

        if not isinstance(data, dict) or not data.get("id"):
            return PlacementResult.rejected("order reply without id")

        return PlacementResult(
            success=True,
            provider_order_id=str(data["id"]),
            price=data.get("price"),
            expires_at=parse_vendor_datetime(data.get("expires")),
            native_status=data.get("status"),
            details={
                "phone": data.get("phone"),
                "operator": data.get("operator"),
                "country": data.get("country"),
                "product": data.get("product"),
            },
        )

    async def check_status(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.BACKGROUND,
    ) -> StatusResult:
        response = await self._request(
            "GET",
            f"/user/check/{provider_order_id}",
            operation="check_status",
            call_class=call_class,
            owner_ref=owner_ref,
        )
        data = self._json_or_reject(response, "check_status")
        native = str(data.get("status") or "")
        return StatusResult(
            native_status=native,
            canonical=self.map_status(native),
            payload=extract_sms(data),
            details={"phone": data.get("phone")},
        )

    async def finish_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._order_action("finish", provider_order_id, owner_ref, call_class)

    async def cancel_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._order_action("cancel", provider_order_id, owner_ref, call_class)

    async def ban_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._order_action("ban", provider_order_id, owner_ref, call_class)

    async def _order_action(
        self, action: str, provider_order_id: str, owner_ref: str | None, call_class: CallClass
    ) -> ActionResult:
        response = await self._request(
            "GET",
            f"/user/{action}/{provider_order_id}",
            operation=action,
            call_class=call_class,
            owner_ref=owner_ref,
        )
        try:
            data = self._json_or_reject(response, action)
        except VendorRejectedError as exc:
            logger.warning(
                "vendor_action_rejected",
                provider=self.identifier,
                action=action,
                provider_order_id=provider_order_id,
                reason=exc.reason,
            )
            return ActionResult(success=False, message=exc.reason)
        return ActionResult(success=True, message=str(data.get("status") or action))
