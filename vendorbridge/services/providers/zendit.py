"""
Zendit eSIM provider.

Purchases are keyed by a caller-chosen transactionId, so the order id we
generate before placement doubles as the vendor reference. Results arrive by
webhook; /esim/purchases/{id} is the polling fallback.
"""

from typing import Any
from uuid import uuid4

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
from vendorbridge.services.providers.base import BaseVendorProvider

logger = get_logger(__name__)

OFFER_PAGE_SIZE = 500


def build_lpa(smdp_address: str | None, activation_code: str | None) -> str | None:
    """LPA activation string for QR provisioning."""
    if not smdp_address or not activation_code:
        return None
    return f"LPA:1${smdp_address}${activation_code}"


def extract_activation(confirmation: Any) -> dict[str, Any] | None:
    """
    eSIM fulfillment payload from a purchase confirmation.

    Returns None when the confirmation carries no activation data at all.
    """
    if not isinstance(confirmation, dict):
        return None

    iccid = confirmation.get("iccid")
    smdp = confirmation.get("smdpAddress")
    code = confirmation.get("activationCode")
    if not (iccid or smdp or code):
        return None

    return {
        "iccid": iccid,
        "smdp_address": smdp,
        "activation_code": code,
        "lpa": build_lpa(smdp, code),
    }


def _offer_price(offer: dict[str, Any]) -> tuple[float | None, str | None]:
    price = offer.get("price")
    if not isinstance(price, dict):
        return None, None
    divisor = price.get("currencyDivisor") or 1
    fixed = price.get("fixed")
    return (fixed / divisor if fixed is not None else None), price.get("currency")


class ZenditProvider(BaseVendorProvider):
    """Zendit eSIM API."""

    identifier = "zendit"
    category = OrderCategory.ESIM
    DEFAULT_BASE_URL = "https://api.zendit.io/v1"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def get_balance(self) -> BalanceResult:
        response = await self._request(
            "GET", "/balance", operation="balance", call_class=CallClass.INTERACTIVE
        )
        data = self._json_or_reject(response, "balance")
        return BalanceResult(
            balance=float(data.get("availableBalance", 0)),
            currency=data.get("currencyCode") or "USD",
        )

    async def _offers(self, country: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"_limit": OFFER_PAGE_SIZE, "_offset": 0}
        if country:
            params["country"] = self.map_country_code(country)
        response = await self._request(
            "GET",
            "/esim/offers",
            operation="catalog",
            call_class=CallClass.INTERACTIVE,
            params=params,
        )
        data = self._json_or_reject(response, "catalog")
        offers = data.get("list") if isinstance(data, dict) else None
        return [offer for offer in offers or [] if isinstance(offer, dict)]

    async def list_countries(self) -> list[CatalogItem]:
        seen: dict[str, CatalogItem] = {}
        for offer in await self._offers():
            country = offer.get("country")
            if country and country not in seen:
                seen[country] = CatalogItem(code=country, name=country)
        return list(seen.values())

    async def list_catalog(self, country: str | None = None) -> list[CatalogItem]:
        items = []
        for offer in await self._offers(country):
            price, currency = _offer_price(offer)
            items.append(
                CatalogItem(
                    code=str(offer.get("offerId")),
                    name=offer.get("shortNotes") or str(offer.get("offerId")),
                    price=price,
                    currency=currency,
                )
            )
        return items

    async def place_order(
        self, selectors: OrderSelectors, owner_ref: str | None = None
    ) -> PlacementResult:
        transaction_id = selectors.reference or uuid4().hex
        response = await self._request(
            "POST",
            "/esim/purchases",
            operation="place_order",
            call_class=CallClass.INTERACTIVE,
            owner_ref=owner_ref,
            json_body={
                "transactionId": transaction_id,
                "offerId": self.map_service_code(selectors.service),
            },
        )
        try:
            data = self._json_or_reject(response, "place_order")
        except VendorRejectedError as exc:
            return PlacementResult.rejected(exc.reason, code=exc.code)

        if not isinstance(data, dict):
            data = {}
        native = data.get("status") or "ACCEPTED"
        return PlacementResult(
            success=True,
            provider_order_id=str(data.get("transactionId") or transaction_id),
            native_status=native,
            details={"offer_id": selectors.service},
        )

    async def check_status(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.BACKGROUND,
    ) -> StatusResult:
        response = await self._request(
            "GET",
            f"/esim/purchases/{provider_order_id}",
            operation="check_status",
            call_class=call_class,
            owner_ref=owner_ref,
        )
        data = self._json_or_reject(response, "check_status")
        native = str(data.get("status") or "")
        error = data.get("error")
        return StatusResult(
            native_status=native,
            canonical=self.map_status(native),
            payload=extract_activation(data.get("confirmation")),
            details={"error": error} if error else {},
        )

    async def cancel_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        """Ask Zendit to refund an unused purchase."""
        response = await self._request(
            "POST",
            f"/esim/purchases/{provider_order_id}/refund",
            operation="cancel",
            call_class=call_class,
            owner_ref=owner_ref,
        )
        try:
            data = self._json_or_reject(response, "cancel")
        except VendorRejectedError as exc:
            logger.warning(
                "vendor_action_rejected",
                provider=self.identifier,
                action="cancel",
                provider_order_id=provider_order_id,
                reason=exc.reason,
            )
            return ActionResult(success=False, message=exc.reason)
        status = data.get("status") if isinstance(data, dict) else None
        return ActionResult(success=True, message=str(status or "refund requested"))
