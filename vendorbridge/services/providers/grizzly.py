"""
GrizzlySMS phone-number provider.

SMS-Activate compatible handler API: every call is a GET on handler_api.php
with ``api_key`` and ``action`` query parameters. Replies are mostly plain
text tokens (``ACCESS_NUMBER:id:phone``, ``STATUS_OK:code``, ``NO_BALANCE``),
so parsing lives in pure functions below.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
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
from vendorbridge.services.providers.base import BaseVendorProvider

logger = get_logger(__name__)

ERROR_MESSAGES: dict[str, str] = {
    "BAD_KEY": "Invalid API key",
    "ERROR_SQL": "Vendor database error",
    "BAD_ACTION": "Invalid action",
    "WRONG_SERVICE": "Invalid service",
    "NO_NUMBERS": "No numbers available",
    "NO_BALANCE": "Insufficient vendor balance",
    "WRONG_ACTIVATION_ID": "Invalid activation id",
    "BAD_STATUS": "Invalid status",
    "NO_ACTIVATION": "Activation not found",
    "BANNED": "Account banned",
    "WRONG_COUNTRY": "Invalid country",
    "WRONG_OPERATOR": "Invalid operator",
}

# setStatus codes
STATUS_FINISH = 6
STATUS_CANCEL = 8

SERVICE_CODES: dict[str, str] = {
    "whatsapp": "wa",
    "telegram": "tg",
    "instagram": "ig",
    "facebook": "fb",
    "twitter": "tw",
    "google": "go",
    "yahoo": "ya",
    "microsoft": "mm",
    "amazon": "am",
    "uber": "ub",
    "paypal": "pp",
    "linkedin": "oi",
    "discord": "ds",
    "tiktok": "tk",
    "snapchat": "fu",
    "netflix": "nf",
    "spotify": "sy",
    "viber": "vi",
    "wechat": "wb",
    "line": "me",
    "kakaotalk": "kt",
}

COUNTRY_CODES: dict[str, str] = {
    "russia": "0",
    "ukraine": "1",
    "kazakhstan": "2",
    "china": "3",
    "philippines": "4",
    "myanmar": "5",
    "indonesia": "6",
    "malaysia": "7",
    "kenya": "8",
    "tanzania": "9",
    "vietnam": "10",
    "kyrgyzstan": "11",
    "usa": "12",
    "israel": "13",
    "hongkong": "14",
    "poland": "15",
    "england": "16",
    "uk": "16",
    "madagascar": "17",
    "congo": "18",
    "nigeria": "19",
    "macau": "20",
    "egypt": "21",
    "india": "22",
    "ireland": "23",
    "cambodia": "24",
    "laos": "25",
    "haiti": "26",
    "ivorycoast": "27",
    "gambia": "28",
    "serbia": "29",
    "yemen": "30",
    "southafrica": "31",
    "romania": "32",
    "colombia": "33",
    "estonia": "34",
    "azerbaijan": "35",
    "canada": "36",
    "morocco": "37",
    "ghana": "38",
    "argentina": "39",
    "uzbekistan": "40",
    "cameroon": "41",
    "chad": "42",
    "germany": "43",
    "lithuania": "44",
    "croatia": "45",
    "sweden": "46",
    "iraq": "47",
    "netherlands": "48",
    "latvia": "49",
    "austria": "50",
    "belarus": "51",
    "thailand": "52",
    "saudiarabia": "53",
    "mexico": "54",
    "taiwan": "55",
    "spain": "56",
    "france": "78",
    "brazil": "73",
    "turkey": "62",
    "italy": "86",
}

_BALANCE_RE = re.compile(r"^ACCESS_BALANCE:([\d.]+)$")
_NUMBER_RE = re.compile(r"^ACCESS_NUMBER:(\d+):(\d+)$")


@dataclass(frozen=True)
class ParsedNumber:
    """Activation returned by getNumber/getNumberV2."""

    activation_id: str
    phone: str
    cost: float | None = None


@dataclass(frozen=True)
class ParsedStatus:
    """getStatus reply split into status token and optional code."""

    status: str
    code: str | None = None


def detect_error(body: str) -> str | None:
    """Error token when the reply is a known error, else None."""
    token = body.strip()
    return token if token in ERROR_MESSAGES else None


def translate_error(token: str) -> str:
    return ERROR_MESSAGES.get(token, token)


def parse_balance(body: str) -> float | None:
    """``ACCESS_BALANCE:12.50`` or a bare number."""
    text = body.strip()
    match = _BALANCE_RE.match(text)
    if match:
        return float(match.group(1))
    try:
        return float(text)
    except ValueError:
        return None


def parse_number(body: str, data: Any = None) -> ParsedNumber | None:
    """
    Parse a getNumberV2 reply.

    V2 answers JSON (activationId, phoneNumber, activationCost); older
    endpoints answer ``ACCESS_NUMBER:<id>:<phone>``.
    """
    if isinstance(data, dict) and data.get("activationId"):
        cost = data.get("activationCost")
        return ParsedNumber(
            activation_id=str(data["activationId"]),
            phone=str(data.get("phoneNumber") or ""),
            cost=float(cost) if cost is not None else None,
        )
    match = _NUMBER_RE.match(body.strip())
    if match:
        return ParsedNumber(activation_id=match.group(1), phone=match.group(2))
    return None


def parse_status(body: str) -> ParsedStatus:
    """
    Parse a getStatus reply.

    Unrecognized text comes back verbatim as the status so that the status
    mapper classifies it as ambiguous.
    """
    text = body.strip()
    if text.startswith("STATUS_OK:"):
        return ParsedStatus(status="STATUS_OK", code=text.split(":", 1)[1] or None)
    if text.startswith("STATUS_WAIT_RETRY:"):
        return ParsedStatus(status="STATUS_WAIT_RETRY", code=text.split(":", 1)[1] or None)
    return ParsedStatus(status=text)


def status_payload(parsed: ParsedStatus) -> dict[str, Any] | None:
    """SMS payload for a received code."""
    if parsed.status != "STATUS_OK" or not parsed.code:
        return None
    return {"sms": [{"code": parsed.code, "text": f"Code: {parsed.code}"}]}


class GrizzlySmsProvider(BaseVendorProvider):
    """GrizzlySMS handler API."""

    identifier = "grizzlysms"
    category = OrderCategory.PHONE
    DEFAULT_BASE_URL = "https://api.grizzlysms.com/stubs/handler_api.php"
    DEFAULT_SERVICE_CODES = SERVICE_CODES
    DEFAULT_COUNTRY_CODES = COUNTRY_CODES

    async def _call(
        self,
        action: str,
        *,
        operation: str,
        call_class: CallClass,
        owner_ref: str | None = None,
        **params: Any,
    ) -> tuple[str, Any]:
        """Run one handler action; returns the raw text and decoded JSON (or None)."""
        response = await self._request(
            "GET",
            "",
            operation=operation,
            call_class=call_class,
            owner_ref=owner_ref,
            params={"api_key": self.config.api_key, "action": action, **params},
        )
        body = response.text
        if response.status_code >= 400:
            raise VendorRejectedError(
                self.identifier, body.strip()[:200] or f"HTTP {response.status_code}",
                code=str(response.status_code),
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        return body, data

    async def get_balance(self) -> BalanceResult:
        body, _ = await self._call(
            "getBalance", operation="balance", call_class=CallClass.INTERACTIVE
        )
        error = detect_error(body)
        if error:
            raise VendorRejectedError(self.identifier, translate_error(error), code=error)
        balance = parse_balance(body)
        if balance is None:
            raise VendorRejectedError(self.identifier, f"Unexpected balance reply: {body[:100]}")
        return BalanceResult(balance=balance, currency="RUB")

    async def list_countries(self) -> list[CatalogItem]:
        body, data = await self._call(
            "getCountries", operation="countries", call_class=CallClass.INTERACTIVE
        )
        if not isinstance(data, dict):
            raise VendorRejectedError(self.identifier, f"Unexpected countries reply: {body[:100]}")
        items = []
        for code, info in data.items():
            name = info.get("eng") if isinstance(info, dict) else info
            items.append(CatalogItem(code=str(code), name=str(name or code)))
        return items

    async def list_catalog(self, country: str | None = None) -> list[CatalogItem]:
        params = {"country": self.map_country_code(country)} if country else {}
        body, data = await self._call(
            "getPrices", operation="catalog", call_class=CallClass.INTERACTIVE, **params
        )
        if not isinstance(data, dict):
            raise VendorRejectedError(self.identifier, f"Unexpected prices reply: {body[:100]}")

        items = []
        for services in data.values():
            if not isinstance(services, dict):
                continue
            for service, info in services.items():
                if not isinstance(info, dict):
                    continue
                items.append(
                    CatalogItem(
                        code=service,
                        name=service,
                        price=info.get("cost"),
                        available=info.get("count"),
                        currency="RUB",
                    )
                )
        return items

    async def place_order(
        self, selectors: OrderSelectors, owner_ref: str | None = None
    ) -> PlacementResult:
        params: dict[str, Any] = {"service": self.map_service_code(selectors.service)}
        if selectors.country:
            params["country"] = self.map_country_code(selectors.country)
        if selectors.operator:
            params["operator"] = selectors.operator

        try:
            body, data = await self._call(
                "getNumberV2",
                operation="place_order",
                call_class=CallClass.INTERACTIVE,
                owner_ref=owner_ref,
                **params,
            )
        except VendorRejectedError as exc:
            return PlacementResult.rejected(exc.reason, code=exc.code)

        error = detect_error(body)
        if error:
            return PlacementResult.rejected(translate_error(error), code=error)

        parsed = parse_number(body, data)
        if parsed is None:
            return PlacementResult.rejected(f"Unexpected number reply: {body.strip()[:100]}")

        expires_at = datetime.now(UTC) + timedelta(
            minutes=self.reconciler_config.default_phone_expiry_minutes
        )
        return PlacementResult(
            success=True,
            provider_order_id=parsed.activation_id,
            price=parsed.cost,
            expires_at=expires_at,
            native_status="STATUS_WAIT_CODE",
            details={"phone": parsed.phone, "country": selectors.country},
        )

    async def check_status(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.BACKGROUND,
    ) -> StatusResult:
        body, _ = await self._call(
            "getStatus",
            operation="check_status",
            call_class=call_class,
            owner_ref=owner_ref,
            id=provider_order_id,
        )
        error = detect_error(body)
        if error:
            raise VendorRejectedError(self.identifier, translate_error(error), code=error)

        parsed = parse_status(body)
        return StatusResult(
            native_status=parsed.status,
            canonical=self.map_status(parsed.status),
            payload=status_payload(parsed),
        )

    async def finish_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._set_status(provider_order_id, STATUS_FINISH, "finish", owner_ref, call_class)

    async def cancel_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        return await self._set_status(provider_order_id, STATUS_CANCEL, "cancel", owner_ref, call_class)

    async def ban_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        # No ban status in the handler API; cancelling releases the number
        return await self._set_status(provider_order_id, STATUS_CANCEL, "ban", owner_ref, call_class)

    async def _set_status(
        self,
        provider_order_id: str,
        status: int,
        operation: str,
        owner_ref: str | None,
        call_class: CallClass,
    ) -> ActionResult:
        try:
            body, _ = await self._call(
                "setStatus",
                operation=operation,
                call_class=call_class,
                owner_ref=owner_ref,
                id=provider_order_id,
                status=status,
            )
        except VendorRejectedError as exc:
            return ActionResult(success=False, message=exc.reason)

        error = detect_error(body)
        if error:
            logger.warning(
                "vendor_action_rejected",
                provider=self.identifier,
                action=operation,
                provider_order_id=provider_order_id,
                reason=error,
            )
            return ActionResult(success=False, message=translate_error(error))
        return ActionResult(success=True, message=body.strip())
