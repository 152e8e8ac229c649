"""
Vendor Provider Protocol - vendor-agnostic capability contract.

NO DICTIONARIES - All results use strongly typed models.

One conformance per vendor. The core resolves a conformance through the
ProviderRegistry by identifier; it never inspects provider types. Providers
talk to vendors and normalize replies, they never touch an Order.
"""

import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any, ClassVar, Protocol

import httpx
from structlog import get_logger

from vendorbridge.config import ProviderConfig, ReconcilerConfig
from vendorbridge.exceptions import (
    UnsupportedActionError,
    VendorRejectedError,
    VendorUnreachableError,
)
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
from vendorbridge.services.status_mapping import map_status
from vendorbridge.services.telemetry import VendorCall, VendorCallRecorder

logger = get_logger(__name__)

# Bumped whenever a method is added to or changed in VendorProvider
CONTRACT_VERSION = 1


class VendorProvider(Protocol):
    """
    Vendor provider protocol.

    Every vendor conformance must implement this interface. Network failures
    raise VendorUnreachableError; structured vendor errors raise
    VendorRejectedError (or come back as an unsuccessful PlacementResult /
    ActionResult where the caller needs the reason).
    """

    identifier: str
    category: OrderCategory
    contract_version: int

    def is_enabled(self) -> bool:
        """Provider is switched on and has credentials."""
        ...

    async def get_balance(self) -> BalanceResult:
        """Current balance of our account at the vendor."""
        ...

    async def list_countries(self) -> list[CatalogItem]:
        """Countries the vendor sells in (empty for country-less categories)."""
        ...

    async def list_catalog(self, country: str | None = None) -> list[CatalogItem]:
        """Products/services on offer, optionally for one country."""
        ...

    async def place_order(
        self, selectors: OrderSelectors, owner_ref: str | None = None
    ) -> PlacementResult:
        """
        Place an order with the vendor.

        Args:
            selectors: Normalized selectors in internal codes
            owner_ref: Initiating user, recorded in telemetry

        Returns:
            Placement result; unsuccessful when the vendor rejected the order

        Raises:
            VendorUnreachableError: Network failure, timeout or 5xx
        """
        ...

    async def check_status(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.BACKGROUND,
    ) -> StatusResult:
        """
        Fetch the vendor's current view of an order.

        Raises:
            VendorUnreachableError: Network failure, timeout or 5xx
            VendorRejectedError: Vendor answered with an error
        """
        ...

    async def finish_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult: ...

    async def cancel_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult: ...

    async def ban_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult: ...

    async def refill_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult: ...

    def map_status(self, native_status: str) -> OrderStatus: ...

    def map_service_code(self, code: str) -> str: ...

    def map_country_code(self, code: str) -> str: ...


class BaseVendorProvider:
    """
    Shared plumbing for vendor conformances.

    Handles per-call-class timeouts, telemetry for every call and the
    translation of transport failures into VendorUnreachableError.
    """

    identifier: ClassVar[str]
    category: ClassVar[OrderCategory]
    contract_version: ClassVar[int] = CONTRACT_VERSION

    DEFAULT_BASE_URL: ClassVar[str] = ""
    DEFAULT_SERVICE_CODES: ClassVar[Mapping[str, str]] = {}
    DEFAULT_COUNTRY_CODES: ClassVar[Mapping[str, str]] = {}

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient,
        reconciler_config: ReconcilerConfig,
        recorder: VendorCallRecorder | None = None,
    ) -> None:
        self.config = config
        self.http_client = http_client
        self.reconciler_config = reconciler_config
        self.recorder = recorder or VendorCallRecorder()
        self.base_url = (config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._timeouts = {
            CallClass.INTERACTIVE: httpx.Timeout(
                reconciler_config.interactive_timeout_seconds,
                connect=reconciler_config.connect_timeout_seconds,
            ),
            CallClass.BACKGROUND: httpx.Timeout(
                reconciler_config.background_timeout_seconds,
                connect=reconciler_config.connect_timeout_seconds,
            ),
        }

    def is_enabled(self) -> bool:
        return self.config.enabled and self.config.is_configured

    # ========================================================================
    # Code Mapping
    # ========================================================================

    def map_status(self, native_status: str) -> OrderStatus:
        return map_status(self.identifier, native_status)

    def map_service_code(self, code: str) -> str:
        """Configured mapping wins over the built-in table; unmapped is identity."""
        if code in self.config.service_codes:
            return self.config.service_codes[code]
        return self.DEFAULT_SERVICE_CODES.get(code, code)

    def map_country_code(self, code: str) -> str:
        if code in self.config.country_codes:
            return self.config.country_codes[code]
        return self.DEFAULT_COUNTRY_CODES.get(code, code)

    # ========================================================================
    # Optional Actions
    # ========================================================================

    async def finish_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        raise UnsupportedActionError(self.identifier, "finish")

    async def ban_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        raise UnsupportedActionError(self.identifier, "ban")

    async def refill_order(
        self,
        provider_order_id: str,
        owner_ref: str | None = None,
        call_class: CallClass = CallClass.INTERACTIVE,
    ) -> ActionResult:
        raise UnsupportedActionError(self.identifier, "refill")

    async def list_countries(self) -> list[CatalogItem]:
        return []

    # ========================================================================
    # HTTP
    # ========================================================================

    def _auth_headers(self) -> dict[str, str]:
        """Vendor auth headers; empty for vendors authenticating elsewhere."""
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        call_class: CallClass,
        owner_ref: str | None = None,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        """
        Send one vendor request and record it.

        Returns any response below 500; the caller interprets 4xx bodies.

        Raises:
            VendorUnreachableError: Timeout, transport error or 5xx
        """
        url = f"{self.base_url}{path}"
        start = time.perf_counter()
        try:
            response = await self.http_client.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                headers={"Accept": "application/json", **self._auth_headers()},
                timeout=self._timeouts[call_class],
            )
        except httpx.TimeoutException as exc:
            await self._record(operation, "timeout", start, None, owner_ref, str(exc))
            raise VendorUnreachableError(self.identifier, operation, "timeout") from exc
        except httpx.HTTPError as exc:
            await self._record(operation, "network_error", start, None, owner_ref, str(exc))
            raise VendorUnreachableError(self.identifier, operation, str(exc)) from exc

        if response.status_code >= 500:
            await self._record(
                operation, "server_error", start, response.status_code, owner_ref, response.text[:500]
            )
            raise VendorUnreachableError(
                self.identifier, operation, f"HTTP {response.status_code}"
            )

        outcome = "ok" if response.status_code < 400 else "client_error"
        error = response.text[:500] if outcome != "ok" else None
        await self._record(operation, outcome, start, response.status_code, owner_ref, error)
        return response

    async def _record(
        self,
        operation: str,
        outcome: str,
        start: float,
        http_status: int | None,
        owner_ref: str | None,
        error_message: str | None,
    ) -> None:
        await self.recorder.record(
            VendorCall(
                provider=self.identifier,
                operation=operation,
                outcome=outcome,
                latency_ms=int((time.perf_counter() - start) * 1000),
                http_status=http_status,
                owner_ref=owner_ref,
                error_message=error_message,
            )
        )

    def _json_or_reject(self, response: httpx.Response, operation: str) -> Any:
        """Decode a JSON body, turning 4xx and non-JSON replies into rejections."""
        if response.status_code >= 400:
            raise VendorRejectedError(
                self.identifier,
                response.text.strip()[:200] or f"HTTP {response.status_code}",
                code=str(response.status_code),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise VendorRejectedError(
                self.identifier, response.text.strip()[:200] or "empty response", code=operation
            ) from exc


def parse_vendor_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from a vendor reply, None if absent or malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("vendor_datetime_unparseable", value=value)
        return None
    if parsed.tzinfo is None:
        return None
    return parsed
