"""
Status Mapping - vendor-native status to canonical status.

Every mapper is a pure, total function. Anything a vendor sends that is not
in its table maps to PROCESSING, never to a terminal status: a misunderstood
signal must not refund or deliver prematurely.
"""

from collections.abc import Callable, Mapping

from structlog import get_logger

from vendorbridge.models.api import OrderStatus

logger = get_logger(__name__)

AMBIGUOUS_DEFAULT = OrderStatus.PROCESSING

FIVESIM_STATUS_MAP: Mapping[str, OrderStatus] = {
    "PENDING": OrderStatus.PROCESSING,
    "RECEIVED": OrderStatus.PROCESSING,
    "CANCELED": OrderStatus.CANCELLED,
    "TIMEOUT": OrderStatus.EXPIRED,
    "FINISHED": OrderStatus.COMPLETED,
    "BANNED": OrderStatus.REFUNDED,
}

GRIZZLY_STATUS_MAP: Mapping[str, OrderStatus] = {
    "STATUS_WAIT_CODE": OrderStatus.PROCESSING,
    "STATUS_WAIT_RETRY": OrderStatus.PROCESSING,
    "STATUS_WAIT_RESEND": OrderStatus.PROCESSING,
    "STATUS_OK": OrderStatus.PROCESSING,
    "STATUS_CANCEL": OrderStatus.CANCELLED,
}

ZENDIT_STATUS_MAP: Mapping[str, OrderStatus] = {
    "PENDING": OrderStatus.PENDING,
    "ACCEPTED": OrderStatus.PENDING,
    "AUTHORIZED": OrderStatus.PENDING,
    "IN_PROGRESS": OrderStatus.PROCESSING,
    "DONE": OrderStatus.COMPLETED,
    "FAILED": OrderStatus.FAILED,
}

# JAP statuses are matched case-insensitively
JAP_STATUS_MAP: Mapping[str, OrderStatus] = {
    "pending": OrderStatus.PROCESSING,
    "in progress": OrderStatus.PROCESSING,
    "processing": OrderStatus.PROCESSING,
    "completed": OrderStatus.COMPLETED,
    "partial": OrderStatus.COMPLETED,
    "canceled": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
}


def _lookup(provider: str, table: Mapping[str, OrderStatus], key: str) -> OrderStatus:
    canonical = table.get(key)
    if canonical is None:
        logger.warning("vendor_status_ambiguous", provider=provider, native_status=key)
        return AMBIGUOUS_DEFAULT
    return canonical


def map_fivesim_status(native: str) -> OrderStatus:
    return _lookup("5sim", FIVESIM_STATUS_MAP, native.strip().upper())


def map_grizzly_status(native: str) -> OrderStatus:
    """STATUS_OK arrives as ``STATUS_OK:<code>``; the code is not part of the status."""
    key = native.strip()
    if key.startswith("STATUS_OK"):
        key = "STATUS_OK"
    return _lookup("grizzlysms", GRIZZLY_STATUS_MAP, key)


def map_zendit_status(native: str) -> OrderStatus:
    return _lookup("zendit", ZENDIT_STATUS_MAP, native.strip().upper())


def map_jap_status(native: str) -> OrderStatus:
    return _lookup("jap", JAP_STATUS_MAP, native.strip().lower())


STATUS_MAPPERS: Mapping[str, Callable[[str], OrderStatus]] = {
    "5sim": map_fivesim_status,
    "grizzlysms": map_grizzly_status,
    "zendit": map_zendit_status,
    "jap": map_jap_status,
}


def map_status(provider: str, native: str | None) -> OrderStatus:
    """
    Map a vendor-native status for any registered provider.

    Unknown providers and missing statuses are ambiguous too.
    """
    mapper = STATUS_MAPPERS.get(provider)
    if mapper is None or not native:
        logger.warning("vendor_status_ambiguous", provider=provider, native_status=native)
        return AMBIGUOUS_DEFAULT
    return mapper(native)
