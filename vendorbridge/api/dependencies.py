"""
FastAPI Dependencies - internal API authentication and shared services.

NO DICTIONARIES - All dependencies return typed objects.
"""

import hmac

from fastapi import Header, HTTPException, Request, status
from structlog import get_logger

from vendorbridge.config import ReconcilerConfig, get_reconciler_config, settings
from vendorbridge.services.notifications import NotificationDispatcher
from vendorbridge.services.providers.registry import ProviderRegistry

logger = get_logger(__name__)


async def require_api_key(
    x_api_key: str | None = Header(None, description="Storefront API key"),
) -> None:
    """
    FastAPI dependency validating the storefront's X-API-Key header.

    Compared in constant time against INTERNAL_API_KEY. With no key
    configured every request is refused.

    Raises:
        HTTPException 401 if the key is missing or wrong
    """
    expected = settings.internal_api_key
    if not expected:
        logger.error("internal_api_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key authentication is not configured",
        )
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("api_key_rejected", has_key=bool(x_api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def get_registry(request: Request) -> ProviderRegistry:
    """Provider registry built at startup."""
    registry: ProviderRegistry = request.app.state.registry
    return registry


def get_notifier(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, "notifier", None)


def get_config() -> ReconcilerConfig:
    return get_reconciler_config()
