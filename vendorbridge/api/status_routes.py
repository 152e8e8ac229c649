"""
Status API routes - reachability of the database and enabled vendors.

Public endpoint (no auth) for status page aggregation.
Rate limited through a short response cache.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from structlog import get_logger

from vendorbridge.api.dependencies import get_registry
from vendorbridge.config import settings
from vendorbridge.db.session import get_session
from vendorbridge.exceptions import ReconciliationError
from vendorbridge.services.providers.base import VendorProvider
from vendorbridge.services.providers.registry import ProviderRegistry

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

DEGRADED_LATENCY_THRESHOLD = 1000  # ms

_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class DependencyStatus(BaseModel):
    """Status of a single dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "vendorbridge"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    dependencies: dict[str, DependencyStatus]


def _timed_status(start: float, timestamp: str) -> DependencyStatus:
    latency_ms = int((time.perf_counter() - start) * 1000)
    level = (
        StatusLevel.DEGRADED if latency_ms > DEGRADED_LATENCY_THRESHOLD else StatusLevel.OPERATIONAL
    )
    return DependencyStatus(
        status=level,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if level == StatusLevel.DEGRADED else None,
    )


async def check_postgresql() -> DependencyStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with get_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return DependencyStatus(
            status=StatusLevel.OUTAGE,
            last_check=timestamp,
            message="Connection failed",
        )
    return _timed_status(start, timestamp)


async def check_vendor(provider: VendorProvider) -> DependencyStatus:
    """A balance query proves both reachability and credentials."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        await provider.get_balance()
    except ReconciliationError as e:
        logger.warning(
            "vendor_health_check_failed", provider=provider.identifier, error=str(e)
        )
        return DependencyStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int((time.perf_counter() - start) * 1000),
            last_check=timestamp,
            message=str(e)[:200],
        )
    return _timed_status(start, timestamp)


def calculate_overall_status(dependencies: dict[str, DependencyStatus]) -> StatusLevel:
    """
    Overall status: the database is critical, a single vendor is not.
    """
    database = dependencies.get("postgresql")
    if database is not None and database.status == StatusLevel.OUTAGE:
        return StatusLevel.OUTAGE
    if any(d.status != StatusLevel.OPERATIONAL for d in dependencies.values()):
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status(
    registry: ProviderRegistry = Depends(get_registry),
) -> ServiceStatusResponse:
    """
    Get service status.

    Checks the database and every enabled vendor concurrently.
    Rate limited via 10-second cache.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    vendors = registry.enabled()
    results = await asyncio.gather(
        check_postgresql(), *(check_vendor(provider) for provider in vendors)
    )

    dependencies = {"postgresql": results[0]}
    for provider, result in zip(vendors, results[1:]):
        dependencies[provider.identifier] = result

    response = ServiceStatusResponse(
        status=calculate_overall_status(dependencies),
        timestamp=now.isoformat(),
        version=settings.api_version,
        dependencies=dependencies,
    )

    _status_cache[cache_key] = (now, response)
    return response
