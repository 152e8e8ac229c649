"""
Vendor call telemetry.

Every outbound vendor call is recorded (metrics, log line, vendor_call_logs
row) whether it succeeded or not. Recording failures are logged and
swallowed: telemetry must never break the call it describes.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from vendorbridge.db.models import VendorCallLog
from vendorbridge.observability.metrics import metrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class VendorCall:
    """One outbound vendor call."""

    provider: str
    operation: str
    outcome: str  # ok, client_error, server_error, timeout, network_error
    latency_ms: int
    http_status: int | None = None
    owner_ref: str | None = None
    error_message: str | None = None


class VendorCallRecorder:
    """Records vendor calls; persists them when given a session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.session_factory = session_factory

    async def record(self, call: VendorCall) -> None:
        try:
            metrics.record_vendor_call(
                call.provider, call.operation, call.outcome, call.latency_ms / 1000
            )
            logger.info(
                "vendor_call",
                provider=call.provider,
                operation=call.operation,
                outcome=call.outcome,
                http_status=call.http_status,
                latency_ms=call.latency_ms,
                owner_ref=call.owner_ref,
            )
            if self.session_factory is None:
                return
            # Own session: the caller's transaction must not see or roll back this row
            async with self.session_factory() as session:
                session.add(
                    VendorCallLog(
                        provider=call.provider,
                        operation=call.operation,
                        outcome=call.outcome,
                        http_status=call.http_status,
                        latency_ms=call.latency_ms,
                        owner_ref=call.owner_ref,
                        error_message=call.error_message,
                    )
                )
                await session.commit()
        except Exception as exc:
            logger.warning(
                "vendor_call_record_failed",
                provider=call.provider,
                operation=call.operation,
                error=str(exc),
            )
