"""
Observability module - Logging, Metrics, and Tracing.
"""

from vendorbridge.observability.logging import get_logger, log_context, setup_logging
from vendorbridge.observability.metrics import metrics
from vendorbridge.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
