"""
Metrics Collection with Prometheus.

Exposes reconciliation and vendor metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from vendorbridge.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PROVIDER = "provider"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class ReconciliationMetrics:
    """
    Centralized metrics for the reconciliation engine.

    - HTTP requests (rate, duration)
    - Vendor calls (rate, outcome, latency)
    - Order transitions and skipped observations
    - Refunds and purchase debits
    - Webhooks, polls and sweeps
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "vendorbridge_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "vendorbridge_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "vendorbridge_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "vendorbridge_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Vendor Call Metrics
        # ====================================================================
        self.vendor_calls_total = Counter(
            "vendorbridge_vendor_calls_total",
            "Total outbound vendor calls",
            [MetricLabels.PROVIDER, MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.vendor_call_duration_seconds = Histogram(
            "vendorbridge_vendor_call_duration_seconds",
            "Vendor call latency in seconds",
            [MetricLabels.PROVIDER, MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Order Lifecycle Metrics
        # ====================================================================
        self.order_transitions_total = Counter(
            "vendorbridge_order_transitions_total",
            "Applied order status transitions",
            ["from_status", "to_status", "source"],
        )

        self.observations_skipped_total = Counter(
            "vendorbridge_observations_skipped_total",
            "Vendor observations skipped by the state machine",
            ["decision", "source"],
        )

        self.purchases_total = Counter(
            "vendorbridge_purchases_total",
            "Purchase attempts",
            [MetricLabels.PROVIDER, MetricLabels.OUTCOME],
        )

        self.refunds_total = Counter(
            "vendorbridge_refunds_total",
            "Refunds credited to wallets",
            ["trigger"],
        )

        self.refund_amount_minor = Histogram(
            "vendorbridge_refund_amount_minor",
            "Refund amounts in minor units",
            buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 25000),
        )

        # ====================================================================
        # Worker Metrics
        # ====================================================================
        self.webhooks_total = Counter(
            "vendorbridge_webhooks_total",
            "Inbound webhook deliveries",
            [MetricLabels.PROVIDER, "result"],
        )

        self.polls_total = Counter(
            "vendorbridge_polls_total",
            "Poll units executed",
            ["result"],
        )

        self.sweep_orders_total = Counter(
            "vendorbridge_sweep_orders_total",
            "Orders handled by the expiry sweep",
            ["result"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "vendorbridge_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_vendor_call(
        self, provider: str, operation: str, outcome: str, duration: float
    ) -> None:
        """Record an outbound vendor call."""
        self.vendor_calls_total.labels(
            provider=provider, operation=operation, outcome=outcome
        ).inc()
        self.vendor_call_duration_seconds.labels(provider=provider, operation=operation).observe(
            duration
        )

    def record_transition(self, from_status: str, to_status: str, source: str) -> None:
        self.order_transitions_total.labels(
            from_status=from_status, to_status=to_status, source=source
        ).inc()

    def record_skip(self, decision: str, source: str) -> None:
        self.observations_skipped_total.labels(decision=decision, source=source).inc()

    def record_refund(self, trigger: str, amount_minor: int) -> None:
        """Record a refund credit."""
        self.refunds_total.labels(trigger=trigger).inc()
        self.refund_amount_minor.observe(amount_minor)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ReconciliationMetrics()
