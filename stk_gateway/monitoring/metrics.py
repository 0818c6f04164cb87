"""
Prometheus metrics for the STK push gateway.

Tracks:
- Gateway requests by operation and outcome
- Retries by error kind
- Token refreshes
- Callback outcomes
- Ledger size
"""
from prometheus_client import Counter, Gauge, Histogram

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total gateway HTTP exchanges",
    ["operation", "status"],  # operation: token, stk_push; status: success, auth, transient, rejected
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Gateway HTTP exchange duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0, 30.0),
)

gateway_retries_total = Counter(
    "gateway_retries_total",
    "Total gateway retries",
    ["error_kind"],  # auth, transient
)

token_refreshes_total = Counter(
    "token_refreshes_total",
    "Total OAuth token refreshes",
    ["status"],  # success, failed
)

callbacks_received_total = Counter(
    "callbacks_received_total",
    "Total STK callbacks received",
    ["outcome"],  # completed, pending, duplicate, malformed
)

ledger_records = Gauge(
    "ledger_records",
    "Number of records held in the transaction ledger",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway HTTP exchange."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_retry(error_kind: str) -> None:
        """Record a retry scheduled by the executor."""
        gateway_retries_total.labels(error_kind=error_kind).inc()

    @staticmethod
    def record_token_refresh(status: str) -> None:
        """Record an OAuth token refresh."""
        token_refreshes_total.labels(status=status).inc()

    @staticmethod
    def record_callback(outcome: str) -> None:
        """Record a callback outcome."""
        callbacks_received_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_ledger_size(size: int) -> None:
        """Set ledger size."""
        ledger_records.set(size)


# Export singleton instance
metrics = MetricsCollector()
