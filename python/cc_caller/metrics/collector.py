"""
Prometheus Metrics Collector for cc-caller.

Provides metrics for monitoring:
- Calls by outcome and calls currently live
- Connections by role
- Push deliveries
- Dropped protocol frames
"""

import logging
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger("cc_caller.metrics")


CALLS_TOTAL = Counter(
    'cc_caller_calls_total',
    'Total number of finished calls',
    ['status']  # 'completed', 'failed', 'no_answer'
)
CALL_DURATION = Histogram(
    'cc_caller_call_duration_seconds',
    'Duration of finished calls in seconds',
    buckets=[1, 5, 10, 30, 60, 120, 300, 600]
)
LIVE_CALLS = Gauge(
    'cc_caller_live_calls',
    'Number of calls ringing or connected'
)
CONNECTIONS = Gauge(
    'cc_caller_connections',
    'Number of registered connections',
    ['role']  # 'agent', 'operator'
)
PUSH_DELIVERIES_TOTAL = Counter(
    'cc_caller_push_deliveries_total',
    'Web Push delivery attempts',
    ['status']  # 'success', 'error'
)
PROTOCOL_ERRORS_TOTAL = Counter(
    'cc_caller_protocol_errors_total',
    'Inbound frames dropped as malformed'
)


class MetricsCollector:
    """
    Centralized metrics collector for cc-caller.

    Provides convenient methods for recording metrics
    and starts the Prometheus HTTP server.
    """

    def __init__(self, port: int = 9090, host: str = "0.0.0.0"):
        """
        Initialize metrics collector.

        Args:
            port: Port for Prometheus HTTP server
            host: Host to bind to
        """
        self.port = port
        self.host = host
        self._started = False

    def start(self) -> bool:
        """
        Start the Prometheus HTTP server.

        Returns:
            True if started successfully
        """
        if self._started:
            return True

        try:
            start_http_server(self.port, addr=self.host)
            self._started = True
            logger.info(f"Prometheus metrics server started on {self.host}:{self.port}")
            return True
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    # Call metrics
    def call_started(self) -> None:
        LIVE_CALLS.inc()

    def call_ended(self, status: str, duration_ms: Optional[int], was_live: bool = True) -> None:
        """Record a call reaching a terminal status."""
        if was_live:
            LIVE_CALLS.dec()
        CALLS_TOTAL.labels(status=status).inc()
        if duration_ms is not None:
            CALL_DURATION.observe(duration_ms / 1000)

    # Connection metrics
    def update_connections(self, agents: int, operators: int) -> None:
        """Set registered connection counts."""
        CONNECTIONS.labels(role="agent").set(agents)
        CONNECTIONS.labels(role="operator").set(operators)

    # Push metrics
    def push_delivery(self, success: bool) -> None:
        PUSH_DELIVERIES_TOTAL.labels(status="success" if success else "error").inc()

    def protocol_error(self) -> None:
        PROTOCOL_ERRORS_TOTAL.inc()


# Global instance
_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
