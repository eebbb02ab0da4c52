import errno
import logging
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from typing import Optional

from config import config
from config.utils import as_int


logger = logging.getLogger(__name__)


_METRICS_PORT: Optional[int] = None


def _get_port_scan_limit() -> int:
    return as_int(config.monitoring.get('prometheus_port_scan'), 0)


class MetricsCollector:
    def __init__(self):
        self.alerts_received = Counter('relay_alerts_received_total', 'Total alerts received', ['exchange'])
        self.alerts_rejected = Counter('relay_alerts_rejected_total', 'Total alerts rejected before sizing', ['reason'])
        self.alerts_skipped = Counter('relay_alerts_skipped_total', 'Total alerts skipped by the sizing engine', ['exchange', 'reason'])

        self.orders_placed = Counter('relay_orders_placed_total', 'Total orders placed', ['exchange', 'side'])
        self.orders_failed = Counter('relay_orders_failed_total', 'Total order placements that failed', ['exchange'])
        self.orders_filled = Counter('relay_orders_filled_total', 'Total orders filled before timeout', ['exchange'])
        self.orders_cancelled = Counter('relay_orders_cancelled_total', 'Total orders cancelled on fill timeout', ['exchange'])
        self.orders_unknown = Counter('relay_orders_unknown_total', 'Total orders whose fill status could not be read', ['exchange'])
        self.order_send_latency = Histogram('relay_order_send_latency_seconds', 'Latency from order send to ACK', ['exchange'])

        self.pending_fill_checks = Gauge('relay_pending_fill_checks', 'Orders waiting for their fill timeout')
        self.open_positions = Gauge('relay_open_positions', 'Open positions in the last poll', ['exchange'])
        self.poll_failures = Counter('relay_position_poll_failures_total', 'Position poll failures', ['exchange'])
        self.account_ready = Gauge('relay_account_ready', 'Account readiness flag', ['exchange'])
        self.equity = Gauge('relay_account_equity', 'Current account equity', ['exchange'])

    def record_alert(self, exchange: str):
        self.alerts_received.labels(exchange=exchange).inc()

    def record_rejected(self, reason: str):
        self.alerts_rejected.labels(reason=reason).inc()

    def record_skip(self, exchange: str, reason: str):
        self.alerts_skipped.labels(exchange=exchange, reason=reason).inc()

    def record_order_placed(self, exchange: str, side: str, latency_seconds: Optional[float] = None):
        self.orders_placed.labels(exchange=exchange, side=side).inc()
        if latency_seconds is not None:
            self.order_send_latency.labels(exchange=exchange).observe(latency_seconds)

    def record_order_failed(self, exchange: str):
        self.orders_failed.labels(exchange=exchange).inc()

    def record_order_filled(self, exchange: str):
        self.orders_filled.labels(exchange=exchange).inc()

    def record_order_cancelled(self, exchange: str):
        self.orders_cancelled.labels(exchange=exchange).inc()

    def record_order_unknown(self, exchange: str):
        self.orders_unknown.labels(exchange=exchange).inc()

    def update_pending_fill_checks(self, count: int):
        self.pending_fill_checks.set(count)

    def update_open_positions(self, exchange: str, count: int):
        self.open_positions.labels(exchange=exchange).set(count)

    def record_poll_failure(self, exchange: str):
        self.poll_failures.labels(exchange=exchange).inc()

    def mark_account_ready(self, exchange: str, ready: bool):
        self.account_ready.labels(exchange=exchange).set(1 if ready else 0)

    def update_equity(self, exchange: str, equity: float):
        if equity is not None:
            self.equity.labels(exchange=exchange).set(equity)


def start_metrics_server(port: int = 9090) -> int:
    """Expose /metrics, trying up to ``prometheus_port_scan`` ports above ``port``."""
    global _METRICS_PORT
    if _METRICS_PORT is not None:
        return _METRICS_PORT
    scan_limit = max(0, _get_port_scan_limit())
    for candidate in range(port, port + scan_limit + 1):
        try:
            start_http_server(candidate)
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.warning("Metrics port %s already in use", candidate)
            continue
        _METRICS_PORT = candidate
        logger.info("Prometheus metrics server started on port %s", candidate)
        return candidate
    raise RuntimeError(f"Unable to bind Prometheus metrics server on ports {port}-{port + scan_limit}")


metrics = MetricsCollector()
