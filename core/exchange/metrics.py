from __future__ import annotations

"""
Prometheus metrics for exchange adapter operations.

Metrics are optional: nothing is recorded until ``set_metrics()`` installs an
``ExchangeMetrics`` instance. Helpers never raise into adapter code.
"""

import logging
from typing import Optional

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


class ExchangeMetrics:
    """Operation latency and error counters, labelled per exchange and operation."""

    def __init__(self, registry) -> None:
        self.operation_latency = Histogram(
            "exchange_adapter_op_latency_ms",
            "Exchange adapter operation latency in milliseconds",
            ["exchange", "operation", "status"],  # status: success|failure
            buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
            registry=registry,
        )
        self.error_total = Counter(
            "exchange_adapter_error_total",
            "Exchange adapter errors by category",
            ["exchange", "operation", "category"],
            registry=registry,
        )

    def observe_latency(self, exchange: str, operation: str, status: str, latency_ms: float) -> None:
        try:
            self.operation_latency.labels(exchange=exchange, operation=operation, status=status).observe(latency_ms)
        except Exception as e:
            logger.debug(f"latency metric dropped: {e}")

    def inc_error(self, exchange: str, operation: str, category: str) -> None:
        try:
            self.error_total.labels(exchange=exchange, operation=operation, category=category).inc()
        except Exception as e:
            logger.debug(f"error metric dropped: {e}")


_metrics: Optional[ExchangeMetrics] = None


def set_metrics(metrics: Optional[ExchangeMetrics]) -> None:
    global _metrics
    _metrics = metrics


def get_metrics() -> Optional[ExchangeMetrics]:
    return _metrics


__all__ = ["ExchangeMetrics", "set_metrics", "get_metrics"]
