"""
Observability module: Metrics and structured logging.
"""

from clustermesh.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    StorageMetrics,
)
from clustermesh.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    LogLevel,
    log_context,
    setup_logging,
)

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "StorageMetrics",
    "StructuredLogger",
    "JsonFormatter",
    "LogLevel",
    "log_context",
    "setup_logging",
]
