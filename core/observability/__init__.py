"""
Observability Module for the document confidence pipeline

Provides:
- Structured logging with correlation IDs
- In-process metrics for line matching and auto-posting
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
    activity_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
    "activity_correlation",
]
