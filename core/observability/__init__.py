"""
Observability Module for the POS Ledger Pipeline

Provides:
- Structured logging with correlation IDs
- Metrics collection (events, classification, persistence tiers, timings)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_event_received,
    record_event_succeeded,
    record_event_failed,
    record_classification,
    record_persistence_tier,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_event_received",
    "record_event_succeeded",
    "record_event_failed",
    "record_classification",
    "record_persistence_tier",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
