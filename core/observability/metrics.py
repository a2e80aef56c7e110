"""
Metrics Collection for the POS Ledger Pipeline

Collects and exposes metrics for:
- POS events (received, succeeded, failed by event type)
- Classification outcomes (auto-post eligible, held for review, degraded)
- Persistence tier outcomes (direct, trigger bypass, simulated, failed)
- Notification delivery (delivered, retries, dead letters)
- Processing times per stage (average, p95)

Metrics are held in-memory and exposed through get_summary() and /metrics.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class EventMetrics:
    """Metrics for POS event handling."""
    received: int = 0
    succeeded: int = 0
    failed: int = 0
    last_event_at: Optional[datetime] = None

    # By event type
    by_type: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"received": 0, "succeeded": 0, "failed": 0}))


@dataclass
class ClassificationMetrics:
    """Metrics for classification outcomes."""
    classified: int = 0
    review_required: int = 0
    degraded: int = 0

    # By transaction type
    by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class PersistenceMetrics:
    """Metrics for persistence tier outcomes."""
    writes: int = 0
    fallbacks: int = 0
    simulated: int = 0
    failed: int = 0

    # By tier name
    by_tier: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"succeeded": 0, "failed": 0}))


@dataclass
class DeliveryMetrics:
    """Metrics for notification channel delivery."""
    delivered: int = 0
    retries: int = 0
    dead_letters: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the ledger pipeline.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_event_received("order.completed")
        metrics.record_processing_time("classification", 3.2)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.events = EventMetrics()
        self.classifications = ClassificationMetrics()
        self.persistence = PersistenceMetrics()
        self.delivery = DeliveryMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def reset(self):
        """Clear all collected metrics."""
        with self._lock:
            self.events = EventMetrics()
            self.classifications = ClassificationMetrics()
            self.persistence = PersistenceMetrics()
            self.delivery = DeliveryMetrics()
            self.timings = TimingMetrics()

    # =========================================================================
    # Event Metrics
    # =========================================================================

    def record_event_received(self, event_type: str):
        """Record a POS event entering the bridge."""
        with self._lock:
            self.events.received += 1
            self.events.last_event_at = datetime.now(timezone.utc)
            self.events.by_type[event_type]["received"] += 1

    def record_event_succeeded(self, event_type: str, duration_ms: float = None):
        """Record a POS event handled successfully."""
        with self._lock:
            self.events.succeeded += 1
            self.events.by_type[event_type]["succeeded"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"event.{event_type}")

    def record_event_failed(self, event_type: str, error: str = None):
        """Record a POS event whose handling failed."""
        with self._lock:
            self.events.failed += 1
            self.events.by_type[event_type]["failed"] += 1

    # =========================================================================
    # Classification Metrics
    # =========================================================================

    def record_classification(self, transaction_type: str, review_required: bool, degraded: bool = False):
        """Record a classification outcome."""
        with self._lock:
            self.classifications.classified += 1
            self.classifications.by_type[transaction_type] += 1
            if review_required:
                self.classifications.review_required += 1
            if degraded:
                self.classifications.degraded += 1

    # =========================================================================
    # Persistence Metrics
    # =========================================================================

    def record_persistence_tier(self, tier: str, success: bool, fallback: bool = False, simulated: bool = False):
        """Record the outcome of one persistence tier attempt."""
        with self._lock:
            self.persistence.writes += 1
            key = "succeeded" if success else "failed"
            self.persistence.by_tier[tier][key] += 1
            if fallback:
                self.persistence.fallbacks += 1
            if simulated:
                self.persistence.simulated += 1
            if not success:
                self.persistence.failed += 1

    # =========================================================================
    # Delivery Metrics
    # =========================================================================

    def record_delivery(self, attempts: int, dead_lettered: bool = False):
        """Record a notification delivery to one subscriber."""
        with self._lock:
            if dead_lettered:
                self.delivery.dead_letters += 1
            else:
                self.delivery.delivered += 1
            self.delivery.retries += max(0, attempts - 1)

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "events": {
                    "received": self.events.received,
                    "succeeded": self.events.succeeded,
                    "failed": self.events.failed,
                    "last_event_at": self.events.last_event_at.isoformat() if self.events.last_event_at else None,
                    "by_type": {k: dict(v) for k, v in self.events.by_type.items()},
                },
                "classifications": {
                    "classified": self.classifications.classified,
                    "review_required": self.classifications.review_required,
                    "degraded": self.classifications.degraded,
                    "by_type": dict(self.classifications.by_type),
                },
                "persistence": {
                    "writes": self.persistence.writes,
                    "fallbacks": self.persistence.fallbacks,
                    "simulated": self.persistence.simulated,
                    "failed": self.persistence.failed,
                    "by_tier": {k: dict(v) for k, v in self.persistence.by_tier.items()},
                },
                "delivery": {
                    "delivered": self.delivery.delivered,
                    "retries": self.delivery.retries,
                    "dead_letters": self.delivery.dead_letters,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_event_received(event_type: str):
    """Record a POS event entering the bridge."""
    get_metrics().record_event_received(event_type)


def record_event_succeeded(event_type: str, duration_ms: float = None):
    """Record a POS event handled successfully."""
    get_metrics().record_event_succeeded(event_type, duration_ms)


def record_event_failed(event_type: str, error: str = None):
    """Record a POS event whose handling failed."""
    get_metrics().record_event_failed(event_type, error)


def record_classification(transaction_type: str, review_required: bool, degraded: bool = False):
    """Record a classification outcome."""
    get_metrics().record_classification(transaction_type, review_required, degraded)


def record_persistence_tier(tier: str, success: bool, fallback: bool = False, simulated: bool = False):
    """Record the outcome of one persistence tier attempt."""
    get_metrics().record_persistence_tier(tier, success, fallback, simulated)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
