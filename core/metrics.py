# core/metrics.py — in-process metrics collection and access auditing

import logging
import time
import threading
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from contextlib import contextmanager


@dataclass
class MetricCounter:
    """A counter metric that can only increase."""
    name: str
    value: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)

@dataclass
class MetricHistogram:
    """A histogram metric for tracking distributions."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [1.0, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0])
    counts: List[int] = field(default_factory=lambda: [0] * 9)
    sum: float = 0.0
    count: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)

class MetricsCollector:
    """Thread-safe collector for counters and histograms."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, MetricCounter] = {}
        self._histograms: Dict[str, MetricHistogram] = {}
        self._start_time = time.time()

    def _get_metric_key(self, name: str, labels: Dict[str, str] = None) -> str:
        """Generate a unique key for a metric with labels."""
        if not labels:
            return name
        sorted_labels = sorted(labels.items())
        label_str = ",".join(f"{k}={v}" for k, v in sorted_labels)
        return f"{name}{{{label_str}}}"

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._counters:
                self._counters[key] = MetricCounter(name=name, labels=labels or {})
            self._counters[key].value += value
            self._counters[key].last_updated = time.time()

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a value in a histogram metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._histograms:
                self._histograms[key] = MetricHistogram(name=name, labels=labels or {})

            histogram = self._histograms[key]
            histogram.sum += value
            histogram.count += 1
            histogram.last_updated = time.time()

            for i, bucket in enumerate(histogram.buckets):
                if value <= bucket:
                    histogram.counts[i] += 1
                    break
            else:
                # Value exceeds all buckets, increment the last one
                histogram.counts[-1] += 1

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        """Get the current value of a counter."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_histogram_stats(self, name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
        """Get histogram statistics."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            histogram = self._histograms.get(key, MetricHistogram(name=name, labels=labels or {}))

            return {
                "count": histogram.count,
                "sum": histogram.sum,
                "avg": histogram.sum / histogram.count if histogram.count else 0.0,
                "buckets": dict(zip(histogram.buckets, histogram.counts))
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics in a structured format."""
        with self._lock:
            metrics = {
                "counters": {},
                "histograms": {},
                "uptime_seconds": time.time() - self._start_time,
                "timestamp": time.time()
            }

            for counter in self._counters.values():
                metrics["counters"].setdefault(counter.name, []).append({
                    "value": counter.value,
                    "labels": counter.labels,
                    "last_updated": counter.last_updated
                })

            for histogram in self._histograms.values():
                metrics["histograms"].setdefault(histogram.name, []).append({
                    "stats": self.get_histogram_stats(histogram.name, histogram.labels),
                    "labels": histogram.labels,
                    "last_updated": histogram.last_updated
                })

            return metrics

    def reset_metrics(self):
        """Reset all metrics to zero."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._start_time = time.time()

# Global metrics collector instance
_metrics = MetricsCollector()

audit_logger = logging.getLogger("audit")

# Toggled from the AUDIT_DENIALS config knob; counters are kept either way
_audit_enabled = True

# Convenience functions for easy access
def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment_counter(name, value, labels)

def observe_histogram(name: str, value: float, labels: Dict[str, str] = None):
    """Observe a value in a histogram metric."""
    _metrics.observe_histogram(name, value, labels)

def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    """Get the current value of a counter."""
    return _metrics.get_counter(name, labels)

def get_histogram_stats(name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
    """Get histogram statistics."""
    return _metrics.get_histogram_stats(name, labels)

def get_all_metrics() -> Dict[str, Any]:
    """Get all metrics in a structured format."""
    return _metrics.get_all_metrics()

def reset_metrics():
    """Reset all metrics to zero."""
    _metrics.reset_metrics()

# Context manager for timing operations
@contextmanager
def time_operation(operation_name: str, labels: Dict[str, str] = None):
    """Context manager to time an operation and record it as a histogram."""
    start_time = time.time()
    try:
        yield
    finally:
        duration_ms = (time.time() - start_time) * 1000
        observe_histogram(f"{operation_name}_latency_ms", duration_ms, labels)


# ============================================================================
# Access-Control Metrics and Auditing
# ============================================================================

def record_access_check(allowed: bool, action: str, role: str):
    """
    Record a permission decision.

    Args:
        allowed: Whether the action was permitted
        action: Action constant being checked
        role: Role the decision was made for
    """
    if allowed:
        increment_counter("access.checks.allowed")
        increment_counter("access.checks.allowed.by_action", labels={"action": action})
    else:
        increment_counter("access.checks.denied")
        increment_counter("access.checks.denied.by_action", labels={"action": action})
        increment_counter("access.checks.denied.by_role", labels={"role": role})


def record_transition(action: str, outcome: str):
    """
    Record the outcome of a membership or post transition.

    Args:
        action: Transition name (e.g. "follow", "pin_post")
        outcome: One of "committed", "noop", "failed"
    """
    increment_counter("transition.total", labels={"action": action, "outcome": outcome})


def set_audit_enabled(enabled: bool):
    """Turn the audit log line for denials on or off."""
    global _audit_enabled
    _audit_enabled = bool(enabled)


def audit_access_denial(
    action: str,
    actor_id: Optional[str],
    role: str,
    collection_id: Optional[str],
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Emit audit log entry for a denied action.

    Creates structured log entry for security monitoring.

    Args:
        action: Action that was denied
        actor_id: User who attempted the action (None for anonymous)
        role: Actor's resolved role at the time of the attempt
        collection_id: Collection the action targeted
        target_id: User or post the action targeted, if any
        metadata: Additional context
    """
    audit_entry = {
        "event": "access_denial",
        "action": action,
        "actor_id": actor_id or "anonymous",
        "role": role,
        "collection_id": collection_id,
        "target_id": target_id,
        "timestamp": time.time(),
    }

    if metadata:
        audit_entry["metadata"] = metadata

    if _audit_enabled:
        audit_logger.warning(
            f"ACCESS_DENIAL action={action} actor={actor_id or 'anonymous'} "
            f"role={role} collection={collection_id} target={target_id}",
            extra={"audit": audit_entry}
        )

    increment_counter("access.audit.denials")
    increment_counter("access.audit.denials.by_action", labels={"action": action})


def get_access_metrics() -> Dict[str, Any]:
    """
    Get all access-control related metrics.

    Returns:
        Dictionary with "checks", "audit" and "transitions" sections
    """
    all_metrics = _metrics.get_all_metrics()

    access_metrics = {
        "checks": {},
        "audit": {},
        "transitions": {},
    }

    for metric_name, metric_data in all_metrics.get("counters", {}).items():
        if metric_name.startswith("access.audit."):
            access_metrics["audit"][metric_name] = metric_data
        elif metric_name.startswith("access.checks."):
            access_metrics["checks"][metric_name] = metric_data
        elif metric_name.startswith("transition."):
            access_metrics["transitions"][metric_name] = metric_data

    return access_metrics


__all__ = [
    'MetricsCollector', 'increment_counter', 'observe_histogram',
    'get_counter', 'get_histogram_stats', 'get_all_metrics',
    'reset_metrics', 'time_operation',
    'record_access_check', 'record_transition', 'audit_access_denial',
    'set_audit_enabled', 'get_access_metrics',
]
