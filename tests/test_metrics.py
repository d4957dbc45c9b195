"""
Tests for metrics collection and the access-control helpers.
"""

import logging

import pytest

from core.metrics import (
    MetricsCollector,
    audit_access_denial,
    get_access_metrics,
    get_all_metrics,
    get_counter,
    get_histogram_stats,
    increment_counter,
    observe_histogram,
    record_access_check,
    record_transition,
    reset_metrics,
    set_audit_enabled,
    time_operation,
)


class TestMetricsCollector:
    """Test the collector primitives."""

    def test_counters_are_keyed_by_labels(self):
        collector = MetricsCollector()
        collector.increment_counter("hits", labels={"a": "1"})
        collector.increment_counter("hits", labels={"a": "1"})
        collector.increment_counter("hits", labels={"a": "2"})

        assert collector.get_counter("hits", {"a": "1"}) == 2
        assert collector.get_counter("hits", {"a": "2"}) == 1
        assert collector.get_counter("hits") == 0

    def test_label_order_does_not_matter(self):
        increment_counter("x", labels={"b": "2", "a": "1"})
        assert get_counter("x", {"a": "1", "b": "2"}) == 1

    def test_histogram_stats(self):
        observe_histogram("latency", 10.0)
        observe_histogram("latency", 30.0)

        stats = get_histogram_stats("latency")
        assert stats["count"] == 2
        assert stats["avg"] == 20.0

    def test_histogram_overflow_goes_to_last_bucket(self):
        observe_histogram("latency", 10 ** 9)
        buckets = get_histogram_stats("latency")["buckets"]
        assert list(buckets.values())[-1] == 1

    def test_reset(self):
        increment_counter("x")
        reset_metrics()
        assert get_all_metrics()["counters"] == {}


class TestTimeOperation:

    def test_records_latency(self):
        with time_operation("transition", {"action": "follow"}):
            pass
        assert get_histogram_stats("transition_latency_ms", {"action": "follow"})["count"] == 1

    def test_records_latency_on_error(self):
        with pytest.raises(ValueError):
            with time_operation("transition", {"action": "join"}):
                raise ValueError("boom")
        assert get_histogram_stats("transition_latency_ms", {"action": "join"})["count"] == 1


class TestAccessMetrics:

    def test_access_checks(self):
        record_access_check(allowed=True, action="follow", role="outsider")
        record_access_check(allowed=False, action="delete_collection", role="admin")

        assert get_counter("access.checks.allowed") == 1
        assert get_counter("access.checks.denied") == 1
        assert get_counter("access.checks.denied.by_role", {"role": "admin"}) == 1

    def test_transitions(self):
        record_transition("follow", "committed")
        record_transition("follow", "noop")
        assert get_counter("transition.total", {"action": "follow", "outcome": "noop"}) == 1

    def test_audit_log_entry(self, caplog):
        with caplog.at_level(logging.WARNING, logger="audit"):
            audit_access_denial(
                action="remove_admin",
                actor_id="admin-1",
                role="admin",
                collection_id="col-1",
                target_id="admin-2",
                metadata={"reason": "tier"},
            )

        record = caplog.records[-1]
        assert "ACCESS_DENIAL action=remove_admin" in record.getMessage()
        assert record.audit["target_id"] == "admin-2"
        assert record.audit["metadata"] == {"reason": "tier"}
        assert get_counter("access.audit.denials") == 1

    def test_anonymous_actor_in_audit(self, caplog):
        with caplog.at_level(logging.WARNING, logger="audit"):
            audit_access_denial(action="follow", actor_id=None, role="outsider", collection_id="c")
        assert caplog.records[-1].audit["actor_id"] == "anonymous"

    def test_grouping(self):
        record_access_check(allowed=True, action="join", role="outsider")
        audit_access_denial(action="join", actor_id="u", role="member", collection_id="c")
        record_transition("join", "committed")

        grouped = get_access_metrics()
        assert "access.checks.allowed" in grouped["checks"]
        assert "access.audit.denials" in grouped["audit"]
        assert "transition.total" in grouped["transitions"]


def test_audit_log_can_be_disabled(caplog):
    set_audit_enabled(False)
    try:
        with caplog.at_level(logging.WARNING, logger="audit"):
            audit_access_denial(action="follow", actor_id="u", role="member", collection_id="c")
    finally:
        set_audit_enabled(True)

    assert caplog.records == []
    assert get_counter("access.audit.denials") == 1
