"""Tests for the collector context, counters and metrics store."""

import threading

from flex_agent.context import (
    CONFIGS_PROCESSED,
    EVENT_COUNT,
    EVENT_DROP_COUNT,
    CollectorContext,
    Metrics,
    MetricsStore,
    StatusCounters,
)


class TestStatusCounters:
    """Test operational counters."""

    def test_initial_counters(self):
        counters = StatusCounters()
        assert counters.snapshot() == {EVENT_COUNT: 0, EVENT_DROP_COUNT: 0, CONFIGS_PROCESSED: 0}

    def test_increment_and_refresh(self):
        counters = StatusCounters()
        counters.increment(EVENT_DROP_COUNT, 3)
        counters.increment("Custom")
        assert counters.read(EVENT_DROP_COUNT) == 3
        assert counters.read("Custom") == 1

        counters.refresh()
        assert counters.read(EVENT_DROP_COUNT) == 0
        assert counters.read("Custom") == 0

    def test_acquire_emission_under_limit(self):
        counters = StatusCounters()
        results = [counters.acquire_emission(2) for _ in range(5)]

        assert results == [True, True, False, False, False]
        assert counters.read(EVENT_COUNT) == 2
        assert counters.read(EVENT_DROP_COUNT) == 3

    def test_zero_limit_disables_gate(self):
        counters = StatusCounters()
        assert all(counters.acquire_emission(0) for _ in range(10))
        assert counters.read(EVENT_COUNT) == 10

    def test_acquire_emission_is_atomic(self):
        """Test concurrent callers never exceed the limit."""
        counters = StatusCounters()
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(100):
                if counters.acquire_emission(250):
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(granted) == 250
        assert counters.read(EVENT_DROP_COUNT) == 800 - 250


class TestMetricsStore:
    """Test the batch store."""

    def test_append_and_drain(self):
        store = MetricsStore()
        store.append(Metrics(timestamp_ms=1))
        store.append(Metrics(timestamp_ms=2))

        assert len(store) == 2
        drained = store.drain()
        assert [b.timestamp_ms for b in drained] == [1, 2]
        assert len(store) == 0
        assert store.drain() == []

    def test_snapshot_does_not_drain(self):
        store = MetricsStore()
        store.append(Metrics(timestamp_ms=1))
        assert len(store.snapshot()) == 1
        assert len(store) == 1

    def test_metrics_wire_shape(self):
        batch = Metrics(
            timestamp_ms=1000,
            interval_ms=60000,
            common_attributes={"host.name": "h"},
            metrics=[{"name": "m", "type": "gauge", "value": 1}],
        )
        assert batch.to_dict() == {
            "timestamp.ms": 1000,
            "interval.ms": 60000,
            "commonAttributes": {"host.name": "h"},
            "metrics": [{"name": "m", "type": "gauge", "value": 1}],
        }


class TestCollectorContext:
    """Test per-run context isolation."""

    def test_contexts_are_isolated(self, settings):
        first = CollectorContext(settings)
        second = CollectorContext(settings)
        first.counters.increment(EVENT_COUNT)
        first.namespace_state.swap(("ns", "m"), 1.0, 0.0)

        assert second.counters.read(EVENT_COUNT) == 0
        assert len(second.namespace_state) == 0

    def test_reload_clears_state(self, context):
        context.namespace_state.swap(("ns", "m"), 1.0, 0.0)
        context.summaries.observe("ns", "m", 1.0)
        context.reload()
        assert len(context.namespace_state) == 0
        assert len(context.summaries) == 0

    def test_new_payload_returns_previous(self, context):
        context.payload.add_metric_set("x", {"a": 1})
        previous = context.new_payload()
        assert previous.metrics == [{"a": 1, "event_type": "x"}]
        assert context.payload.is_empty()
