"""Namespace engine: gauge, delta, rate and summary computation across cycles."""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .config import MetricParserConfig
from .sample import Sample, to_number

logger = logging.getLogger(__name__)


class MetricKind(str, Enum):
    """How an attribute is turned into a metric value."""
    RATE = "RATE"
    DELTA = "DELTA"
    GAUGE = "GAUGE"
    PASSTHROUGH = ""


@dataclass
class PriorValue:
    """Last raw value seen for a (namespace, metric) key."""

    value: float
    timestamp: float


class NamespaceState:
    """
    Prior raw values keyed by (namespace, metric name).

    Each key has its own lock so pipelines touching disjoint namespaces
    never wait on each other; the guard lock is only held while looking
    up or creating a key lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._values: dict[tuple[str, str], PriorValue] = {}

    def lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def swap(self, key: tuple[str, str], value: float, timestamp: float) -> Optional[PriorValue]:
        """Store ``value`` for ``key`` and return what was stored before."""
        with self.lock_for(key):
            previous = self._values.get(key)
            self._values[key] = PriorValue(value, timestamp)
            return previous

    def get(self, key: tuple[str, str]) -> Optional[PriorValue]:
        with self.lock_for(key):
            return self._values.get(key)

    def clear(self):
        with self._guard:
            self._values.clear()
            self._locks.clear()

    def __len__(self) -> int:
        with self._guard:
            return len(self._values)


@dataclass
class _Summary:
    count: int = 0
    total: float = 0.0
    minimum: float = float("inf")
    maximum: float = float("-inf")

    def observe(self, value: float):
        self.count += 1
        self.total += value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)


class SummaryWindow:
    """Min/max/sum/count per (namespace, metric) for one harvest window."""

    def __init__(self):
        self._lock = threading.Lock()
        self._summaries: dict[tuple[str, str], _Summary] = {}
        self._window_start = time.time()

    def observe(self, namespace: str, name: str, value: float):
        with self._lock:
            self._summaries.setdefault((namespace, name), _Summary()).observe(value)

    def flush(self, now: Optional[float] = None) -> list[dict[str, Any]]:
        """Return summary metric entries for the window and start a new one."""
        now = time.time() if now is None else now
        with self._lock:
            summaries, self._summaries = self._summaries, {}
            start, self._window_start = self._window_start, now

        interval_ms = max(int((now - start) * 1000), 0)
        entries = []
        for (namespace, name), summary in summaries.items():
            entries.append({
                "name": name,
                "type": "summary",
                "value": {
                    "count": summary.count,
                    "sum": summary.total,
                    "min": summary.minimum,
                    "max": summary.maximum,
                },
                "timestamp": int(start * 1000),
                "interval.ms": interval_ms,
                "attributes": {"namespace": namespace},
            })
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._summaries)


@dataclass
class ParseResult:
    """What the metric parser did to one sample."""

    namespace: str
    derived: dict[str, tuple[MetricKind, float]] = field(default_factory=dict)
    gaps: list[str] = field(default_factory=list)  # first occurrences
    resets: list[str] = field(default_factory=list)


class MetricParser:
    """
    Applies a metric_parser block to samples of one API.

    RATE is (current - previous) / elapsed seconds and DELTA is
    current - previous. A key seen for the first time keeps its raw
    value. A decrease is a counter reset: the raw value is kept and
    becomes the new previous value.
    """

    def __init__(
        self,
        config: MetricParserConfig,
        source_name: str,
        state: NamespaceState,
        summaries: Optional[SummaryWindow] = None,
    ):
        self.config = config
        self.source_name = source_name
        self.state = state
        self.summaries = summaries

    def resolve_namespace(self, sample: Sample) -> str:
        """Custom attribute, then existing attribute chain, then source name."""
        namespace = self.config.namespace
        if namespace.custom_attr:
            return namespace.custom_attr
        if namespace.existing_attr:
            parts = [str(sample[attr]) for attr in namespace.existing_attr if attr in sample]
            if parts:
                return "-".join(parts)
        return self.source_name

    def classify(self, key: str) -> MetricKind:
        kind = self.config.metrics.get(key)
        if kind is None and self.config.auto_set:
            for name, candidate in self.config.metrics.items():
                if name and name in key:
                    kind = candidate
                    break
        if kind is None:
            return MetricKind.PASSTHROUGH
        try:
            return MetricKind(kind.upper())
        except ValueError:
            logger.debug(f"Unknown metric kind '{kind}' for {key}, passing through")
            return MetricKind.PASSTHROUGH

    def apply(self, sample: Sample, now: Optional[float] = None) -> ParseResult:
        """Compute derived values in place and record summary observations."""
        now = time.time() if now is None else now
        result = ParseResult(namespace=self.resolve_namespace(sample))

        for key in list(sample.keys()):
            current = to_number(sample[key])
            if current is None:
                continue

            if self.summaries is not None and key in self.config.summaries:
                self.summaries.observe(result.namespace, key, current)

            kind = self.classify(key)
            if kind not in (MetricKind.RATE, MetricKind.DELTA):
                continue

            previous = self.state.swap((result.namespace, key), current, now)
            if previous is None:
                result.gaps.append(key)
                continue
            if current < previous.value:
                logger.debug(
                    f"Counter reset for {result.namespace}/{key}: "
                    f"{current} < {previous.value}, keeping raw value"
                )
                result.resets.append(key)
                continue

            if kind == MetricKind.RATE:
                elapsed = now - previous.timestamp
                if elapsed <= 0:
                    result.gaps.append(key)
                    continue
                value = (current - previous.value) / elapsed
            else:
                value = current - previous.value

            sample[key] = value
            result.derived[key] = (kind, value)

        return result

    def metric_type(self, key: str) -> str:
        """Metric API type for an attribute of a parsed sample."""
        if key in self.config.counts:
            return "count"
        return "gauge"
