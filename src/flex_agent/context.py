"""Per-run collector context: metrics store, status counters and shared state."""

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import AgentSettings
from .metric_parser import NamespaceState, SummaryWindow
from .payload import IntegrationPayload

logger = logging.getLogger(__name__)


EVENT_COUNT = "EventCount"
EVENT_DROP_COUNT = "EventDropCount"
CONFIGS_PROCESSED = "ConfigsProcessed"


@dataclass
class Metrics:
    """A dimensional metric batch; never mutated after it is stored."""

    timestamp_ms: int
    interval_ms: int = 0
    common_attributes: dict[str, Any] = field(default_factory=dict)
    metrics: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the Metric API wire shape."""
        data: dict[str, Any] = {}
        if self.timestamp_ms:
            data["timestamp.ms"] = self.timestamp_ms
        if self.interval_ms:
            data["interval.ms"] = self.interval_ms
        if self.common_attributes:
            data["commonAttributes"] = self.common_attributes
        data["metrics"] = self.metrics
        return data


class StatusCounters:
    """Named operational counters, safe to touch from any thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self.refresh()

    def increment(self, key: str, amount: int = 1):
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount

    def read(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def acquire_emission(self, limit: int) -> bool:
        """
        Reserve one emission slot under the event limit.

        Returns True and counts the event when the limit has not been
        reached; otherwise counts a drop and returns False. A limit of 0
        or less disables the check.
        """
        with self._lock:
            emitted = self._counts.get(EVENT_COUNT, 0)
            if limit > 0 and emitted >= limit:
                self._counts[EVENT_DROP_COUNT] = self._counts.get(EVENT_DROP_COUNT, 0) + 1
                return False
            self._counts[EVENT_COUNT] = emitted + 1
            return True

    def refresh(self):
        """Reset every counter to zero."""
        with self._lock:
            self._counts = {
                EVENT_COUNT: 0,
                EVENT_DROP_COUNT: 0,
                CONFIGS_PROCESSED: 0,
            }


class MetricsStore:
    """Append-only list of finished batches, drained once per harvest."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: list[Metrics] = []

    def append(self, batch: Metrics):
        with self._lock:
            self._data.append(batch)

    def drain(self) -> list[Metrics]:
        """Return every stored batch and empty the store."""
        with self._lock:
            data, self._data = self._data, []
        return data

    def snapshot(self) -> list[Metrics]:
        with self._lock:
            return list(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class CollectorContext:
    """
    Everything a run shares between its stages.

    One context is injected into the dispatcher, the emitter and the
    metric parser, so parallel runs (and tests) stay isolated without a
    global reset. The namespace state and summary window outlive a single
    run: keep the context across harvest cycles and call ``reload`` when
    the configuration changes.
    """

    def __init__(self, settings: Optional[AgentSettings] = None):
        self.settings = settings or AgentSettings()
        self.counters = StatusCounters()
        self.store = MetricsStore()
        self.namespace_state = NamespaceState()
        self.summaries = SummaryWindow()
        self.hostname = socket.gethostname()
        self.payload = IntegrationPayload(
            integration_version=self.settings.integration_version,
            entity_name=self.settings.entity or self.hostname,
        )
        self.started_at = time.time()

    def reload(self):
        """Forget all cross-cycle state, as after a configuration reload."""
        self.namespace_state.clear()
        self.summaries.flush()
        logger.info("Collector state reset after reload")

    def new_payload(self):
        """Start a fresh integration payload and return the finished one."""
        previous = self.payload
        self.payload = IntegrationPayload(
            integration_version=self.settings.integration_version,
            entity_name=self.settings.entity or self.hostname,
        )
        return previous
