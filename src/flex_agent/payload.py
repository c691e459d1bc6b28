"""Infrastructure integration payload (metrics, inventory and events)."""

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import INTEGRATION_NAME

EntityKey = tuple[str, str]


@dataclass
class EntityData:
    metrics: list[dict[str, Any]] = field(default_factory=list)
    inventory: dict[str, dict[str, Any]] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.metrics or self.inventory or self.events)

    def to_dict(self, key: EntityKey) -> dict[str, Any]:
        return {
            "entity": {"name": key[0], "type": key[1]},
            "metrics": list(self.metrics),
            "inventory": {k: dict(v) for k, v in self.inventory.items()},
            "events": list(self.events),
        }


@dataclass
class IntegrationPayload:
    """
    Output document in the infrastructure integration protocol shape.

    Data goes to the default entity (``entity_name``/``entity_type``)
    unless a writer names another one; each entity becomes one item of
    ``data``, default first. Writers may run on several threads, so every
    mutation takes the payload lock.
    """

    integration_version: str = "Unknown-SNAPSHOT"
    entity_name: str = ""
    entity_type: str = "flex"
    metrics: list[dict[str, Any]] = field(default_factory=list)
    inventory: dict[str, dict[str, Any]] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    entities: dict[EntityKey, EntityData] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def _target(self, entity: Optional[EntityKey]):
        if entity is None or entity == (self.entity_name, self.entity_type):
            return self
        return self.entities.setdefault(entity, EntityData())

    def add_metric_set(self, event_type: str, attributes: dict[str, Any], entity: Optional[EntityKey] = None):
        record = dict(attributes)
        record["event_type"] = event_type
        with self._lock:
            self._target(entity).metrics.append(record)

    def set_inventory(self, category: str, key: str, value: Any, entity: Optional[EntityKey] = None):
        with self._lock:
            self._target(entity).inventory.setdefault(category, {})[key] = value

    def add_event(self, summary: str, category: str, attributes: dict[str, Any], entity: Optional[EntityKey] = None):
        event = {"summary": summary, "category": category, "attributes": dict(attributes)}
        with self._lock:
            self._target(entity).events.append(event)

    def is_empty(self) -> bool:
        with self._lock:
            if self.metrics or self.inventory or self.events:
                return False
            return all(data.is_empty() for data in self.entities.values())

    def all_metrics(self) -> list[dict[str, Any]]:
        """Metric sets of every entity, default entity first."""
        with self._lock:
            metrics = list(self.metrics)
            for data in self.entities.values():
                metrics.extend(data.metrics)
            return metrics

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            default = EntityData(self.metrics, self.inventory, self.events)
            data = [default.to_dict((self.entity_name, self.entity_type))]
            data.extend(entity.to_dict(key) for key, entity in self.entities.items())
            return {
                "name": INTEGRATION_NAME,
                "protocol_version": "3",
                "integration_version": self.integration_version,
                "data": data,
            }

    def to_json(self, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), indent=2 if pretty else None, default=str)
