"""Final emission: event limit, integration payload and dimensional batches."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import API, INTEGRATION_NAME_SHORT, Config
from .context import CollectorContext, Metrics
from .metric_parser import MetricParser
from .payload import EntityKey
from .sample import Sample, to_number

logger = logging.getLogger(__name__)


@dataclass
class Dataset:
    """Samples produced by one dispatch unit (an API or one of its commands)."""

    api: API
    unit: str
    samples: list[Sample] = field(default_factory=list)
    parser: Optional[MetricParser] = None
    dropped: int = 0
    # set by Emitter.emit: True when the samples went to the Metric API
    metric_bound: bool = False


@dataclass
class EmitResult:
    emitted: int = 0
    dropped: int = 0
    batch: Optional[Metrics] = None


class Emitter:
    """
    Emits datasets of one config through a collector context.

    The event limit is enforced here, sample by sample in processing
    order: once the run has emitted ``event_limit`` samples every further
    candidate is counted as a drop.
    """

    def __init__(self, context: CollectorContext, config: Config):
        self.context = context
        self.config = config

    def is_metric_bound(self, dataset: Dataset) -> bool:
        return self.config.metric_api or dataset.parser is not None

    def emit(self, dataset: Dataset, now: Optional[float] = None) -> EmitResult:
        now = time.time() if now is None else now
        api = dataset.api
        result = EmitResult()
        counters = self.context.counters
        limit = self.context.settings.event_limit
        metric_bound = dataset.metric_bound = self.is_metric_bound(dataset)
        entries: list[dict[str, Any]] = []

        for sample in dataset.samples:
            if not sample.event_type:
                sample.event_type = api.default_event_type()
            if not counters.acquire_emission(limit):
                result.dropped += 1
                continue
            result.emitted += 1

            if metric_bound:
                entries.extend(self.metric_entries(sample, dataset.parser, now, self.entity_for(api)))
                if self.context.settings.force_log_event:
                    self.context.payload.add_metric_set(sample.event_type, sample.attributes, self.entity_for(api))
                continue
            self._emit_sample(api, sample)

        if result.dropped:
            logger.warning(
                f"{dataset.unit}: event limit {limit} reached, dropped {result.dropped} samples"
            )
        if entries:
            result.batch = Metrics(
                timestamp_ms=int(now * 1000),
                interval_ms=self.context.settings.interval * 1000,
                common_attributes=self.common_attributes(),
                metrics=entries,
            )
            self.context.store.append(result.batch)
        return result

    def entity_for(self, api: API) -> Optional[EntityKey]:
        """The payload entity an API reports to; None means the default entity."""
        if not api.entity and not api.entity_type:
            return None
        payload = self.context.payload
        return (api.entity or payload.entity_name, api.entity_type or payload.entity_type)

    def _emit_sample(self, api: API, sample: Sample):
        payload = self.context.payload
        entity = self.entity_for(api)
        for key, category in api.inventory.items():
            if key in sample:
                payload.set_inventory(category or api.name, key, sample[key], entity)
        if api.inventory_only:
            return
        for key, category in api.events.items():
            if key in sample:
                payload.add_event(f"{key}: {sample[key]}", category or api.name, sample.attributes, entity)
        if api.events_only:
            return
        payload.add_metric_set(sample.event_type, sample.attributes, entity)

    def metric_entries(
        self,
        sample: Sample,
        parser: Optional[MetricParser],
        now: float,
        entity: Optional[EntityKey] = None,
    ) -> list[dict[str, Any]]:
        """One gauge/count entry per numeric attribute; the rest become attributes."""
        numeric: dict[str, Any] = {}
        attributes: dict[str, Any] = {"event_type": sample.event_type}
        for key, value in sample.items():
            number = to_number(value)
            if number is None:
                attributes[key] = value
            else:
                numeric[key] = number
        if parser is not None:
            attributes["namespace"] = parser.resolve_namespace(sample)
        if entity is not None:
            attributes["entity.name"], attributes["entity.type"] = entity

        interval_ms = self.context.settings.interval * 1000
        entries = []
        for key, number in numeric.items():
            metric_type = parser.metric_type(key) if parser is not None else "gauge"
            entry: dict[str, Any] = {
                "name": key,
                "type": metric_type,
                "value": number,
                "timestamp": int(now * 1000),
                "attributes": attributes,
            }
            if metric_type == "count":
                entry["interval.ms"] = parser.config.counts.get(key) or interval_ms
            entries.append(entry)
        return entries

    def common_attributes(self) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            "integration.name": INTEGRATION_NAME_SHORT,
            "integration.version": self.context.settings.integration_version,
            "host.name": self.context.hostname,
        }
        if self.config.name:
            attributes["flex.config"] = self.config.name
        attributes.update(self.config.custom_attributes)
        return attributes


def flush_summaries(context: CollectorContext, now: Optional[float] = None) -> Optional[Metrics]:
    """Move the summary window into the store as one batch."""
    now = time.time() if now is None else now
    entries = context.summaries.flush(now)
    if not entries:
        return None
    batch = Metrics(
        timestamp_ms=int(now * 1000),
        interval_ms=context.settings.interval * 1000,
        common_attributes={
            "integration.name": INTEGRATION_NAME_SHORT,
            "integration.version": context.settings.integration_version,
            "host.name": context.hostname,
        },
        metrics=entries,
    )
    context.store.append(batch)
    return batch
