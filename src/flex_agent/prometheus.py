"""Prometheus exposition handling: unflattened series or flattened samples."""

import logging
import math
from typing import Any, Iterable

from prometheus_client.parser import text_string_to_metric_families

from .config import API, Prometheus
from .errors import FetchError
from .pipeline.base import compile_regex
from .sample import Sample

logger = logging.getLogger(__name__)

DEFAULT_HISTOGRAM_EVENT = "PrometheusHistogramSample"
DEFAULT_SUMMARY_EVENT = "PrometheusSummarySample"


def parse_families(text: str, source: str = "") -> list:
    """Parse exposition text; malformed output is a fetch failure."""
    try:
        return list(text_string_to_metric_families(text))
    except (ValueError, TypeError) as e:
        raise FetchError(f"invalid prometheus exposition: {e}", source=source) from e


def prometheus_samples(text: str, api: API) -> list[Sample]:
    """Turn exposition text into samples according to ``api.prometheus``."""
    options = api.prometheus
    families = [
        f for f in parse_families(text, api.name)
        if options.go_metrics or not f.name.startswith("go_")
    ]
    if options.unflatten:
        samples = _unflatten(families, api.default_event_type())
    else:
        samples = _flatten(families, options, options.flattened_event or api.default_event_type())
    for sample in samples:
        for key, value in options.custom_attributes.items():
            sample.attributes.setdefault(key, value)
    return samples


def _finite(value: float) -> bool:
    return not (math.isnan(value) or math.isinf(value))


def _unflatten(families: Iterable, event_type: str) -> list[Sample]:
    samples = []
    for family in families:
        for series in family.samples:
            if not _finite(series.value):
                continue
            sample = Sample(event_type, {
                "metricName": series.name,
                "metricValue": series.value,
                "metricType": family.type,
                "metricHelp": family.documentation,
            })
            for label, value in series.labels.items():
                sample[f"label.{label}"] = value
            samples.append(sample)
    return samples


def _flatten(families: Iterable, options: Prometheus, event_type: str) -> list[Sample]:
    flat = Sample(event_type)
    grouped: dict[str, Sample] = {}
    composites: list[Sample] = []
    sample_keys = [(name, compile_regex(expr, "prometheus.sample_keys")) for name, expr in options.sample_keys.items()]

    for family in families:
        if options.histogram and family.type == "histogram":
            composites.extend(_composite(family, "le", "bucket", options.histogram_event or DEFAULT_HISTOGRAM_EVENT))
            continue
        if options.summary and family.type == "summary":
            composites.extend(_composite(family, "quantile", "quantile", options.summary_event or DEFAULT_SUMMARY_EVENT))
            continue

        for series in family.samples:
            if not _finite(series.value):
                continue
            target = flat
            for group_event, pattern in sample_keys:
                if pattern.search(series.name):
                    target = grouped.setdefault(group_event, Sample(group_event))
                    break

            key = series.name
            for label in options.key_merge:
                if label in series.labels:
                    key = f"{key}.{series.labels[label]}"
            if key in target:
                logger.debug(f"Prometheus key {key} seen twice, keeping the last value")
            target[key] = series.value

            if options.keep_labels:
                for label, value in series.labels.items():
                    if label not in options.key_merge:
                        target[f"{key}.{label}"] = value
            if options.keep_help and family.documentation:
                target[f"{series.name}.help"] = family.documentation

    samples = [flat] if len(flat) else []
    return samples + list(grouped.values()) + composites


def _composite(family, bound_label: str, prefix: str, event_type: str) -> list[Sample]:
    """One sample per label set with every bucket/quantile, sum and count."""
    series_by_labels: dict[tuple, Sample] = {}
    for series in family.samples:
        labels = {k: v for k, v in series.labels.items() if k != bound_label}
        identity = tuple(sorted(labels.items()))
        sample = series_by_labels.get(identity)
        if sample is None:
            sample = Sample(event_type, {"name": family.name})
            for label, value in labels.items():
                sample[f"label.{label}"] = value
            series_by_labels[identity] = sample

        value: Any = series.value
        if series.name.endswith("_sum"):
            sample["sum"] = value
        elif series.name.endswith("_count"):
            sample["count"] = value
        elif series.name.endswith("_created"):
            continue
        elif bound_label in series.labels:
            sample[f"{prefix}.{series.labels[bound_label]}"] = value
    return list(series_by_labels.values())
