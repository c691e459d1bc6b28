"""Sample merger: merge targets and run-wide sample merge rules."""

import logging
from typing import Iterable

from .config import API, SampleMerge
from .sample import Sample

logger = logging.getLogger(__name__)


def assign_merge_target(api: API, samples: Iterable[Sample]) -> list[Sample]:
    """Reassign samples to the API's merge event type, when configured."""
    samples = list(samples)
    if api.merge:
        for sample in samples:
            sample.event_type = api.merge
    return samples


class SampleMerger:
    """
    Collapses samples of listed event types into one event per rule.

    Attribute maps are unioned in rule-list order and, within one event
    type, in processing order; on a key collision the later sample wins.
    Samples that no rule names pass through untouched and keep their
    position.
    """

    def __init__(self, rules: list[SampleMerge]):
        self.rules = [r for r in rules if r.event_type and r.samples]

    def merge(self, samples: list[Sample]) -> list[Sample]:
        if not self.rules:
            return list(samples)

        claimed: dict[str, int] = {}
        for index, rule in enumerate(self.rules):
            for event_type in rule.samples:
                claimed.setdefault(event_type, index)

        passthrough: list[Sample] = []
        members: dict[int, dict[str, list[Sample]]] = {i: {} for i in range(len(self.rules))}
        for sample in samples:
            index = claimed.get(sample.event_type)
            if index is None:
                passthrough.append(sample)
            else:
                members[index].setdefault(sample.event_type, []).append(sample)

        merged: list[Sample] = []
        for index, rule in enumerate(self.rules):
            groups = members[index]
            if not groups:
                continue
            unified = Sample(event_type=rule.event_type)
            count = 0
            for event_type in rule.samples:
                for sample in groups.get(event_type, []):
                    unified.attributes.update(sample.attributes)
                    count += 1
            logger.debug(f"Merged {count} samples into {rule.event_type}")
            merged.append(unified)

        return passthrough + merged
