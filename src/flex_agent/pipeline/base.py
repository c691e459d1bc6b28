"""Stage interface and pipeline runner."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import ConfigError
from ..sample import Sample

logger = logging.getLogger(__name__)


def compile_regex(pattern: str, directive: str, source: str = "") -> re.Pattern:
    """Compile a directive pattern, turning re.error into ConfigError."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"invalid regex '{pattern}': {e}", source=source, directive=directive) from e


def check_replacement(pattern: re.Pattern, replacement: str, directive: str, source: str = "") -> str:
    """Reject replacement templates that refer to groups ``pattern`` does not have."""
    try:
        pattern.sub(replacement, "")
    except re.error as e:
        raise ConfigError(
            f"invalid replacement '{replacement}' for '{pattern.pattern}': {e}",
            source=source,
            directive=directive,
        ) from e
    return replacement


class Exemptions:
    """Keys matching any skip_processing regex are left alone by shaping stages."""

    def __init__(self, patterns: Iterable[re.Pattern] = ()):
        self.patterns = list(patterns)
        self._cache: dict[str, bool] = {}

    def __call__(self, key: str) -> bool:
        if not self.patterns:
            return False
        hit = self._cache.get(key)
        if hit is None:
            hit = any(p.search(key) for p in self.patterns)
            self._cache[key] = hit
        return hit


class Stage(ABC):
    """
    One reshaping step applied to every sample.

    ``apply`` returns the samples that continue down the pipeline: the
    same sample (mutated in place), several samples, or none. A stage
    whose ``drops`` flag is set reports an empty result as a dropped
    sample.
    """

    name: str = "stage"
    drops: bool = False

    def __init__(self, exempt: Exemptions | None = None):
        self.exempt = exempt or Exemptions()

    @abstractmethod
    def apply(self, sample: Sample) -> list[Sample]:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


@dataclass
class PipelineResult:
    """Surviving samples plus the number filtered out."""

    samples: list[Sample] = field(default_factory=list)
    dropped: int = 0


class Pipeline:
    """An API's compiled stages, applied in order, preserving sample order."""

    def __init__(self, stages: list[Stage], source: str = ""):
        self.stages = stages
        self.source = source

    def run(self, samples: Iterable[Sample]) -> PipelineResult:
        result = PipelineResult(samples=list(samples))
        for stage in self.stages:
            survivors: list[Sample] = []
            for sample in result.samples:
                produced = stage.apply(sample)
                if not produced and stage.drops:
                    result.dropped += 1
                survivors.extend(produced)
            result.samples = survivors
        emptied = sum(1 for s in result.samples if not len(s))
        if emptied:
            # keep_keys/remove_keys can leave a sample with nothing to emit
            logger.debug(f"{self.source}: {emptied} samples left without attributes")
            result.samples = [s for s in result.samples if len(s)]
            result.dropped += emptied
        if result.dropped:
            logger.debug(f"{self.source}: {result.dropped} samples filtered out")
        return result

    def __len__(self) -> int:
        return len(self.stages)

    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]
