"""Filtering and labeling stages applied at the end of the pipeline."""

from ..sample import Sample
from .base import Exemptions, Stage, compile_regex

NEGATE = "!"


class SampleFilterStage(Stage):
    """
    Drop whole samples.

    Each filter is a mapping of attribute name to regex; a sample is
    dropped when every pair of some filter holds. Prefixing the
    attribute name with ``!`` inverts its pair: it holds when the
    attribute is present and its value does NOT match.
    """

    name = "sample_filter"
    drops = True

    def __init__(self, filters: list[dict[str, str]], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.filters = []
        for item in filters:
            pairs = []
            for key, expr in item.items():
                negate = key.startswith(NEGATE)
                pairs.append((key.lstrip(NEGATE), compile_regex(expr, "sample_filter", source), negate))
            if pairs:
                self.filters.append(pairs)

    def apply(self, sample: Sample) -> list[Sample]:
        for pairs in self.filters:
            if all(self._holds(sample, key, pattern, negate) for key, pattern, negate in pairs):
                return []
        return [sample]

    @staticmethod
    def _holds(sample: Sample, key: str, pattern, negate: bool) -> bool:
        if key not in sample:
            return False
        matched = bool(pattern.search(str(sample[key])))
        return not matched if negate else matched


class CustomAttributesStage(Stage):
    """Static attributes; existing sample values are not overwritten."""

    name = "custom_attributes"

    def __init__(self, attributes: dict[str, str], exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.attributes = dict(attributes)

    def apply(self, sample: Sample) -> list[Sample]:
        for key, value in self.attributes.items():
            sample.attributes.setdefault(key, value)
        return [sample]


class PrefixStage(Stage):
    """Prefix every surviving key."""

    name = "prefix"

    def __init__(self, prefix: str, exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.prefix = prefix

    def apply(self, sample: Sample) -> list[Sample]:
        sample.attributes = {f"{self.prefix}{key}": value for key, value in sample.items()}
        return [sample]
