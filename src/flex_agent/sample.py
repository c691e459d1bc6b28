"""Runtime sample type flowing through the pipeline."""

from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class Sample:
    """
    A transient attribute map tagged with an event type.

    Created by the normalizer, mutated in place by each transform stage
    and consumed by the merger, metric parser and emitter.
    """

    event_type: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def __setitem__(self, key: str, value: Any):
        self.attributes[key] = value

    def __delitem__(self, key: str):
        del self.attributes[key]

    def __contains__(self, key: object) -> bool:
        return key in self.attributes

    def __iter__(self) -> Iterator[str]:
        return iter(self.attributes)

    def __len__(self) -> int:
        return len(self.attributes)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def items(self):
        return self.attributes.items()

    def keys(self):
        return self.attributes.keys()

    def copy(self) -> "Sample":
        """Shallow copy; attribute values are shared."""
        return Sample(event_type=self.event_type, attributes=dict(self.attributes))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the flat event form used for output."""
        data = dict(self.attributes)
        data["event_type"] = self.event_type
        return data


def to_number(value: Any):
    """Numeric form of ``value`` (int or float), or None if it has none."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        if number != number or number in (float("inf"), float("-inf")):
            return None
        return number
    return None
