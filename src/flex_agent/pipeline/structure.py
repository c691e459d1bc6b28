"""Structural stages: strip nested keys, flatten, and sub-parse values."""

import logging
from typing import Any

from ..config import Parse
from ..sample import Sample, to_number
from .base import Exemptions, Stage, compile_regex

logger = logging.getLogger(__name__)

PATH_SEPARATOR = ">"


class StripKeysStage(Stage):
    """Remove keys (or nested paths such as ``a>b``) before flattening."""

    name = "strip_keys"

    def __init__(self, paths: list[str], exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.paths = [p.split(PATH_SEPARATOR) for p in paths if p]

    def apply(self, sample: Sample) -> list[Sample]:
        for path in self.paths:
            _strip(sample.attributes, path)
        return [sample]


def _strip(node: Any, path: list[str]):
    if isinstance(node, list):
        for item in node:
            _strip(item, path)
        return
    if not isinstance(node, dict):
        return
    head, rest = path[0], path[1:]
    if not rest:
        node.pop(head, None)
    elif head in node:
        _strip(node[head], rest)


class SampleKeysStage(Stage):
    """
    Move keys into samples of their own event type.

    ``sample_keys`` maps an event type to a key regex. Each key goes to
    the first event type whose regex matches it; the rest stay behind.
    The original sample is kept only if something is left in it.
    """

    name = "sample_keys"

    def __init__(self, groups: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.groups = [
            (event_type, compile_regex(expr, f"sample_keys.{event_type}", source))
            for event_type, expr in groups.items()
        ]

    def apply(self, sample: Sample) -> list[Sample]:
        grouped: dict[str, Sample] = {}
        kept: dict[str, Any] = {}
        for key, value in sample.items():
            target = None
            if not self.exempt(key):
                target = next((e for e, pattern in self.groups if pattern.search(key)), None)
            if target is None:
                kept[key] = value
            else:
                grouped.setdefault(target, Sample(target))[key] = value
        if not grouped:
            return [sample]
        sample.attributes = kept
        return ([sample] if kept else []) + list(grouped.values())


class FlattenStage(Stage):
    """
    Flatten nested values into dot-joined keys.

    Nested mappings always flatten inline. A list of scalars becomes
    indexed keys. A list of mappings expands into one child sample per
    element, carrying the parent's scalar attributes as ``parent.<key>``,
    unless its key is listed in ``lazy_flatten``, in which case it is
    flattened inline with indexed keys instead.
    """

    name = "flatten"

    def __init__(
        self,
        lazy_flatten: list[str],
        disable_parent_attr: bool = False,
        exempt: Exemptions | None = None,
    ):
        super().__init__(exempt)
        self.lazy_flatten = set(lazy_flatten)
        self.disable_parent_attr = disable_parent_attr

    def apply(self, sample: Sample) -> list[Sample]:
        if not any(isinstance(v, (dict, list)) for v in sample.attributes.values()):
            return [sample]

        flat: dict[str, Any] = {}
        nested: list[tuple[str, list[dict]]] = []
        for key, value in sample.attributes.items():
            self._flatten(key, value, flat, nested)
        sample.attributes = flat

        children: list[Sample] = []
        for key, items in nested:
            for item in items:
                child = Sample(event_type=sample.event_type)
                if not self.disable_parent_attr:
                    for parent_key, parent_value in flat.items():
                        child[f"parent.{parent_key}"] = parent_value
                for item_key, item_value in item.items():
                    child[str(item_key)] = item_value
                children.extend(self.apply(child))

        return ([sample] if len(sample) else []) + children

    def _flatten(self, key: str, value: Any, flat: dict, nested: list):
        if isinstance(value, dict):
            if not value:
                return
            for sub_key, sub_value in value.items():
                self._flatten(f"{key}.{sub_key}", sub_value, flat, nested)
        elif isinstance(value, list):
            has_objects = any(isinstance(v, dict) for v in value)
            if has_objects and key not in self.lazy_flatten:
                nested.append((key, [v for v in value if isinstance(v, dict)]))
                return
            for index, item in enumerate(value):
                self._flatten(f"{key}.{index}", item, flat, nested)
        else:
            flat[key] = value


class SubParseStage(Stage):
    """
    Re-parse string values of selected keys into further attributes.

    A key is selected when it passes the directive's test against
    ``parse.key``: ``contains``, ``match`` (exact), ``prefix`` or
    ``regex``. ``split_by`` is ``[pair_separator, key_value_separator,
    record_separator]`` with defaults ``,`` and ``=``. Without a record
    separator the pairs land on the same sample as ``<key>.<name>``; with
    one, every record becomes a new sample.
    """

    name = "sub_parse"

    def __init__(self, parses: list[Parse], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.parses = []
        for parse in parses:
            test = self._build_test(parse, source)
            if test is not None:
                self.parses.append((parse, test))

    @staticmethod
    def _build_test(parse: Parse, source: str):
        kind = parse.type.lower()
        if kind == "contains":
            return lambda key: parse.key in key
        if kind in ("match", "exact"):
            return lambda key: key == parse.key
        if kind in ("prefix", "hasprefix"):
            return lambda key: key.startswith(parse.key)
        if kind == "regex":
            pattern = compile_regex(parse.key, "sub_parse", source)
            return lambda key: bool(pattern.search(key))
        logger.warning(f"{source}: unknown sub_parse type '{parse.type}', ignoring")
        return None

    def apply(self, sample: Sample) -> list[Sample]:
        extra: list[Sample] = []
        for key in list(sample.keys()):
            if key not in sample or self.exempt(key):
                continue
            value = sample[key]
            if not isinstance(value, str):
                continue
            for parse, test in self.parses:
                if not test(key):
                    continue
                pair_sep = parse.split_by[0] if len(parse.split_by) > 0 else ","
                kv_sep = parse.split_by[1] if len(parse.split_by) > 1 else "="
                record_sep = parse.split_by[2] if len(parse.split_by) > 2 else ""

                if record_sep:
                    del sample[key]
                    for record in value.split(record_sep):
                        pairs = _pairs(record, pair_sep, kv_sep)
                        if not pairs:
                            continue
                        child = sample.copy()
                        for name, pair_value in pairs.items():
                            child[f"{key}.{name}"] = pair_value
                        extra.append(child)
                else:
                    pairs = _pairs(value, pair_sep, kv_sep)
                    if not pairs:
                        continue
                    del sample[key]
                    for name, pair_value in pairs.items():
                        sample[f"{key}.{name}"] = pair_value
                break

        if extra:
            # records replace the parent
            return extra
        return [sample]


def _pairs(text: str, pair_sep: str, kv_sep: str) -> dict[str, Any]:
    pairs = {}
    for chunk in text.split(pair_sep):
        if kv_sep not in chunk:
            continue
        name, _, value = chunk.partition(kv_sep)
        name = name.strip()
        if not name:
            continue
        value = value.strip()
        number = to_number(value)
        pairs[name] = value if number is None else number
    return pairs
