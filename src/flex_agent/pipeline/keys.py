"""Key stages: event type reclassification, keep/remove, rename."""

import re

from ..sample import Sample
from .base import Exemptions, Stage, check_replacement, compile_regex


def _matches(key: str, literal: str, pattern: re.Pattern) -> bool:
    return key == literal or bool(pattern.search(key))


class RenameSamplesStage(Stage):
    """
    Change a sample's event type when it matches a rule.

    A rule ``attr=regex`` tests the value of ``attr``; any other rule is
    a regex tested against the key names. The first matching rule wins.
    """

    name = "rename_samples"

    def __init__(self, rules: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.rules = []
        for rule, event_type in rules.items():
            attr, sep, expr = rule.partition("=")
            if sep and attr and expr:
                self.rules.append((attr, compile_regex(expr, "rename_samples", source), event_type))
            else:
                self.rules.append((None, compile_regex(rule, "rename_samples", source), event_type))

    def apply(self, sample: Sample) -> list[Sample]:
        for attr, pattern, event_type in self.rules:
            if attr is not None:
                if attr in sample and pattern.search(str(sample[attr])):
                    sample.event_type = event_type
                    break
            elif any(pattern.search(key) for key in sample.keys()):
                sample.event_type = event_type
                break
        return [sample]


class KeepKeysStage(Stage):
    """Allow-list: only keys equal to or matching an entry survive."""

    name = "keep_keys"

    def __init__(self, keys: list[str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.keys = [(k, compile_regex(k, "keep_keys", source)) for k in keys]

    def apply(self, sample: Sample) -> list[Sample]:
        sample.attributes = {
            key: value
            for key, value in sample.items()
            if any(_matches(key, literal, pattern) for literal, pattern in self.keys)
        }
        return [sample]


class RemoveKeysStage(Stage):
    """Deny-list: keys equal to or matching an entry are removed."""

    name = "remove_keys"

    def __init__(self, keys: list[str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.keys = [(k, compile_regex(k, "remove_keys", source)) for k in keys]

    def apply(self, sample: Sample) -> list[Sample]:
        sample.attributes = {
            key: value
            for key, value in sample.items()
            if not any(_matches(key, literal, pattern) for literal, pattern in self.keys)
        }
        return [sample]


class RenameKeysStage(Stage):
    """Regex find-and-replace on key names (replace_keys then rename_keys)."""

    name = "rename_keys"

    def __init__(self, rules: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.rules = []
        for p, r in rules.items():
            pattern = compile_regex(p, "rename_keys", source)
            self.rules.append((pattern, check_replacement(pattern, r, "rename_keys", source)))

    def apply(self, sample: Sample) -> list[Sample]:
        renamed = {}
        for key, value in sample.items():
            new_key = key
            if not self.exempt(key):
                for pattern, replacement in self.rules:
                    if pattern.search(new_key):
                        new_key = pattern.sub(replacement, new_key)
            renamed[new_key] = value
        sample.attributes = renamed
        return [sample]


class SnakeToCamelStage(Stage):
    """``bytes_in_total`` becomes ``bytesInTotal``."""

    name = "snake_to_camel"

    def apply(self, sample: Sample) -> list[Sample]:
        sample.attributes = {
            (key if self.exempt(key) else _camel(key)): value
            for key, value in sample.items()
        }
        return [sample]


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
