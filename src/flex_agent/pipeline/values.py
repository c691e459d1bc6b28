"""Value shaping and arithmetic stages."""

import logging
import re
from typing import Any

from ..errors import ComputeError, ConfigError
from ..expression import Expression
from ..sample import Sample, to_number
from .base import Exemptions, Stage, check_replacement, compile_regex

logger = logging.getLogger(__name__)

NUMBER = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")
VALUE_PLACEHOLDER = "${value}"
MUTATION_SEPARATOR = "=>"


def _numeric_or_text(value: str) -> Any:
    number = to_number(value)
    return value if number is None else number


class ValueParserStage(Stage):
    """
    Rewrite values of matching keys with a regex capture.

    The first group (or the whole match when the pattern has no group)
    replaces the value. A value that does not match is a compute error
    and only that attribute is dropped.
    """

    name = "value_parser"

    def __init__(self, rules: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.source = source
        self.rules = [
            (compile_regex(k, "value_parser", source), compile_regex(v, "value_parser", source))
            for k, v in rules.items()
        ]

    def apply(self, sample: Sample) -> list[Sample]:
        for key in list(sample.keys()):
            if self.exempt(key):
                continue
            for key_pattern, value_pattern in self.rules:
                if not key_pattern.search(key):
                    continue
                try:
                    sample[key] = self._parse(key, sample[key], value_pattern)
                except ComputeError as e:
                    logger.debug(f"{self.source}: value_parser dropped {key}: {e}")
                    del sample[key]
                break
        return [sample]

    @staticmethod
    def _parse(key: str, value: Any, pattern: re.Pattern) -> Any:
        match = pattern.search(str(value))
        if match is None:
            raise ComputeError(f"'{value}' does not match {pattern.pattern}", attribute=key)
        found = match.group(1) if pattern.groups else match.group(0)
        if found is None:
            raise ComputeError(f"empty capture for {pattern.pattern}", attribute=key)
        return _numeric_or_text(found)


class ValueTransformerStage(Stage):
    """
    Mutate values of matching keys.

    A rule ``find=>replace`` is a regex substitution on the value; any
    other rule is a template where ``${value}`` stands for the current
    value.
    """

    name = "value_transformer"

    def __init__(self, rules: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.rules = []
        for key, rule in rules.items():
            key_pattern = compile_regex(key, "value_transformer", source)
            find, sep, replace = rule.partition(MUTATION_SEPARATOR)
            if sep:
                find_pattern = compile_regex(find, "value_transformer", source)
                check_replacement(find_pattern, replace, f"value_transformer.{key}", source)
                self.rules.append((key_pattern, find_pattern, replace))
            else:
                self.rules.append((key_pattern, None, rule))

    def apply(self, sample: Sample) -> list[Sample]:
        for key in list(sample.keys()):
            if self.exempt(key):
                continue
            for key_pattern, find, template in self.rules:
                if not key_pattern.search(key):
                    continue
                text = str(sample[key])
                if find is not None:
                    text = find.sub(template, text)
                else:
                    text = template.replace(VALUE_PLACEHOLDER, text)
                sample[key] = _numeric_or_text(text)
                break
        return [sample]


class _StringValueStage(Stage):
    """Applies ``transform`` to every non-exempt string value."""

    def transform(self, value: str) -> Any:
        raise NotImplementedError

    def apply(self, sample: Sample) -> list[Sample]:
        for key, value in sample.items():
            if isinstance(value, str) and not self.exempt(key):
                sample.attributes[key] = self.transform(value)
        return [sample]


class ToLowerStage(_StringValueStage):
    name = "to_lower"

    def transform(self, value: str) -> Any:
        return value.lower()


class ConvertSpaceStage(_StringValueStage):
    name = "convert_space"

    def __init__(self, replacement: str, exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.replacement = replacement

    def transform(self, value: str) -> Any:
        return value.replace(" ", self.replacement)


class PercToDecimalStage(_StringValueStage):
    """``"45.5%"`` becomes ``45.5``."""

    name = "perc_to_decimal"

    def transform(self, value: str) -> Any:
        text = value.strip()
        if not text.endswith("%"):
            return value
        number = to_number(text.rstrip("%"))
        return value if number is None else number


class PluckNumbersStage(_StringValueStage):
    """``"took 12.5ms"`` becomes ``12.5``; values without a number are kept."""

    name = "pluck_numbers"

    def transform(self, value: str) -> Any:
        if to_number(value) is not None:
            return to_number(value)
        match = NUMBER.search(value)
        if match is None:
            return value
        return to_number(match.group(0))


class MathStage(Stage):
    """Computed attributes; a failed expression drops only its own attribute."""

    name = "math"

    def __init__(self, expressions: dict[str, str], source: str = "", exempt: Exemptions | None = None):
        super().__init__(exempt)
        self.source = source
        self.expressions: list[tuple[str, Expression]] = []
        for key, text in expressions.items():
            try:
                self.expressions.append((key, Expression(text)))
            except ConfigError as e:
                e.source = source
                e.directive = f"math.{key}"
                raise

    def apply(self, sample: Sample) -> list[Sample]:
        for key, expression in self.expressions:
            if self.exempt(key):
                continue
            try:
                sample[key] = expression.evaluate(sample)
            except ComputeError as e:
                logger.debug(f"{self.source}: math {key} skipped: {e}")
        return [sample]
