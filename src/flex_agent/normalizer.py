"""Raw output normalizer: turns fetched text or structures into samples."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import API, DEFAULT_SPLIT_BY, Command, RegMatch
from .errors import ConfigError
from .sample import Sample

logger = logging.getLogger(__name__)

HORIZONTAL = "horizontal"
SPLIT_ID = "split.id"


@dataclass
class SplitOptions:
    """Row/column shaping for one unit of raw output."""

    split: str = ""  # "horizontal" for tables, anything else is vertical
    split_by: str = ""
    regex: bool = False
    row_header: int = 0
    row_start: int = 0
    set_header: list[str] = field(default_factory=list)
    header_split_by: str = ""
    header_regex: bool = False
    group_by: str = ""
    line_start: int = 0
    line_end: int = 0
    split_output: str = ""
    regex_matches: list[RegMatch] = field(default_factory=list)
    output: str = ""  # json, raw or empty for auto-detection

    def __post_init__(self):
        self._patterns: dict[str, re.Pattern] = {}

    def pattern(self, expression: str, directive: str) -> re.Pattern:
        """``expression`` compiled once for the life of these options."""
        compiled = self._patterns.get(expression)
        if compiled is None:
            compiled = self._patterns[expression] = _compile(expression, directive)
        return compiled

    @classmethod
    def from_api(cls, api: API) -> "SplitOptions":
        return cls(
            split=api.split,
            split_by=api.split_by,
            regex=api.regex,
            row_header=api.row_header,
            row_start=api.row_start,
            set_header=list(api.set_header),
        )

    @classmethod
    def from_command(cls, command: Command, api: Optional[API] = None) -> "SplitOptions":
        """Command options, falling back to the API's for unset fields."""
        base = cls.from_api(api) if api is not None else cls()
        return cls(
            split=command.split or base.split,
            split_by=command.split_by or base.split_by,
            regex=command.regex_match or base.regex,
            row_header=command.row_header or base.row_header,
            row_start=command.row_start or base.row_start,
            set_header=list(command.set_header) or base.set_header,
            header_split_by=command.header_split_by,
            header_regex=command.header_regex_match,
            group_by=command.group_by,
            line_start=command.line_start,
            line_end=command.line_end,
            split_output=command.split_output,
            regex_matches=list(command.regex_matches),
            output=command.output.lower(),
        )

    def is_horizontal(self) -> bool:
        return self.split.lower() == HORIZONTAL

    def has_text_layout(self) -> bool:
        return bool(self.split or self.split_by or self.split_output or self.regex_matches)


def normalize(raw: Any, options: SplitOptions, api: API, event_type: str = "") -> list[Sample]:
    """
    Dispatch raw output to the structured or text splitter.

    Strings that look like JSON are decoded unless the output is forced
    to ``raw`` or a text layout is configured.
    """
    event_type = event_type or api.default_event_type()
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        if options.output != "raw" and (options.output == "json" or not options.has_text_layout()):
            decoded = _maybe_json(raw, forced=options.output == "json")
            if decoded is not None:
                return structured_samples(decoded, api, event_type)
        return split_output(raw, options, event_type)

    return structured_samples(raw, api, event_type)


def _maybe_json(text: str, forced: bool = False) -> Any:
    stripped = text.strip()
    if not forced and not stripped.startswith(("{", "[")):
        return None
    try:
        return json.loads(stripped)
    except ValueError:
        if forced:
            logger.warning("Output declared as json could not be decoded, splitting as text")
        return None


# =============================================================================
# Structured output
# =============================================================================

def structured_samples(data: Any, api: API, event_type: str = "") -> list[Sample]:
    """One sample per record of decoded JSON-like output."""
    event_type = event_type or api.default_event_type()
    data = _navigate(data, api.start_key)

    if isinstance(data, list):
        return [_record(item, event_type) for item in data if item is not None]

    if isinstance(data, dict):
        if api.split_objects:
            samples = []
            for key, value in data.items():
                if isinstance(value, dict):
                    attributes = dict(value)
                    attributes[SPLIT_ID] = key
                    samples.append(Sample(event_type, attributes))
                else:
                    logger.debug(f"{api.name}: split_objects skipped non-object '{key}'")
            return samples
        return [Sample(event_type, dict(data))]

    if data is None:
        return []
    return [Sample(event_type, {"value": data})]


def _navigate(data: Any, path: list[str]) -> Any:
    for key in path:
        if isinstance(data, dict):
            data = data.get(key)
        elif isinstance(data, list):
            data = [item.get(key) for item in data if isinstance(item, dict) and key in item]
        else:
            return None
    return data


def _record(item: Any, event_type: str) -> Sample:
    if isinstance(item, dict):
        return Sample(event_type, dict(item))
    return Sample(event_type, {"value": item})


# =============================================================================
# Text output
# =============================================================================

def split_output(text: str, options: SplitOptions, event_type: str) -> list[Sample]:
    """Split raw text into samples using the vertical or horizontal layout."""
    lines = text.splitlines()
    end = options.line_end if options.line_end > 0 else None
    lines = lines[options.line_start:end]
    text = "\n".join(lines)

    if options.regex_matches:
        chunks = [text]
        if options.split_output:
            chunks = _split_chunks(text, options.pattern(options.split_output, "split_output"))
        samples = []
        for chunk in chunks:
            samples.extend(_regex_match_samples(chunk, options, event_type))
        return samples

    if options.group_by:
        records = [block for block in text.split(options.group_by) if block.strip()]
    else:
        records = None

    if options.is_horizontal():
        if records is not None:
            lines = [" ".join(line.strip() for line in block.splitlines() if line.strip()) for block in records]
        return _horizontal(lines, options, event_type)

    if records is not None:
        samples = [_vertical(block.splitlines(), options, event_type) for block in records]
        return [s for s in samples if len(s)]
    sample = _vertical(lines, options, event_type)
    return [sample] if len(sample) else []


def _compile(pattern: str, directive: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"invalid regex '{pattern}': {e}", directive=directive) from e


def tokenize(line: str, delimiter: str, regex: bool, pattern: Optional[re.Pattern] = None) -> list[str]:
    """Split one line; blank or whitespace delimiters collapse runs of spaces."""
    if regex and delimiter:
        pattern = pattern or _compile(delimiter, "split_by")
        return [t.strip() for t in pattern.split(line.strip()) if t.strip()]
    if not delimiter or delimiter.isspace():
        return line.split()
    return [t.strip() for t in line.split(delimiter)]


def _vertical(lines: list[str], options: SplitOptions, event_type: str) -> Sample:
    delimiter = options.split_by or DEFAULT_SPLIT_BY
    pattern = options.pattern(delimiter, "split_by") if options.regex else None
    sample = Sample(event_type)
    for line in lines:
        if pattern is not None:
            parts = pattern.split(line, maxsplit=1)
        else:
            parts = line.split(delimiter, 1)
        if len(parts) != 2:
            continue
        key, value = parts[0].strip(), parts[1].strip()
        if key:
            sample[key] = value
    return sample


def _horizontal(lines: list[str], options: SplitOptions, event_type: str) -> list[Sample]:
    header_delimiter = options.header_split_by or options.split_by
    header_regex = options.header_regex if options.header_split_by else options.regex

    if options.set_header:
        header = list(options.set_header)
        start = options.row_start
    else:
        if options.row_header >= len(lines):
            logger.debug("Header row is beyond the end of the output")
            return []
        header_pattern = options.pattern(header_delimiter, "header_split_by") if header_regex and header_delimiter else None
        header = tokenize(lines[options.row_header], header_delimiter, header_regex, header_pattern)
        start = options.row_start if options.row_start > options.row_header else options.row_header + 1

    if not header:
        return []

    samples = []
    row_pattern = options.pattern(options.split_by, "split_by") if options.regex and options.split_by else None
    for line in lines[start:]:
        if not line.strip():
            continue
        tokens = tokenize(line, options.split_by, options.regex, row_pattern)
        if not tokens:
            continue
        if len(tokens) > len(header):
            joiner = " " if not options.split_by or options.split_by.isspace() or options.regex else options.split_by
            tokens = tokens[:len(header) - 1] + [joiner.join(tokens[len(header) - 1:])]
        sample = Sample(event_type)
        for column, value in zip(header, tokens):
            sample[column] = value
        samples.append(sample)
    return samples


def _split_chunks(text: str, pattern: re.Pattern) -> list[str]:
    """Split text so that every match of ``pattern`` starts a new chunk."""
    starts = [m.start() for m in pattern.finditer(text)]
    if not starts:
        return [text] if text.strip() else []
    bounds = starts + [len(text)]
    return [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]


def _regex_match_samples(text: str, options: SplitOptions, event_type: str) -> list[Sample]:
    """
    Build samples from regex captures.

    ``keys`` name the groups of the first match and fill one sample;
    ``keys_multi`` name the groups of every match, one sample each.
    """
    single = Sample(event_type)
    multi: list[Sample] = []
    for match in options.regex_matches:
        pattern = options.pattern(match.expression, "regex_matches")
        if match.keys:
            found = pattern.search(text)
            if found is not None:
                groups = found.groups() or (found.group(0),)
                for key, value in zip(match.keys, groups):
                    if value is not None:
                        single[key] = value.strip()
        if match.keys_multi:
            for found in pattern.finditer(text):
                groups = found.groups() or (found.group(0),)
                sample = Sample(event_type)
                for key, value in zip(match.keys_multi, groups):
                    if value is not None:
                        sample[key] = value.strip()
                if len(sample):
                    multi.append(sample)
    return ([single] if len(single) else []) + multi
