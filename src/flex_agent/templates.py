"""Scratch-store placeholders: ``${var:name}``, ``${lookup:name}``, ``${lf:key}``."""

import itertools
import re

from .config import API, Config

VARIABLE = re.compile(r"\$\{var:([^}]+)\}")
LOOKUP = re.compile(r"\$\{lookup:([^}]+)\}")
LOOKUP_FILE = re.compile(r"\$\{lf:([^}]+)\}")


def substitute_variables(text: str, variables: dict[str, str]) -> str:
    """Replace ``${var:name}``; unknown variables are left as they are."""
    if not text or "${var:" not in text:
        return text
    return VARIABLE.sub(lambda m: variables.get(m.group(1), m.group(0)), text)


def expand_lookups(text: str, lookups: dict[str, list[str]]) -> list[str]:
    """
    Expand ``${lookup:name}`` into one string per stored value.

    Several different lookups expand to their cartesian product. A
    lookup with no stored values yields no strings at all, so the fetch
    that depends on it is skipped.
    """
    if not text or "${lookup:" not in text:
        return [text]
    names = list(dict.fromkeys(LOOKUP.findall(text)))
    choices = [lookups.get(name, []) for name in names]
    rendered = []
    for combination in itertools.product(*choices):
        values = dict(zip(names, combination))
        rendered.append(LOOKUP.sub(lambda m: str(values[m.group(1)]), text))
    return rendered


def render(text: str, config: Config) -> list[str]:
    """Variables first, then lookups."""
    return expand_lookups(substitute_variables(text, config.variable_store), config.lookup_store)


def reads_scratch(api: API) -> bool:
    """True when the API consumes values written by earlier APIs."""
    if api.cache or any(c.cache for c in api.commands):
        return True
    texts = [api.url, api.file, api.payload, api.db_conn, *api.headers.values()]
    texts.extend(c.run for c in api.commands)
    texts.extend(q.run for q in api.db_queries)
    return any("${var:" in t or "${lookup:" in t for t in texts if t)
