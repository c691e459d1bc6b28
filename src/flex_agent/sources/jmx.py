"""JMX source - queries MBeans through the nrjmx helper binary."""

import json
import logging
import os
from functools import partial
from typing import Any

from ..config import DEFAULT_JMX_PATH, JMX, Command, resolve_jmx, timeout_seconds
from ..errors import FetchError
from ..templates import render
from .base import Fetcher, FetchResult, SourceKind
from .registry import register_source
from .shell import run_process

logger = logging.getLogger(__name__)


def nrjmx_argv(jmx: JMX, binary: str = "") -> list[str]:
    """Build the nrjmx command line for one set of connection settings."""
    binary = binary or os.environ.get("FLEX_NRJMX", "") or os.path.join(DEFAULT_JMX_PATH, "nrjmx")
    argv = [
        binary,
        "-hostname", jmx.host,
        "-port", jmx.port,
        "-username", jmx.user,
        "-password", jmx.password,
    ]
    if jmx.key_store and jmx.key_store_pass and jmx.trust_store and jmx.trust_store_pass:
        argv += [
            "-keyStore", jmx.key_store,
            "-keyStorePassword", jmx.key_store_pass,
            "-trustStore", jmx.trust_store,
            "-trustStorePassword", jmx.trust_store_pass,
        ]
    return argv


def bean_query(query: str, domain: str) -> str:
    """Prefix a bean query with its domain unless it already names one."""
    if domain and ":" not in query:
        return f"{domain}:{query}"
    return query


def parse_nrjmx_output(text: str, source: str = "") -> dict[str, Any]:
    """Merge the JSON objects nrjmx prints (one per query) into one dict."""
    merged: dict[str, Any] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"{source}: ignoring nrjmx line {line[:80]!r}")
            continue
        if isinstance(data, dict):
            merged.update(data)
    if not merged and text.strip():
        raise FetchError("nrjmx returned no parsable output", source=source)
    return merged


@register_source(SourceKind.JMX)
class JmxFetcher(Fetcher):
    """
    Send each command's ``run`` as a bean query to nrjmx.

    Connection settings resolve command first, then API, then global,
    then the built-in defaults.
    """

    async def fetch(self) -> list[FetchResult]:
        calls = []
        for index, command in enumerate(self.api.commands):
            label = command.name or str(index)
            queries = render(command.run, self.config)
            for query in queries:
                unit = f"{self.name}:{label}" if len(queries) == 1 else f"{self.name}:{label}:{query}"
                calls.append(partial(self._run_unit, unit, command, query))
        return await self.run_units(calls)

    async def _run_unit(self, unit: str, command: Command, query: str) -> FetchResult:
        return await self.guarded(unit, self._query(unit, command, query), self.command_options(command), command)

    async def _query(self, unit: str, command: Command, query: str) -> dict[str, Any]:
        jmx = resolve_jmx(self.api, command, self.config.global_)
        stdin = (bean_query(query, jmx.domain) + "\n").encode("utf-8")
        timeout = timeout_seconds(command.timeout, self.api.timeout)
        output = await run_process(nrjmx_argv(jmx), timeout, source=unit, stdin=stdin)
        return parse_nrjmx_output(output, unit)
