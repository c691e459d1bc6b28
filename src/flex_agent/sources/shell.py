"""Shell source - runs commands in a subprocess shell."""

import asyncio
import logging
from functools import partial
from typing import Optional

from ..config import (
    DEFAULT_DIAL_TIMEOUT_MS,
    DEFAULT_SHELL,
    Command,
    timeout_seconds,
)
from ..errors import FetchError
from ..templates import render
from .base import Fetcher, FetchResult, SourceKind
from .cache import read_datastore
from .registry import register_source

logger = logging.getLogger(__name__)


async def dial(address: str, network: str = "tcp", source: str = "") -> None:
    """Open and close a TCP connection; raise FetchError if it fails."""
    network = (network or "tcp").lower()
    if not network.startswith("tcp"):
        logger.debug(f"{source}: dial check skipped for network {network}")
        return
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise FetchError(f"invalid dial address '{address}'", source=source)
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host.strip("[]"), int(port)),
            timeout=DEFAULT_DIAL_TIMEOUT_MS / 1000.0,
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise FetchError(f"dial {address} failed: {e}", source=source) from e
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


async def run_process(
    argv: list[str],
    timeout: float,
    source: str = "",
    stdin: Optional[bytes] = None,
) -> str:
    """
    Run ``argv`` and return stdout.

    The process is killed when ``timeout`` seconds pass; only this call
    fails, sibling commands keep running.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise FetchError(f"cannot start {argv[0]}: {e}", source=source) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(stdin), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise FetchError(f"timed out after {timeout:.1f}s", source=source, timed_out=True) from e

    output = stdout.decode("utf-8", errors="replace")
    if process.returncode != 0 and not output.strip():
        message = stderr.decode("utf-8", errors="replace").strip() or f"exit status {process.returncode}"
        raise FetchError(message, source=source)
    return output


@register_source(SourceKind.SHELL)
class ShellFetcher(Fetcher):
    """
    Run an API's commands.

    Commands run in declared order, or all at once when
    ``commands_async`` is set (see ``Fetcher.run_units``).
    """

    async def fetch(self) -> list[FetchResult]:
        return await self.run_units([partial(self._run_unit, *unit) for unit in self._units()])

    def _units(self) -> list[tuple[str, Command, str]]:
        units = []
        for index, command in enumerate(self.api.commands):
            label = command.name or str(index)
            if command.cache:
                units.append((f"{self.name}:{label}", command, ""))
                continue
            runs = render(command.run, self.config)
            if not runs:
                logger.debug(f"{self.name}: command {label} has no lookup values, skipped")
            for run in runs:
                unit = f"{self.name}:{label}" if len(runs) == 1 else f"{self.name}:{label}:{run}"
                units.append((unit, command, run))
        return units

    async def _run_unit(self, unit: str, command: Command, run: str) -> FetchResult:
        return await self.guarded(unit, self._execute(unit, command, run), self.command_options(command), command)

    async def _execute(self, unit: str, command: Command, run: str):
        if command.cache:
            return read_datastore(self.config.datastore, command.cache, unit)
        if command.dial:
            await dial(command.dial, command.network, unit)
        shell = command.shell or self.api.shell or DEFAULT_SHELL
        timeout = timeout_seconds(command.timeout, self.api.timeout)
        logger.debug(f"{unit}: running '{run}' with {shell}")
        return await run_process([shell, "-c", run], timeout, source=unit)
