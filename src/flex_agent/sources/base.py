"""Base interface for all fetch sources."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..config import API, Command, Config
from ..errors import FetchError
from ..normalizer import SplitOptions

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """Which fetch target an API definition selects."""
    CACHE = "cache"
    FILE = "file"
    URL = "url"
    DATABASE = "database"
    JMX = "jmx"
    SHELL = "shell"


def detect_kind(api: API) -> Optional[SourceKind]:
    """Pick the source kind from whichever selector field is set."""
    if api.cache:
        return SourceKind.CACHE
    if api.file:
        return SourceKind.FILE
    if api.url:
        return SourceKind.URL
    if api.database or api.db_conn or api.db_queries:
        return SourceKind.DATABASE
    if api.jmx.domain or api.jmx.host or any(c.output.lower() == "jmx" for c in api.commands):
        return SourceKind.JMX
    if api.commands:
        return SourceKind.SHELL
    return None


@dataclass
class FetchResult:
    """Raw output (or error) of one dispatch unit."""

    unit: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    options: Optional[SplitOptions] = None
    event_type: str = ""
    custom_attributes: Optional[dict[str, str]] = None
    ignore_output: bool = False
    timed_out: bool = False


class Fetcher(ABC):
    """
    Abstract base class for all sources.

    Implement this interface to add a new fetch target.

    Example:
        @register_source(SourceKind.FILE)
        class FileFetcher(Fetcher):
            async def fetch(self) -> list[FetchResult]:
                ...
    """

    # Override in subclass - used for registration
    kind: SourceKind = SourceKind.SHELL

    def __init__(self, api: API, config: Config):
        self.api = api
        self.config = config
        self.name = api.name

    @abstractmethod
    async def fetch(self) -> list[FetchResult]:
        """
        Fetch raw output.

        Returns:
            One FetchResult per dispatch unit; failures are results with
            ``success=False``, never exceptions
        """
        pass

    async def close(self):
        """Clean up resources. Override if needed."""
        pass

    async def run_units(self, calls: list[Callable[[], Awaitable[FetchResult]]]) -> list[FetchResult]:
        """
        Run dispatch units in declared order, or all at once when the API
        sets ``commands_async``.

        Concurrency is the number of units unless the API's
        ``max_concurrency`` is lower. Results keep the declared order.
        """
        if not self.api.commands_async or len(calls) < 2:
            return [await call() for call in calls]

        limit = len(calls)
        if self.api.max_concurrency > 0:
            limit = min(limit, self.api.max_concurrency)
        semaphore = asyncio.Semaphore(limit)

        async def _bounded(call: Callable[[], Awaitable[FetchResult]]) -> FetchResult:
            async with semaphore:
                return await call()

        return list(await asyncio.gather(*(_bounded(c) for c in calls)))

    def default_options(self) -> SplitOptions:
        return SplitOptions.from_api(self.api)

    def command_options(self, command: Command) -> SplitOptions:
        return SplitOptions.from_command(command, self.api)

    async def guarded(
        self,
        unit: str,
        call: Awaitable[Any],
        options: Optional[SplitOptions] = None,
        command: Optional[Command] = None,
    ) -> FetchResult:
        """Await ``call`` and wrap its output or FetchError in a FetchResult."""
        start = time.time()
        result = FetchResult(
            unit=unit,
            success=False,
            options=options or self.default_options(),
            event_type=command.event_type if command else "",
            custom_attributes=command.custom_attributes if command else None,
            ignore_output=command.ignore_output if command else False,
        )
        try:
            result.output = await call
            result.success = True
        except FetchError as e:
            result.error = str(e)
            result.timed_out = e.timed_out
            logger.warning(f"Fetch failed for {unit}: {e}")
        result.duration_ms = (time.time() - start) * 1000
        return result
