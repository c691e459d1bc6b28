"""Cache source - reads output stored by an earlier API of the same config."""

import logging
from typing import Any

from ..errors import FetchError
from .base import Fetcher, FetchResult, SourceKind
from .registry import register_source

logger = logging.getLogger(__name__)


def read_datastore(datastore: dict[str, list[Any]], name: str, source: str = "") -> Any:
    """A stored entry; single-element entries are unwrapped."""
    if name not in datastore:
        raise FetchError(f"nothing stored under '{name}'", source=source)
    values = datastore[name]
    if len(values) == 1:
        return values[0]
    return values


@register_source(SourceKind.CACHE)
class CacheFetcher(Fetcher):
    """Replay output another API fetched earlier in this run."""

    async def fetch(self) -> list[FetchResult]:
        return [await self.guarded(self.name, self._read())]

    async def _read(self) -> Any:
        return read_datastore(self.config.datastore, self.api.cache, self.name)
