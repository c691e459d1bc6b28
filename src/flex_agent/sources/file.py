"""File source - reads a local file."""

import asyncio
import logging
from pathlib import Path

from ..errors import FetchError
from ..templates import render
from .base import Fetcher, FetchResult, SourceKind
from .registry import register_source

logger = logging.getLogger(__name__)


@register_source(SourceKind.FILE)
class FileFetcher(Fetcher):
    """
    Read a file from disk.

    The path may use ``${var:...}`` and ``${lookup:...}``; every rendered
    path is its own dispatch unit.
    """

    async def fetch(self) -> list[FetchResult]:
        paths = render(self.api.file, self.config)
        results = []
        for path in paths:
            unit = self.name if len(paths) == 1 else f"{self.name}:{path}"
            results.append(await self.guarded(unit, self._read(path)))
        return results

    async def _read(self, path: str) -> str:
        try:
            return await asyncio.to_thread(Path(path).read_text)
        except (OSError, UnicodeDecodeError) as e:
            raise FetchError(f"cannot read {path}: {e}", source=self.name) from e
