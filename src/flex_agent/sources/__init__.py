"""Fetch sources - one fetcher per kind of raw output."""

from .base import Fetcher, FetchResult, SourceKind, detect_kind
from .registry import SourceRegistry, register_source, list_sources

# Import fetchers so they register themselves
from . import cache, database, file, jmx, shell, url  # noqa: F401

__all__ = [
    "Fetcher",
    "FetchResult",
    "SourceKind",
    "detect_kind",
    "SourceRegistry",
    "register_source",
    "list_sources",
]
