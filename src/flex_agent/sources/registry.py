"""Source registry - maps each SourceKind to its fetcher."""

from typing import Type, Optional
import logging

from ..config import API, Config
from .base import Fetcher, SourceKind, detect_kind

logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Registry for fetcher classes.

    Fetchers register themselves here and are instantiated by kind.
    """

    _sources: dict[SourceKind, Type[Fetcher]] = {}

    @classmethod
    def register(cls, kind: SourceKind, fetcher_class: Type[Fetcher]):
        """Register a fetcher class."""
        cls._sources[kind] = fetcher_class
        logger.debug(f"Registered source: {kind.value}")

    @classmethod
    def get(cls, kind: SourceKind) -> Optional[Type[Fetcher]]:
        """Get a fetcher class by kind."""
        return cls._sources.get(kind)

    @classmethod
    def create(cls, api: API, config: Config) -> Optional[Fetcher]:
        """Create the fetcher for an API definition."""
        kind = detect_kind(api)
        if kind is None:
            logger.error(f"API {api.name or '<unnamed>'} has no source selector")
            return None
        fetcher_class = cls._sources.get(kind)
        if fetcher_class is None:
            logger.error(f"Unknown source kind: {kind.value}")
            return None
        return fetcher_class(api, config)

    @classmethod
    def list_kinds(cls) -> list[str]:
        """List all registered source kinds."""
        return [kind.value for kind in cls._sources]

    @classmethod
    def is_registered(cls, kind: SourceKind) -> bool:
        return kind in cls._sources


def register_source(kind: SourceKind):
    """
    Decorator to register a fetcher class.

    Usage:
        @register_source(SourceKind.URL)
        class UrlFetcher(Fetcher):
            ...
    """
    def decorator(cls: Type[Fetcher]):
        cls.kind = kind
        SourceRegistry.register(kind, cls)
        return cls
    return decorator


def list_sources() -> list[str]:
    """List all registered source kinds."""
    return SourceRegistry.list_kinds()
