"""Flex Agent - config driven metrics collection."""

__version__ = "0.1.0"
