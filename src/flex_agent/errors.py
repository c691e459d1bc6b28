"""
Error taxonomy for the collector.

Every failure is scoped to the smallest unit that caused it:

- FetchError: a source could not be read (network, process, database,
  JMX). The source is skipped and counted as a drop.
- ConfigError: a directive could not be compiled (bad regex, bad
  expression). Only the API that declared it is skipped.
- ComputeError: one attribute could not be computed (math, value
  parsing). Only that attribute is dropped.

A missing prior value for a rate/delta and a reached event limit are not
errors and have no exception type.
"""

from typing import Optional


class FlexError(Exception):
    """Base class for all collector errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


class FetchError(FlexError):
    """A source fetch failed (network, process, db, jmx, file)."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        timed_out: bool = False,
    ):
        super().__init__(message, source)
        self.timed_out = timed_out


class ConfigError(FlexError):
    """A directive is invalid and the declaring API cannot run."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        directive: Optional[str] = None,
    ):
        super().__init__(message, source)
        self.directive = directive

    def __str__(self) -> str:
        base = super().__str__()
        if self.directive:
            return f"{base} (directive: {self.directive})"
        return base


class ComputeError(FlexError):
    """An attribute could not be computed; the sample itself survives."""

    def __init__(self, message: str, attribute: Optional[str] = None):
        super().__init__(message)
        self.attribute = attribute
