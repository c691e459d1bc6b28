"""
Database source - runs SQL queries through a DB-API driver.

Drivers are imported on first use so an install without a given driver
still loads every other source.
"""

import asyncio
import importlib
import logging
import threading
from contextlib import closing
from functools import partial
from typing import Any, Callable

from ..config import Command, timeout_seconds
from ..errors import FetchError
from ..templates import render
from .base import Fetcher, FetchResult, SourceKind
from .registry import register_source

logger = logging.getLogger(__name__)

# database name -> (module, callable that opens a connection from a dsn)
_DRIVERS: dict[str, tuple[str, Callable[[Any, str], Any]]] = {}


def register_db_driver(name: str, module: str, connect: Callable[[Any, str], Any] = None):
    """
    Register a DB-API module under a database name.

    ``connect`` receives the imported module and the rendered dsn; the
    default calls ``module.connect(dsn)``.
    """
    _DRIVERS[name.lower()] = (module, connect or (lambda mod, dsn: mod.connect(dsn)))


register_db_driver("sqlite", "sqlite3", lambda mod, dsn: mod.connect(dsn, check_same_thread=False))
register_db_driver("sqlite3", "sqlite3", lambda mod, dsn: mod.connect(dsn, check_same_thread=False))
register_db_driver("postgres", "psycopg2")
register_db_driver("postgresql", "psycopg2")


def open_connection(database: str, dsn: str, source: str = ""):
    """Import the driver for ``database`` and connect to ``dsn``."""
    entry = _DRIVERS.get(database.lower())
    if entry is None:
        raise FetchError(f"unsupported database '{database}'", source=source)
    module_name, connect = entry
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise FetchError(f"driver {module_name} for {database} is not installed", source=source) from e
    try:
        return connect(module, dsn)
    except Exception as e:
        raise FetchError(f"cannot connect to {database}: {e}", source=source) from e


def run_query(connection, query: str, source: str = "") -> list[dict[str, Any]]:
    """Execute ``query`` and return its rows as dicts keyed by column name."""
    try:
        with closing(connection.cursor()) as cursor:
            cursor.execute(query)
            if cursor.description is None:
                return []
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, _plain(row))) for row in cursor.fetchall()]
    except Exception as e:
        raise FetchError(f"query failed: {e}", source=source) from e


def _plain(row) -> list[Any]:
    values = []
    for value in row:
        if isinstance(value, (bytes, bytearray, memoryview)):
            value = bytes(value).decode("utf-8", errors="replace")
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        values.append(value)
    return values


class QueryJob:
    """
    One query on its own connection.

    The worker thread that calls ``run`` opens, uses and closes the
    connection; other threads may only ``interrupt`` it. A query that
    outlives its timeout is aborted through the driver (``interrupt`` on
    sqlite3, ``cancel`` on psycopg2) without touching sibling queries.
    """

    def __init__(self, database: str, dsn: str, statements: list[str], source: str = ""):
        self.database = database
        self.dsn = dsn
        self.statements = statements
        self.source = source
        self._lock = threading.Lock()
        self._connection = None
        self._interrupted = False

    def run(self) -> list[dict[str, Any]]:
        connection = open_connection(self.database, self.dsn, self.source)
        with self._lock:
            self._connection = connection
            interrupted = self._interrupted
        try:
            if interrupted:
                raise FetchError("query interrupted before it started", source=self.source)
            rows: list[dict[str, Any]] = []
            for statement in self.statements:
                rows.extend(run_query(connection, statement, self.source))
            return rows
        finally:
            with self._lock:
                self._connection = None
            connection.close()

    def interrupt(self):
        with self._lock:
            self._interrupted = True
            connection = self._connection
        if connection is None:
            return
        abort = getattr(connection, "interrupt", None) or getattr(connection, "cancel", None)
        if abort is None:
            logger.warning(f"{self.source}: driver cannot abort a running query")
            return
        try:
            abort()
        except Exception as e:
            logger.debug(f"{self.source}: abort failed: {e}")


@register_source(SourceKind.DATABASE)
class DatabaseFetcher(Fetcher):
    """
    Run each entry of ``db_queries`` against ``database``/``db_conn``.

    Every query is its own dispatch unit with its own connection and
    produces one sample per row. Queries run in declared order, or
    concurrently with ``commands_async``.
    """

    async def fetch(self) -> list[FetchResult]:
        driver = self.api.db_driver or self.api.database
        dsns = render(self.api.db_conn, self.config)
        calls = []
        for dsn in dsns:
            for index, query in enumerate(self.api.db_queries):
                unit = self._unit(query, index)
                if len(dsns) > 1:
                    unit = f"{unit}:{dsn}"
                calls.append(partial(self._run_unit, unit, driver, dsn, query))
        return await self.run_units(calls)

    def _unit(self, query: Command, index: int) -> str:
        return f"{self.name}:{query.name or index}"

    async def _run_unit(self, unit: str, driver: str, dsn: str, query: Command) -> FetchResult:
        return await self.guarded(unit, self._query(unit, driver, dsn, query), self.command_options(query), query)

    async def _query(self, unit: str, driver: str, dsn: str, query: Command) -> list[dict[str, Any]]:
        timeout = timeout_seconds(query.timeout, self.api.timeout)
        job = QueryJob(driver, dsn, render(query.run, self.config), unit)
        try:
            return await asyncio.wait_for(asyncio.to_thread(job.run), timeout=timeout)
        except asyncio.TimeoutError as e:
            job.interrupt()
            raise FetchError(f"query timed out after {timeout:.1f}s", source=unit, timed_out=True) from e
