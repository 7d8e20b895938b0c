"""SQLite connection handling on top of aiosqlite."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator, Sequence
from typing import Any

import aiosqlite

from pivotorm.config import EngineConfig
from pivotorm.exceptions import ConnectionFailure, ConstraintViolation, OrmError

logger = logging.getLogger(__name__)

_MEMORY_URLS = {"sqlite::memory:", "sqlite://", "sqlite:///:memory:", ":memory:"}


class QueryResult:
    """Result from executing a SQL query.

    Rows are exposed as dictionaries keyed by the column names reported by
    the driver. Two selected columns with the same name collapse into one
    key (the later one wins), which is why joins select aliased columns.
    """

    def __init__(self, columns: list[str], rows: list[tuple[Any, ...]]) -> None:
        self._columns = columns
        self._rows = rows

    @property
    def columns(self) -> list[str]:
        """Get column names."""
        return list(self._columns)

    @property
    def rowcount(self) -> int:
        """Get the number of rows returned."""
        return len(self._rows)

    def all(self) -> list[dict[str, Any]]:
        """Get all rows as a list of dictionaries."""
        return [dict(zip(self._columns, row)) for row in self._rows]

    def first(self) -> dict[str, Any] | None:
        """Get the first row, or None if empty."""
        if not self._rows:
            return None
        return dict(zip(self._columns, self._rows[0]))

    def one(self) -> dict[str, Any]:
        """Get a single row, raising error if not exactly one row."""
        if len(self._rows) != 1:
            raise ValueError(f"Expected exactly 1 row, got {len(self._rows)}")
        return dict(zip(self._columns, self._rows[0]))

    def one_or_none(self) -> dict[str, Any] | None:
        """Get a single row or None."""
        if len(self._rows) > 1:
            raise ValueError(f"Expected at most 1 row, got {len(self._rows)}")
        return self.first()

    def is_empty(self) -> bool:
        """Check if result is empty."""
        return not self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.all())


class ConnectionPool:
    """A SQLite database handle.

    SQLite keeps a single shared connection so that in-memory databases are
    visible to every session created from the pool. The connection runs in
    autocommit mode; statements are serialized on aiosqlite's worker thread.
    """

    def __init__(self, connection: aiosqlite.Connection, config: EngineConfig) -> None:
        self._connection: aiosqlite.Connection | None = connection
        self._config = config

    @property
    def url(self) -> str:
        """Get the database URL."""
        return self._config.url

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._connection is None

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Execute a SQL query and return all of its rows."""
        connection = self._require_connection(sql)
        self._log(sql, params)
        try:
            async with connection.execute(sql, list(params or [])) as cursor:
                columns = _column_names(cursor)
                rows = await cursor.fetchall()
        except (aiosqlite.Error, ValueError) as exc:
            raise _translate_error(exc, sql) from exc
        return QueryResult(columns, [tuple(row) for row in rows])

    async def execute_statement(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Execute a statement that doesn't return rows. Returns rows affected."""
        connection = self._require_connection(sql)
        self._log(sql, params)
        try:
            async with connection.execute(sql, list(params or [])) as cursor:
                return cursor.rowcount
        except (aiosqlite.Error, ValueError) as exc:
            raise _translate_error(exc, sql) from exc

    async def stream(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        batch_size: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield rows from a forward-only cursor, fetching ``batch_size`` at a time.

        The cursor is closed when the generator finishes, fails, or is closed
        early with ``aclose()``. A driver failure while fetching is raised as
        :class:`ConnectionFailure` at the row where it happened.
        """
        connection = self._require_connection(sql)
        size = batch_size or self._config.stream_batch_size
        self._log(sql, params)
        try:
            cursor = await connection.execute(sql, list(params or []))
        except (aiosqlite.Error, ValueError) as exc:
            raise _translate_error(exc, sql) from exc

        logger.debug("Opened cursor (batch_size=%d)", size)
        try:
            columns = _column_names(cursor)
            while True:
                try:
                    rows = await cursor.fetchmany(size)
                except (aiosqlite.Error, ValueError) as exc:
                    raise _translate_error(exc, sql) from exc
                if not rows:
                    break
                for row in rows:
                    yield dict(zip(columns, row))
        finally:
            await _close_cursor(cursor)

    async def close(self) -> None:
        """Close the underlying connection."""
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        await connection.close()

    def _require_connection(self, sql: str) -> aiosqlite.Connection:
        if self._connection is None:
            raise ConnectionFailure(f"Connection is closed; cannot execute: {sql}")
        return self._connection

    def _log(self, sql: str, params: Sequence[Any] | None) -> None:
        if self._config.echo:
            logger.debug("%s %r", sql, list(params or []))


async def create_pool(config: EngineConfig) -> ConnectionPool:
    """Open a connection for ``config.url``."""
    database = database_path(config.url)
    try:
        connection = await aiosqlite.connect(database, isolation_level=None)
        if config.foreign_keys:
            async with connection.execute("PRAGMA foreign_keys = ON"):
                pass
    except (aiosqlite.Error, ValueError) as exc:
        raise ConnectionFailure(f"Could not open {config.url}: {exc}") from exc
    logger.debug("Connected to %s", config.url)
    return ConnectionPool(connection, config)


def database_path(url: str) -> str:
    """Map a ``sqlite:`` URL to the path sqlite3 expects.

    >>> database_path("sqlite::memory:")
    ':memory:'
    >>> database_path("sqlite:///app.db")
    'app.db'
    >>> database_path("sqlite:////var/data/app.db")
    '/var/data/app.db'
    """
    if url in _MEMORY_URLS:
        return ":memory:"
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
        if path:
            return path
    raise ValueError(f"Unsupported database URL: {url!r} (expected sqlite::memory: or sqlite:///path)")


def _column_names(cursor: aiosqlite.Cursor) -> list[str]:
    return [column[0] for column in cursor.description or ()]


def _translate_error(exc: BaseException, sql: str) -> OrmError:
    if isinstance(exc, aiosqlite.IntegrityError):
        return ConstraintViolation(f"{exc} (while executing: {sql})")
    return ConnectionFailure(f"{exc} (while executing: {sql})")


async def _close_cursor(cursor: aiosqlite.Cursor) -> None:
    try:
        await cursor.close()
    except (aiosqlite.Error, ValueError):
        # the connection already failed; keep the original error
        logger.warning("Failed to close cursor", exc_info=True)
    else:
        logger.debug("Closed cursor")
