"""Loading related records through a pivot table, eagerly or from a cursor."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Iterable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pivotorm.hydration import hydrate_related
from pivotorm.query import PivotSelect

if TYPE_CHECKING:
    from pivotorm.base import Base
    from pivotorm.engine import ConnectionPool
    from pivotorm.relationships import ManyToMany

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="Base")


class RecordCursor(Generic[T]):
    """Forward-only, single-pass async sequence of hydrated records.

    The database cursor is opened on the first advance and closed when the
    rows run out, when hydration or the driver fails, or when the caller
    leaves an ``async with`` block early (or calls :meth:`aclose`).

    Example:
        >>> async with session.related(user, "things").cursor() as things:
        ...     async for thing in things:
        ...         if thing.title == "stop":
        ...             break  # cursor closed on exit from the block
    """

    def __init__(
        self,
        open_rows: Callable[[], AsyncGenerator[dict[str, Any], None]],
        hydrate_row: Callable[[dict[str, Any]], T],
    ) -> None:
        self._open_rows = open_rows
        self._hydrate_row = hydrate_row
        self._rows: AsyncGenerator[dict[str, Any], None] | None = None
        self._iterated = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> RecordCursor[T]:
        if self._iterated:
            raise RuntimeError("RecordCursor is single-pass and has already been iterated")
        self._iterated = True
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        if self._rows is None:
            self._rows = self._open_rows()

        try:
            row = await anext(self._rows)
            return self._hydrate_row(row)
        except BaseException:
            # exhaustion, driver failure and bad rows all end the cursor
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the database cursor. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._rows is not None:
            await self._rows.aclose()

    async def __aenter__(self) -> RecordCursor[T]:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.aclose()


class ManyToManyLoader:
    """Executes the pivot join for one association.

    ``load_all`` and ``load_streaming`` issue the same :class:`PivotSelect`;
    they differ only in how rows are pulled from the driver.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        descriptor: ManyToMany,
        *,
        include_deleted: bool = False,
        order: Iterable[tuple[str, str]] = (),
    ) -> None:
        self._pool = pool
        self.descriptor = descriptor
        self._include_deleted = include_deleted
        self._order = tuple(order)

    def statement(self, owner_keys: Iterable[Any]) -> PivotSelect:
        return PivotSelect.build(
            self.descriptor,
            owner_keys,
            include_deleted=self._include_deleted,
            order=self._order,
        )

    async def load_all(self, owner_key: Any) -> list[Base]:
        """Fetch every related record for ``owner_key`` in one round trip."""
        statement = self.statement([owner_key])
        sql, params = statement.to_sql()
        result = await self._pool.execute(sql, params)
        return [hydrate_related(row, statement) for row in result.all()]

    async def load_many(self, owner_keys: Iterable[Any]) -> dict[Any, list[Base]]:
        """Fetch related records for several owners at once, grouped by owner key."""
        keys = list(dict.fromkeys(owner_keys))
        grouped: dict[Any, list[Base]] = {key: [] for key in keys}
        if not keys:
            return grouped

        statement = self.statement(keys)
        sql, params = statement.to_sql()
        result = await self._pool.execute(sql, params)
        for row in result.all():
            grouped[row[statement.owner_alias]].append(hydrate_related(row, statement))
        return grouped

    def load_streaming(self, owner_key: Any, batch_size: int | None = None) -> RecordCursor[Base]:
        """Stream related records for ``owner_key`` from a database cursor.

        Nothing is executed until the first advance.
        """
        statement = self.statement([owner_key])
        sql, params = statement.to_sql()
        logger.debug(
            "Streaming %s.%s for %s=%r",
            self.descriptor.owner.__name__,
            self.descriptor.pivot_table,
            self.descriptor.parent_key,
            owner_key,
        )

        def open_rows() -> AsyncGenerator[dict[str, Any], None]:
            return self._pool.stream(sql, params, batch_size)

        return RecordCursor(open_rows, lambda row: hydrate_related(row, statement))
