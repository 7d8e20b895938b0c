"""Async session for database operations with Unit of Work pattern."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pivotorm.engine import QueryResult
from pivotorm.exceptions import NotFound, RelationshipError
from pivotorm.hydration import hydrate
from pivotorm.loading import ManyToManyLoader, RecordCursor
from pivotorm.mixins import utcnow
from pivotorm.query import (
    ColumnMap,
    DeleteStatement,
    InsertStatement,
    SelectStatement,
    UpdateStatement,
    WhereClause,
    delete,
    insert,
    update,
)
from pivotorm.relationships import LoadOption

if TYPE_CHECKING:
    from pivotorm.base import Base
    from pivotorm.engine import ConnectionPool
    from pivotorm.relationships import ManyToMany

T = TypeVar("T", bound="Base")

logger = logging.getLogger(__name__)


_OPERATORS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "ne": "!=",
    "like": "LIKE",
    "in": "IN",
    "notin": "NOT IN",
    "isnull": "IS NULL",
    "contains": "LIKE",
    "startswith": "LIKE",
    "endswith": "LIKE",
}


def _parse_filter_key(key: str) -> tuple[str, str]:
    """Parse Django-style filter key into column and operator.

    >>> _parse_filter_key("title__startswith")
    ('title', 'startswith')
    >>> _parse_filter_key("title")
    ('title', 'eq')
    """
    if "__" in key:
        col, op = key.rsplit("__", 1)
        if op in _OPERATORS:
            return col, op
    return key, "eq"


def _build_filter_sql(col: str, op: str, value: Any) -> tuple[str, list[Any]]:
    """Build SQL for a single filter condition."""
    if op == "eq":
        if value is None:
            return f"{col} IS NULL", []
        return f"{col} = ?", [value]

    elif op in ("in", "notin"):
        values = list(value)
        if not values:
            return ("1 = 0", []) if op == "in" else ("1 = 1", [])
        placeholders = ", ".join("?" for _ in values)
        return f"{col} {_OPERATORS[op]} ({placeholders})", values

    elif op == "isnull":
        return f"{col} IS NULL" if value else f"{col} IS NOT NULL", []

    elif op == "contains":
        return f"{col} LIKE ?", [f"%{value}%"]

    elif op == "startswith":
        return f"{col} LIKE ?", [f"{value}%"]

    elif op == "endswith":
        return f"{col} LIKE ?", [f"%{value}"]

    if value is None and op == "ne":
        return f"{col} IS NOT NULL", []
    return f"{col} {_OPERATORS[op]} ?", [value]


def _require_pk(model: type[Base]) -> str:
    pk_col = model.__primary_key__
    if pk_col is None:
        raise ValueError(f"{model.__name__} has no primary key")
    return pk_col


def _identity(instance: Base) -> Any:
    """The key a persisted instance was loaded (or last saved) under."""
    pk_col = _require_pk(type(instance))
    original = instance.get_original()
    if pk_col in original:
        return original[pk_col]
    return instance.__dict__.get(pk_col)


def _require_soft_delete(instance: Base) -> None:
    if not getattr(type(instance), "__soft_delete__", False):
        raise TypeError(
            f"{type(instance).__name__} doesn't support soft delete. "
            "Add SoftDeleteMixin to enable soft delete."
        )


class AsyncSession:
    """Async database session with Unit of Work pattern.

    Fluent API:
        >>> thing = await session.insert(Thing(id=3000, title="Thing 3000"))
        >>> things = await session.query(Thing).filter(title__startswith="Thing").all()
        >>> thing.title = "Renamed"
        >>> await session.save(thing)

    Related records through a pivot table:
        >>> things = await session.related(user, "things").all()
        >>> async with session.related(user, "things").cursor() as cursor:
        ...     async for thing in cursor:
        ...         ...

    Traditional:
        >>> session.add(thing)
        >>> await session.commit()

    Every loader call hydrates fresh instances; there is no identity map, so
    two loads of the same row give two independent records.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        self._pending_new: list[Base] = []
        self._pending_delete: list[Base] = []

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    async def __aenter__(self) -> AsyncSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is not None:
            await self.rollback()

    # ========== Fluent/Simple API ==========

    async def insert(self, instance: T) -> T:
        """Insert a model and return it with its primary key set.

        Example:
            >>> user = await session.insert(User(id=1000, name="Owner"))
        """
        await self._insert_instance(instance)
        return instance

    async def insert_all(self, instances: list[T]) -> list[T]:
        """Insert several models, in order.

        Example:
            >>> things = await session.insert_all([Thing(title="a"), Thing(title="b")])
        """
        for instance in instances:
            await self._insert_instance(instance)
        return instances

    async def get(
        self, model: type[T], id: Any, *, include_deleted: bool = False
    ) -> T | None:
        """Get a model by primary key.

        For models with SoftDeleteMixin, soft-deleted records are excluded
        by default. Use include_deleted=True to include them.
        """
        pk = _require_pk(model)
        query = self.query(model).filter(**{pk: id})
        if include_deleted:
            query = query.with_deleted()
        return await query.first()

    async def get_or_raise(self, model: type[T], id: Any, *, include_deleted: bool = False) -> T:
        """Get a model by primary key, raise :class:`NotFound` if absent.

        Example:
            >>> user = await session.get_or_raise(User, 1000)
        """
        instance = await self.get(model, id, include_deleted=include_deleted)
        if instance is None:
            raise NotFound(model, id)
        return instance

    find_or_fail = get_or_raise

    def query(self, model: type[T]) -> Query[T]:
        """Create a fluent query for a model.

        Example:
            >>> things = await session.query(Thing).filter(id__gt=2000).all()
        """
        return Query(self, model)

    async def save(self, instance: T) -> T:
        """Persist ``instance``.

        New instances are inserted. Loaded instances write only their dirty
        columns, keyed by the identity they were loaded under. If that row
        no longer exists, :class:`NotFound` is raised and the instance stays
        dirty.

        Example:
            >>> thing.title = "Mutated"
            >>> await session.save(thing)
            >>> thing.is_dirty()
            False
        """
        if not instance.exists:
            await self._insert_instance(instance)
            return instance

        cls = type(instance)
        pk_col = _require_pk(cls)
        key = _identity(instance)

        dirty = instance.get_dirty()
        if not dirty:
            # nothing to write, but the row has to be there
            if not await self.query(cls).with_deleted().filter(**{pk_col: key}).exists():
                raise NotFound(cls, key)
            return instance

        values = dict(dirty)
        if getattr(cls, "__timestamps__", False) and "updated_at" not in dirty:
            values["updated_at"] = utcnow()

        stmt = update(cls).values(**values).where(WhereClause(pk_col, "=", key))
        rowcount = await self._pool.execute_statement(*stmt.to_sql())
        if rowcount == 0:
            raise NotFound(cls, key)

        # only written values land on the instance
        instance.fill(**values)
        instance.sync_original()
        logger.debug("Saved %s %s=%r: %s", cls.__name__, pk_col, key, ", ".join(dirty))
        return instance

    async def update(self, instance: T, **values: Any) -> T:
        """Set and persist the given columns only.

        Other pending changes on ``instance`` are left dirty.

        Example:
            >>> await session.update(thing, title="Renamed")
        """
        instance.fill(**values)

        cls = type(instance)
        pk_col = _require_pk(cls)
        key = _identity(instance)

        stmt = update(cls).values(**values).where(WhereClause(pk_col, "=", key))
        rowcount = await self._pool.execute_statement(*stmt.to_sql())
        if rowcount == 0:
            raise NotFound(cls, key)

        instance.sync_original(*values)
        return instance

    async def refresh(self, instance: T) -> T:
        """Reload every column of ``instance`` from its row.

        Soft-deleted rows are still found. Loaded relationships are dropped.
        Raises :class:`NotFound` when the row is gone.
        """
        cls = type(instance)
        pk_col = _require_pk(cls)
        key = _identity(instance)

        fresh = await self.query(cls).with_deleted().filter(**{pk_col: key}).first()
        if fresh is None:
            raise NotFound(cls, key)

        for col_name in cls.__columns__:
            object.__setattr__(instance, col_name, fresh.__dict__.get(col_name))
        object.__setattr__(instance, "_exists", True)
        instance.__dict__["_loaded_relationships"] = {}
        instance.sync_original()
        return instance

    async def remove(self, instance: T) -> None:
        """Delete a model instance immediately.

        Example:
            >>> await session.remove(thing)
        """
        self.delete(instance)
        await self.commit()

    # ========== Relationships ==========

    def related(self, owner: Base, name: str) -> RelatedQuery:
        """Query the records ``owner`` reaches through relationship ``name``.

        Example:
            >>> things = await session.related(user, "things").all()
            >>> await session.related(user, "things").attach(thing, id=2000)
        """
        return RelatedQuery(self, owner, _descriptor_for(type(owner), name))

    async def load(self, owner: T, *names: str) -> T:
        """Load the named relationships onto ``owner``.

        Example:
            >>> await session.load(user, "things")
            >>> user.things
            [<Thing id=3000>, <Thing id=4000>]
        """
        for name in names:
            records = await self.related(owner, name).all()
            owner._set_relationship(name, records)
        return owner

    # ========== Soft Delete API ==========

    async def soft_delete(self, instance: T) -> T:
        """Soft delete a model instance (sets deleted_at timestamp).

        Only works on models that use SoftDeleteMixin.

        Example:
            >>> await session.soft_delete(thing)
            >>> assert thing.is_deleted
        """
        _require_soft_delete(instance)
        return await self.update(instance, deleted_at=utcnow())

    async def restore(self, instance: T) -> T:
        """Restore a soft-deleted model instance."""
        _require_soft_delete(instance)
        return await self.update(instance, deleted_at=None)

    async def force_delete(self, instance: T) -> None:
        """Permanently delete a model instance, even one using SoftDeleteMixin."""
        await self.remove(instance)

    # ========== Traditional Unit of Work API ==========

    def add(self, instance: Base) -> None:
        """Add a model instance to be inserted on commit."""
        self._pending_new.append(instance)

    def add_all(self, instances: list[Base]) -> None:
        """Add multiple model instances to be inserted on commit."""
        self._pending_new.extend(instances)

    def delete(self, instance: Base) -> None:
        """Mark a model instance for deletion on commit."""
        self._pending_delete.append(instance)

    async def commit(self) -> None:
        """Write pending inserts, then pending deletes."""
        if self._pending_new:
            await self._flush_inserts()
        if self._pending_delete:
            await self._flush_deletes()

    async def rollback(self) -> None:
        """Discard all pending changes."""
        self._pending_new.clear()
        self._pending_delete.clear()

    # ========== Query Execution ==========

    async def execute(
        self,
        statement: SelectStatement[T] | InsertStatement | UpdateStatement | DeleteStatement,
    ) -> ExecuteResult[T]:
        """Execute a statement.

        Example:
            >>> result = await session.execute(select(Thing).filter_by(title="Thing 3000"))
            >>> thing = result.scalars().one()
            >>> result = await session.execute(delete("user_things").where(...))
            >>> result.rowcount
            1
        """
        if self._pending_new:
            await self._flush_inserts()

        sql, params = statement.to_sql()
        if isinstance(statement, SelectStatement):
            result = await self._pool.execute(sql, params)
            return ExecuteResult(result, statement.column_map)

        rowcount = await self._pool.execute_statement(sql, params)
        return ExecuteResult(QueryResult([], []), None, rowcount=rowcount)

    async def execute_raw(self, sql: str, params: list[Any] | None = None) -> QueryResult:
        """Execute raw SQL and return results."""
        return await self._pool.execute(sql, params or [])

    # ========== Internal Methods ==========

    async def _insert_instance(self, instance: Base) -> None:
        cls = type(instance)
        if getattr(cls, "__timestamps__", False):
            instance.touch()  # type: ignore[attr-defined]

        values = {
            col_name: instance.__dict__[col_name]
            for col_name, col_info in cls.__columns__.items()
            if col_name in instance.__dict__
            and not (col_info.primary_key and instance.__dict__[col_name] is None)
        }

        pk_col = cls.__primary_key__
        if values:
            sql, params = insert(cls).values(values).to_sql()
        else:
            sql, params = f"INSERT INTO {cls.__tablename__} DEFAULT VALUES", []

        if pk_col:
            # SQLite 3.35+
            result = await self._pool.execute(f"{sql} RETURNING {pk_col}", params)
            row = result.first()
            if row is not None:
                object.__setattr__(instance, pk_col, cls.__columns__[pk_col].to_python(row[pk_col]))
        else:
            await self._pool.execute_statement(sql, params)

        object.__setattr__(instance, "_exists", True)
        instance.sync_original()

    async def _flush_inserts(self) -> None:
        """Insert all pending new objects."""
        pending, self._pending_new = self._pending_new, []
        for instance in pending:
            await self._insert_instance(instance)

    async def _flush_deletes(self) -> None:
        """Delete all pending delete objects."""
        pending, self._pending_delete = self._pending_delete, []
        for obj in pending:
            cls = type(obj)
            pk_col = _require_pk(cls)
            pk_value = _identity(obj)
            if pk_value is None:
                continue

            stmt = delete(cls).where(WhereClause(pk_col, "=", pk_value))
            await self._pool.execute_statement(*stmt.to_sql())
            object.__setattr__(obj, "_exists", False)


def _descriptor_for(model: type[Base], name: str) -> ManyToMany:
    model._resolve_relationships()
    rel_info = model.__relationships__.get(name)
    if rel_info is None:
        raise RelationshipError(f"{model.__name__} has no relationship {name!r}")
    if rel_info.descriptor is None:
        raise RelationshipError(
            f"Relationship {model.__name__}.{name} could not be resolved; "
            "is the related model defined?"
        )
    return rel_info.descriptor


class RelatedQuery:
    """Records one owner reaches through a many-to-many relationship.

    ``all()`` drains the pivot join in one round trip; ``cursor()`` streams
    the same rows from a forward-only cursor. Both hydrate the related row's
    own key, never the pivot's.
    """

    def __init__(
        self,
        session: AsyncSession,
        owner: Base,
        descriptor: ManyToMany,
        *,
        include_deleted: bool = False,
        order: tuple[tuple[str, str], ...] = (),
    ) -> None:
        self._session = session
        self._owner = owner
        self.descriptor = descriptor
        self._include_deleted = include_deleted
        self._order = order

    @property
    def owner_key(self) -> Any:
        key = self._owner.__dict__.get(self.descriptor.parent_key)
        if key is None:
            raise RelationshipError(
                f"{type(self._owner).__name__} has no {self.descriptor.parent_key}; save it first"
            )
        return key

    def with_deleted(self) -> RelatedQuery:
        """Include soft-deleted related records."""
        return RelatedQuery(
            self._session, self._owner, self.descriptor, include_deleted=True, order=self._order
        )

    def order_by(self, *columns: str, desc: bool = False) -> RelatedQuery:
        """Order by columns of the related model (default: its primary key)."""
        direction = "DESC" if desc else "ASC"
        return RelatedQuery(
            self._session,
            self._owner,
            self.descriptor,
            include_deleted=self._include_deleted,
            order=self._order + tuple((col, direction) for col in columns),
        )

    def _loader(self) -> ManyToManyLoader:
        return ManyToManyLoader(
            self._session.pool,
            self.descriptor,
            include_deleted=self._include_deleted,
            order=self._order,
        )

    async def all(self) -> list[Base]:
        return await self._loader().load_all(self.owner_key)

    def cursor(self, batch_size: int | None = None) -> RecordCursor[Base]:
        """Stream related records, ``batch_size`` rows per fetch."""
        return self._loader().load_streaming(self.owner_key, batch_size)

    async def attach(self, *items: Base | Any, **pivot_values: Any) -> None:
        """Insert pivot rows linking the owner to ``items``.

        ``items`` are related instances or their keys. ``pivot_values`` are
        extra pivot columns, e.g. an explicit ``id``.

        Example:
            >>> await session.related(user, "things").attach(thing, id=2000)
        """
        d = self.descriptor
        owner_key = self.owner_key
        rows = [
            {**pivot_values, d.foreign_pivot_key: owner_key, d.related_pivot_key: self._related_key(item)}
            for item in items
        ]
        if rows:
            await self._session.execute(insert(d.pivot_table).values(*rows))

    async def detach(self, *items: Base | Any) -> int:
        """Delete pivot rows for ``items``, or all of the owner's when none given."""
        d = self.descriptor
        stmt = delete(d.pivot_table).where(WhereClause(d.foreign_pivot_key, "=", self.owner_key))
        sql, params = stmt.to_sql()
        if items:
            keys = [self._related_key(item) for item in items]
            sql += f" AND {d.related_pivot_key} IN ({', '.join('?' for _ in keys)})"
            params += keys
        return await self._session.pool.execute_statement(sql, params)

    def _related_key(self, item: Base | Any) -> Any:
        if isinstance(item, self.descriptor.related):
            return item.__dict__.get(self.descriptor.related_key)
        return item


class Query(Generic[T]):
    """Fluent query builder for a model.

    Supports Django-style filter kwargs with operators:
        - field=value: Exact match
        - field__gt / __gte / __lt / __lte / __ne: Comparisons
        - field__like=value: SQL LIKE pattern
        - field__in / __notin: Membership
        - field__isnull=True: NULL check
        - field__contains / __startswith / __endswith: Substring match

    Example:
        >>> await session.query(Thing).filter(title__startswith="Thing").order_by("id").all()
    """

    def __init__(self, session: AsyncSession, model: type[T]) -> None:
        self._session = session
        self._model = model
        self._filters: list[tuple[str, str, Any]] = []
        self._order: list[tuple[str, str]] = []
        self._limit_val: int | None = None
        self._offset_val: int | None = None
        self._load_options: list[LoadOption] = []
        self._include_deleted = False
        self._only_deleted = False

    def filter(self, **kwargs: Any) -> Query[T]:
        """Add filter conditions.

        Example:
            >>> query.filter(id__in=[3000, 4000], title__isnull=False)
        """
        for key, value in kwargs.items():
            col, op = _parse_filter_key(key)
            self._filters.append((col, op, value))
        return self

    def filter_by(self, **kwargs: Any) -> Query[T]:
        """Add equality conditions."""
        self._filters.extend((col, "eq", value) for col, value in kwargs.items())
        return self

    def order_by(self, *columns: str, desc: bool = False) -> Query[T]:
        """Add ORDER BY clause. A leading ``-`` sorts that column descending."""
        for col in columns:
            if col.startswith("-"):
                self._order.append((col[1:], "DESC"))
            else:
                self._order.append((col, "DESC" if desc else "ASC"))
        return self

    def limit(self, n: int) -> Query[T]:
        self._limit_val = n
        return self

    def offset(self, n: int) -> Query[T]:
        self._offset_val = n
        return self

    def options(self, *opts: LoadOption) -> Query[T]:
        """Add loading options for relationships.

        Example:
            >>> query.options(selectinload("things"))
        """
        self._load_options.extend(opts)
        return self

    def with_deleted(self) -> Query[T]:
        """Include soft-deleted records in results."""
        self._include_deleted = True
        return self

    def only_deleted(self) -> Query[T]:
        """Return only soft-deleted records."""
        self._include_deleted = True
        self._only_deleted = True
        return self

    async def all(self) -> list[T]:
        """Execute query and return all results."""
        result = await self._execute()
        instances = result.scalars().all()
        await self._apply_load_options(instances)
        return instances

    def stream(self, batch_size: int | None = None) -> RecordCursor[T]:
        """Stream results from a forward-only cursor.

        Load options are not applied to streamed records.

        Example:
            >>> async with session.query(Thing).stream(batch_size=500) as things:
            ...     async for thing in things:
            ...         process(thing)
        """
        sql, params = self._build_select_sql()
        column_map = ColumnMap.for_model(self._model)
        pool = self._session.pool
        return RecordCursor(
            lambda: pool.stream(sql, params, batch_size),
            lambda row: hydrate(row, column_map),
        )

    def __aiter__(self) -> RecordCursor[T]:
        """Allow using the query directly as an async iterator.

        Example:
            >>> async for thing in session.query(Thing):
            ...     process(thing)
        """
        return self.stream().__aiter__()

    async def first(self) -> T | None:
        """Execute query and return first result."""
        self._limit_val = 1
        result = await self._execute()
        instance = result.scalars().first()
        if instance:
            await self._apply_load_options([instance])
        return instance

    async def one(self) -> T:
        """Execute query and return exactly one result."""
        result = await self._execute()
        instance = result.scalars().one()
        await self._apply_load_options([instance])
        return instance

    async def one_or_none(self) -> T | None:
        """Execute query and return one result or None."""
        result = await self._execute()
        instance = result.scalars().one_or_none()
        if instance:
            await self._apply_load_options([instance])
        return instance

    async def count(self) -> int:
        """Return count of matching rows."""
        where_sql, params = self._build_where_clause()
        sql = f"SELECT COUNT(*) AS count FROM {self._model.__tablename__}{where_sql}"
        result = await self._session.pool.execute(sql, params)
        row = result.first()
        return row["count"] if row else 0

    async def exists(self) -> bool:
        """Check if any matching rows exist."""
        return await self.count() > 0

    async def _execute(self) -> ExecuteResult[T]:
        sql, params = self._build_select_sql()
        result = await self._session.pool.execute(sql, params)
        return ExecuteResult(result, ColumnMap.for_model(self._model))

    def _build_where_clause(self) -> tuple[str, list[Any]]:
        """Build WHERE clause from filters and soft delete filtering."""
        params: list[Any] = []
        where_parts: list[str] = []

        if getattr(self._model, "__soft_delete__", False):
            if not self._include_deleted:
                where_parts.append("deleted_at IS NULL")
            elif self._only_deleted:
                where_parts.append("deleted_at IS NOT NULL")

        for col, op, value in self._filters:
            col_info = self._model.__columns__.get(col)
            if col_info is None:
                raise ValueError(f"{self._model.__name__} has no column {col!r}")
            if op in ("in", "notin"):
                value = [col_info.to_db(v) for v in value]
            elif op != "isnull":
                value = col_info.to_db(value)
            filter_sql, filter_params = _build_filter_sql(col, op, value)
            where_parts.append(filter_sql)
            params.extend(filter_params)

        if where_parts:
            return " WHERE " + " AND ".join(where_parts), params
        return "", []

    def _build_select_sql(self) -> tuple[str, list[Any]]:
        column_map = ColumnMap.for_model(self._model)
        sql = f"SELECT {', '.join(column_map.select_list())} FROM {self._model.__tablename__}"

        where_sql, params = self._build_where_clause()
        sql += where_sql

        if self._order:
            sql += " ORDER BY " + ", ".join(f"{col} {direction}" for col, direction in self._order)
        if self._limit_val is not None:
            sql += f" LIMIT {self._limit_val}"
        if self._offset_val is not None:
            if self._limit_val is None:
                sql += " LIMIT -1"
            sql += f" OFFSET {self._offset_val}"

        return sql, params

    async def _apply_load_options(self, instances: list[T]) -> None:
        """Apply eager loading options to loaded instances."""
        if not instances or not self._load_options:
            return

        self._model._resolve_relationships()

        for opt in self._load_options:
            rel_name = opt.attr_name
            if rel_name not in self._model.__relationships__:
                raise RelationshipError(f"{self._model.__name__} has no relationship {rel_name!r}")

            if opt.strategy == "selectin":
                await self._load_selectin(instances, rel_name)
            elif opt.strategy == "noload":
                for instance in instances:
                    instance._set_relationship(rel_name, [])

    async def _load_selectin(self, instances: list[T], rel_name: str) -> None:
        """One pivot join for every instance's relationship ``rel_name``."""
        descriptor = _descriptor_for(self._model, rel_name)
        keys = [
            instance.__dict__.get(descriptor.parent_key)
            for instance in instances
            if instance.__dict__.get(descriptor.parent_key) is not None
        ]
        grouped = await ManyToManyLoader(self._session.pool, descriptor).load_many(keys)
        for instance in instances:
            instance._set_relationship(rel_name, grouped.get(instance.__dict__.get(descriptor.parent_key), []))


class ExecuteResult(Generic[T]):
    """Result from executing a statement."""

    def __init__(
        self,
        result: QueryResult,
        column_map: ColumnMap | None = None,
        *,
        rowcount: int | None = None,
    ) -> None:
        self._result = result
        self._column_map = column_map
        self._rowcount = rowcount

    def scalars(self) -> ScalarResult[T]:
        """Get results as model instances."""
        return ScalarResult(self._result, self._column_map)

    def all(self) -> list[dict[str, Any]]:
        """Get all results as dictionaries."""
        return list(self._result.all())

    def first(self) -> dict[str, Any] | None:
        return self._result.first()

    def one(self) -> dict[str, Any]:
        return self._result.one()

    def one_or_none(self) -> dict[str, Any] | None:
        return self._result.one_or_none()

    @property
    def rowcount(self) -> int:
        """Rows affected by a write, or rows returned by a select."""
        if self._rowcount is not None:
            return self._rowcount
        return self._result.rowcount


class ScalarResult(Generic[T]):
    """Result wrapper that converts rows to model instances."""

    def __init__(self, result: QueryResult, column_map: ColumnMap | None) -> None:
        self._result = result
        self._column_map = column_map

    def _hydrate(self, row: dict[str, Any]) -> T:
        if self._column_map is None:
            raise ValueError("Cannot convert to model: no model specified")
        return hydrate(row, self._column_map)  # type: ignore[return-value]

    def all(self) -> list[T]:
        return [self._hydrate(row) for row in self._result.all()]

    def first(self) -> T | None:
        row = self._result.first()
        return self._hydrate(row) if row is not None else None

    def one(self) -> T:
        if len(self._result) != 1:
            raise ValueError(f"Expected exactly 1 row, got {len(self._result)}")
        return self._hydrate(self._result.one())

    def one_or_none(self) -> T | None:
        if len(self._result) > 1:
            raise ValueError(f"Expected at most 1 row, got {len(self._result)}")
        row = self._result.first()
        return self._hydrate(row) if row is not None else None


# ========== Convenience Functions ==========

def create_session(pool: ConnectionPool) -> AsyncSession:
    """Create a new session from a connection pool.

    Example:
        >>> session = create_session(engine)
    """
    return AsyncSession(pool)


@asynccontextmanager
async def session_context(pool: ConnectionPool) -> AsyncIterator[AsyncSession]:
    """Create a session context that commits pending work on success.

    Example:
        >>> async with session_context(engine) as session:
        ...     session.add(Thing(title="Thing"))
    """
    session = AsyncSession(pool)
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
