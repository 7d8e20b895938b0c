"""Query builder for constructing SQL statements.

Every SELECT goes through a :class:`ColumnMap`: an explicit mapping from
model field to result-column alias. Joined selects qualify each column
with its table and give it a prefixed alias, so a pivot row's ``id`` and
the related row's ``id`` arrive under different names.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pivotorm.exceptions import AmbiguousColumnError

if TYPE_CHECKING:
    from pivotorm.base import Base
    from pivotorm.relationships import ManyToMany

T = TypeVar("T", bound="Base")

RELATED_PREFIX = "related__"
PIVOT_PREFIX = "pivot__"


@dataclass(frozen=True)
class ColumnMap:
    """Field-to-alias mapping for the columns selected from one table."""

    table: str
    aliases: Mapping[str, str]
    identity_field: str | None
    model: type[Base] | None = None

    def __post_init__(self) -> None:
        if self.identity_field is not None and self.identity_field not in self.aliases:
            raise AmbiguousColumnError(
                f"Identity column {self.table}.{self.identity_field} is not selected"
            )
        seen: dict[str, str] = {}
        for field_name, alias in self.aliases.items():
            if alias in seen:
                raise AmbiguousColumnError(
                    f"{self.table}.{field_name} and {self.table}.{seen[alias]} share alias {alias!r}"
                )
            seen[alias] = field_name

    @classmethod
    def for_model(cls, model: type[Base], prefix: str = "") -> ColumnMap:
        """Map every column of ``model``, with its primary key as identity."""
        if model.__primary_key__ is None:
            raise ValueError(f"{model.__name__} has no primary key")
        return cls(
            table=model.__tablename__,
            aliases=MappingProxyType({name: f"{prefix}{name}" for name in model.__columns__}),
            identity_field=model.__primary_key__,
            model=model,
        )

    @classmethod
    def for_table(
        cls,
        table: str,
        columns: Iterable[str],
        prefix: str = "",
        identity_field: str | None = None,
    ) -> ColumnMap:
        """Map plain table columns that have no model."""
        return cls(
            table=table,
            aliases=MappingProxyType({name: f"{prefix}{name}" for name in columns}),
            identity_field=identity_field,
        )

    @property
    def identity_alias(self) -> str | None:
        """Result column holding this table's identity."""
        if self.identity_field is None:
            return None
        return self.aliases[self.identity_field]

    def select_list(self) -> list[str]:
        """Qualified, aliased select expressions."""
        return [f"{self.table}.{name} AS {alias}" for name, alias in self.aliases.items()]

    def qualify(self, field_name: str) -> str:
        if field_name not in self.aliases:
            raise AmbiguousColumnError(f"{self.table} has no mapped column {field_name!r}")
        return f"{self.table}.{field_name}"


def check_distinct(*maps: ColumnMap) -> None:
    """Raise if two maps would emit the same result alias."""
    seen: dict[str, str] = {}
    for column_map in maps:
        for field_name, alias in column_map.aliases.items():
            source = f"{column_map.table}.{field_name}"
            if alias in seen:
                raise AmbiguousColumnError(f"{source} and {seen[alias]} share alias {alias!r}")
            seen[alias] = source


@dataclass(frozen=True)
class PivotSelect:
    """SELECT of related rows joined through a pivot table.

    Example:
        >>> stmt = PivotSelect.build(User.__relationships__["things"].descriptor, [1000])
        >>> sql, params = stmt.to_sql()
        >>> # SELECT things.id AS related__id, things.title AS related__title, ...,
        >>> #        user_things.id AS pivot__id, user_things.userId AS pivot__userId, ...
        >>> # FROM things INNER JOIN user_things ON things.id = user_things.thingId
        >>> # WHERE user_things.userId IN (?) ORDER BY things.id ASC
    """

    descriptor: ManyToMany
    related_columns: ColumnMap
    pivot_columns: ColumnMap
    owner_keys: tuple[Any, ...]
    include_deleted: bool = False
    order: tuple[tuple[str, str], ...] = ()

    @classmethod
    def build(
        cls,
        descriptor: ManyToMany,
        owner_keys: Iterable[Any],
        *,
        include_deleted: bool = False,
        order: Iterable[tuple[str, str]] = (),
    ) -> PivotSelect:
        """Build and check the column contract for ``descriptor``."""
        keys = tuple(owner_keys)
        if not keys:
            raise ValueError("PivotSelect needs at least one owner key")

        related_columns = ColumnMap.for_model(descriptor.related, RELATED_PREFIX)
        pivot_columns = ColumnMap.for_table(
            descriptor.pivot_table,
            descriptor.pivot_columns,
            PIVOT_PREFIX,
            identity_field=descriptor.pivot_id,
        )
        check_distinct(related_columns, pivot_columns)

        order = tuple(order)
        for field_name, _direction in order:
            related_columns.qualify(field_name)

        return cls(
            descriptor=descriptor,
            related_columns=related_columns,
            pivot_columns=pivot_columns,
            owner_keys=keys,
            include_deleted=include_deleted,
            order=order,
        )

    @property
    def owner_alias(self) -> str:
        """Result column holding the owner key of each row."""
        return self.pivot_columns.aliases[self.descriptor.foreign_pivot_key]

    def to_sql(self) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        d = self.descriptor
        related_table = d.related.__tablename__
        pivot_table = d.pivot_table

        columns = ", ".join(self.related_columns.select_list() + self.pivot_columns.select_list())
        placeholders = ", ".join("?" for _ in self.owner_keys)

        sql = (
            f"SELECT {columns} FROM {related_table} "
            f"INNER JOIN {pivot_table} "
            f"ON {related_table}.{d.related_key} = {pivot_table}.{d.related_pivot_key} "
            f"WHERE {pivot_table}.{d.foreign_pivot_key} IN ({placeholders})"
        )

        if getattr(d.related, "__soft_delete__", False) and not self.include_deleted:
            sql += f" AND {related_table}.deleted_at IS NULL"

        order = self.order or ((self.related_columns.identity_field or d.related_key, "ASC"),)
        order_parts = [f"{self.related_columns.qualify(col)} {direction}" for col, direction in order]
        sql += " ORDER BY " + ", ".join(order_parts)

        return sql, list(self.owner_keys)


@dataclass
class WhereClause:
    """Represents a WHERE condition."""

    column: str
    operator: str
    value: Any

    def to_sql(self) -> tuple[str, list[Any]]:
        if self.value is None and self.operator in ("=", "!="):
            return f"{self.column} IS {'NOT ' if self.operator == '!=' else ''}NULL", []
        return f"{self.column} {self.operator} ?", [self.value]


def _where_sql(clauses: list[WhereClause]) -> tuple[str, list[Any]]:
    if not clauses:
        return "", []
    parts: list[str] = []
    params: list[Any] = []
    for clause in clauses:
        clause_sql, clause_params = clause.to_sql()
        parts.append(clause_sql)
        params.extend(clause_params)
    return " WHERE " + " AND ".join(parts), params


@dataclass
class SelectStatement(Generic[T]):
    """Represents a SELECT query over a single model."""

    model: type[T]
    _where_clauses: list[WhereClause] = field(default_factory=list)
    _order_by: list[tuple[str, str]] = field(default_factory=list)
    _limit: int | None = None
    _offset: int | None = None

    def where(self, *conditions: WhereClause) -> SelectStatement[T]:
        """Add WHERE conditions.

        Example:
            >>> select(Thing).where(WhereClause("title", "=", "Thing 3000"))
        """
        return replace(self, _where_clauses=self._where_clauses + list(conditions))

    def filter_by(self, **kwargs: Any) -> SelectStatement[T]:
        """Add equality conditions using keyword arguments.

        Example:
            >>> select(Thing).filter_by(title="Thing 3000")
        """
        return self.where(*(WhereClause(col_name, "=", value) for col_name, value in kwargs.items()))

    def order_by(self, *columns: str, desc: bool = False) -> SelectStatement[T]:
        """Add ORDER BY clause."""
        direction = "DESC" if desc else "ASC"
        return replace(self, _order_by=self._order_by + [(c, direction) for c in columns])

    def limit(self, n: int) -> SelectStatement[T]:
        """Limit the number of results."""
        return replace(self, _limit=n)

    def offset(self, n: int) -> SelectStatement[T]:
        """Skip the first n results."""
        return replace(self, _offset=n)

    @property
    def column_map(self) -> ColumnMap:
        return ColumnMap.for_model(self.model)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        column_map = self.column_map
        sql = f"SELECT {', '.join(column_map.select_list())} FROM {self.model.__tablename__}"

        where_sql, params = _where_sql(self._where_clauses)
        sql += where_sql

        if self._order_by:
            sql += " ORDER BY " + ", ".join(f"{col} {direction}" for col, direction in self._order_by)
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        if self._offset is not None:
            if self._limit is None:
                sql += " LIMIT -1"
            sql += f" OFFSET {self._offset}"

        return sql, params


@dataclass
class InsertStatement:
    """Represents an INSERT into a model's table or a bare table (e.g. a pivot)."""

    target: type[Base] | str
    _values: list[dict[str, Any]] = field(default_factory=list)

    @property
    def table(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__tablename__

    def values(self, *rows: dict[str, Any], **single_row: Any) -> InsertStatement:
        """Specify values to insert.

        Example:
            >>> insert(Thing).values(id=3000, title="Thing 3000")
            >>> insert("user_things").values({"id": 2000, "userId": 1000, "thingId": 3000})
        """
        new_values = list(self._values)
        new_values.extend(rows)
        if single_row:
            new_values.append(single_row)
        return replace(self, _values=new_values)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self._values:
            raise ValueError("No values specified for INSERT")

        columns = list(self._values[0].keys())
        params: list[Any] = []
        value_groups = []
        for row in self._values:
            value_groups.append(f"({', '.join('?' for _ in columns)})")
            params.extend(_to_db(self.target, col, row.get(col)) for col in columns)

        sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES {', '.join(value_groups)}"
        return sql, params


@dataclass
class UpdateStatement:
    """Represents an UPDATE query."""

    target: type[Base] | str
    _set_values: dict[str, Any] = field(default_factory=dict)
    _where_clauses: list[WhereClause] = field(default_factory=list)

    @property
    def table(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__tablename__

    def values(self, **kwargs: Any) -> UpdateStatement:
        """Specify values to update.

        Example:
            >>> update(Thing).values(title="Mutated").where(WhereClause("id", "=", 3000))
        """
        return replace(self, _set_values={**self._set_values, **kwargs})

    def where(self, *conditions: WhereClause) -> UpdateStatement:
        """Add WHERE conditions."""
        return replace(self, _where_clauses=self._where_clauses + list(conditions))

    def to_sql(self) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self._set_values:
            raise ValueError("No values specified for UPDATE")

        set_parts = [f"{col} = ?" for col in self._set_values]
        params = [_to_db(self.target, col, value) for col, value in self._set_values.items()]
        sql = f"UPDATE {self.table} SET {', '.join(set_parts)}"

        where_sql, where_params = _where_sql(self._where_clauses)
        return sql + where_sql, params + where_params


@dataclass
class DeleteStatement:
    """Represents a DELETE query."""

    target: type[Base] | str
    _where_clauses: list[WhereClause] = field(default_factory=list)

    @property
    def table(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__tablename__

    def where(self, *conditions: WhereClause) -> DeleteStatement:
        """Add WHERE conditions."""
        return replace(self, _where_clauses=self._where_clauses + list(conditions))

    def to_sql(self) -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        where_sql, params = _where_sql(self._where_clauses)
        return f"DELETE FROM {self.table}{where_sql}", params


def _to_db(target: type[Base] | str, column: str, value: Any) -> Any:
    if isinstance(target, str):
        return value
    col_info = target.__columns__.get(column)
    return col_info.to_db(value) if col_info is not None else value


def select(model: type[T]) -> SelectStatement[T]:
    """Create a SELECT statement for a model.

    Example:
        >>> result = await session.execute(select(Thing).filter_by(title="Thing 3000"))
    """
    return SelectStatement(model=model)


def insert(target: type[Base] | str) -> InsertStatement:
    """Create an INSERT statement for a model or a table name.

    Example:
        >>> await session.execute(insert("user_things").values(id=2000, userId=1000, thingId=3000))
    """
    return InsertStatement(target=target)


def update(target: type[Base] | str) -> UpdateStatement:
    """Create an UPDATE statement for a model or a table name."""
    return UpdateStatement(target=target)


def delete(target: type[Base] | str) -> DeleteStatement:
    """Create a DELETE statement for a model or a table name."""
    return DeleteStatement(target=target)
