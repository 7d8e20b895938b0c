"""Schema operations: CREATE/DROP TABLE for models and their pivot tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pivotorm.exceptions import RelationshipError

if TYPE_CHECKING:
    from pivotorm.base import Base
    from pivotorm.engine import ConnectionPool
    from pivotorm.fields import ColumnInfo
    from pivotorm.relationships import ManyToMany

logger = logging.getLogger(__name__)


@dataclass
class ColumnDef:
    """Column definition for CreateTable."""

    name: str
    type_: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: Any | None = None
    autoincrement: bool = False
    references: str | None = None  # "table(column)"
    ondelete: str | None = None

    def to_sql(self) -> str:
        """Generate SQL column definition."""
        parts = [f"{self.name} {self.type_}"]

        if self.primary_key:
            parts.append("PRIMARY KEY AUTOINCREMENT" if self.autoincrement else "PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")

        if self.unique and not self.primary_key:
            parts.append("UNIQUE")

        if self.default is not None and not callable(self.default):
            if isinstance(self.default, str):
                escaped = self.default.replace("'", "''")
                parts.append(f"DEFAULT '{escaped}'")
            elif isinstance(self.default, bool):
                parts.append(f"DEFAULT {int(self.default)}")
            else:
                parts.append(f"DEFAULT {self.default}")

        if self.references:
            parts.append(f"REFERENCES {self.references}")
            if self.ondelete:
                parts.append(f"ON DELETE {self.ondelete}")

        return " ".join(parts)

    @classmethod
    def from_column(cls, col_info: ColumnInfo) -> ColumnDef:
        sql_type = col_info.sql_type()
        fk = col_info.foreign_key
        return cls(
            name=col_info.name or "",
            type_=sql_type,
            nullable=col_info.nullable,
            primary_key=col_info.primary_key,
            unique=col_info.unique,
            default=col_info.default,
            # AUTOINCREMENT is only valid on INTEGER PRIMARY KEY
            autoincrement=bool(col_info.primary_key and col_info.autoincrement and sql_type == "INTEGER"),
            references=f"{fk.table}({fk.column})" if fk else None,
            ondelete=fk.ondelete if fk else None,
        )


@dataclass
class CreateTable:
    """Create a new table."""

    table_name: str
    columns: list[ColumnDef]
    unique_together: list[tuple[str, ...]] = field(default_factory=list)
    if_not_exists: bool = True

    def to_sql(self) -> str:
        """Generate CREATE TABLE SQL."""
        exists_clause = "IF NOT EXISTS " if self.if_not_exists else ""
        parts = [col.to_sql() for col in self.columns]
        parts.extend(f"UNIQUE ({', '.join(cols)})" for cols in self.unique_together)
        return f"CREATE TABLE {exists_clause}{self.table_name} ({', '.join(parts)})"

    def reverse(self) -> DropTable:
        """Reverse is DROP TABLE."""
        return DropTable(self.table_name)


@dataclass
class DropTable:
    """Drop a table."""

    table_name: str
    if_exists: bool = True

    def to_sql(self) -> str:
        """Generate DROP TABLE SQL."""
        exists_clause = "IF EXISTS " if self.if_exists else ""
        return f"DROP TABLE {exists_clause}{self.table_name}"


@dataclass
class CreateIndex:
    """Create an index on one column."""

    table_name: str
    column_name: str

    @property
    def index_name(self) -> str:
        return f"ix_{self.table_name}_{self.column_name}"

    def to_sql(self) -> str:
        return f"CREATE INDEX IF NOT EXISTS {self.index_name} ON {self.table_name} ({self.column_name})"


def create_table_for(model: type[Base]) -> CreateTable:
    """CREATE TABLE for a model, mixin columns included."""
    return CreateTable(
        table_name=model.__tablename__,
        columns=[ColumnDef.from_column(col_info) for col_info in model.__columns__.values()],
    )


def indexes_for(model: type[Base]) -> list[CreateIndex]:
    return [
        CreateIndex(model.__tablename__, col_name)
        for col_name, col_info in model.__columns__.items()
        if col_info.index and not col_info.primary_key and not col_info.unique
    ]


def pivot_table_for(descriptor: ManyToMany) -> CreateTable:
    """CREATE TABLE for a pivot: its own id, one foreign key per side, unique pair.

    Example:
        >>> pivot_table_for(User.__relationships__["things"].descriptor).to_sql()
        'CREATE TABLE IF NOT EXISTS user_things (id INTEGER PRIMARY KEY AUTOINCREMENT,
        userId INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        thingId INTEGER NOT NULL REFERENCES things(id) ON DELETE CASCADE, UNIQUE (userId, thingId))'
    """
    d = descriptor
    columns: list[ColumnDef] = []
    if d.pivot_id:
        columns.append(ColumnDef(d.pivot_id, "INTEGER", primary_key=True, autoincrement=True))

    for column, model, key in (
        (d.foreign_pivot_key, d.owner, d.parent_key),
        (d.related_pivot_key, d.related, d.related_key),
    ):
        columns.append(
            ColumnDef(
                column,
                model.__columns__[key].sql_type(),
                nullable=False,
                references=f"{model.__tablename__}({key})",
                ondelete="CASCADE",
            )
        )

    return CreateTable(
        table_name=d.pivot_table,
        columns=columns,
        unique_together=[(d.foreign_pivot_key, d.related_pivot_key)],
    )


def _pivots_for(models: tuple[type[Base], ...]) -> dict[str, ManyToMany]:
    pivots: dict[str, ManyToMany] = {}
    for model in models:
        model._resolve_relationships()
        for rel_name, rel_info in model.__relationships__.items():
            if rel_info.descriptor is None:
                raise RelationshipError(f"Relationship {model.__name__}.{rel_name} could not be resolved")
            # both sides of an association share one pivot table
            pivots.setdefault(rel_info.descriptor.pivot_table, rel_info.descriptor)
    return pivots


async def create_all(pool: ConnectionPool, *models: type[Base]) -> None:
    """Create tables for ``models`` followed by their pivot tables.

    Example:
        >>> await create_all(engine, User, Thing)
    """
    for model in models:
        await pool.execute_statement(create_table_for(model).to_sql())
        for index in indexes_for(model):
            await pool.execute_statement(index.to_sql())

    for descriptor in _pivots_for(models).values():
        await pool.execute_statement(pivot_table_for(descriptor).to_sql())

    logger.debug("Created tables for %s", ", ".join(model.__name__ for model in models))


async def drop_all(pool: ConnectionPool, *models: type[Base]) -> None:
    """Drop the pivot tables of ``models`` and then the model tables."""
    for pivot_table in _pivots_for(models):
        await pool.execute_statement(DropTable(pivot_table).to_sql())
    for model in reversed(models):
        await pool.execute_statement(DropTable(model.__tablename__).to_sql())
