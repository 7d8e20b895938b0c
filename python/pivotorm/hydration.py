"""Turning result rows into model instances."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pivotorm.exceptions import NoSuchColumnError

if TYPE_CHECKING:
    from pivotorm.base import Base
    from pivotorm.query import ColumnMap, PivotSelect


@dataclass(frozen=True)
class Pivot:
    """The pivot row a related record was reached through."""

    table: str
    id: Any
    owner_key: Any
    related_key: Any


def hydrate(row: dict[str, Any], column_map: ColumnMap) -> Base:
    """Build a clean model instance from ``row``.

    Only the aliases named by ``column_map`` are read. A row lacking one of
    them is rejected rather than resolved through some other column of the
    same name.
    """
    model = column_map.model
    if model is None:
        raise TypeError(f"ColumnMap for {column_map.table} has no model to hydrate")

    values: dict[str, Any] = {}
    for field_name, alias in column_map.aliases.items():
        try:
            values[field_name] = row[alias]
        except KeyError:
            raise NoSuchColumnError(
                f"Row has no column {alias!r} for {model.__name__}.{field_name}; "
                f"columns present: {sorted(row)}"
            ) from None

    return model._from_row(values)


def hydrate_related(row: dict[str, Any], statement: PivotSelect) -> Base:
    """Hydrate a related record from a pivot join row and attach its pivot."""
    record = hydrate(row, statement.related_columns)

    d = statement.descriptor
    pivot_map = statement.pivot_columns
    for field_name in (d.foreign_pivot_key, d.related_pivot_key):
        if pivot_map.aliases[field_name] not in row:
            raise NoSuchColumnError(f"Row has no column {pivot_map.aliases[field_name]!r} for pivot {d.pivot_table}")

    pivot = Pivot(
        table=d.pivot_table,
        id=row.get(pivot_map.identity_alias) if pivot_map.identity_alias else None,
        owner_key=row[pivot_map.aliases[d.foreign_pivot_key]],
        related_key=row[pivot_map.aliases[d.related_pivot_key]],
    )
    object.__setattr__(record, "pivot", pivot)
    return record


def is_dirty(record: Base, *fields: str) -> bool:
    """True iff any (or any of ``fields``) differs from the load-time snapshot."""
    return record.is_dirty(*fields)


def mark_mutated(record: Base, field: str, value: Any) -> None:
    """Set ``field`` on ``record``; :func:`is_dirty` reflects the change."""
    record.fill(**{field: value})
