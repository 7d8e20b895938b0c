"""Relationship definitions for ORM models."""

from __future__ import annotations

import typing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pivotorm.exceptions import RelationshipError

if TYPE_CHECKING:
    from pivotorm.base import Base


# Global model registry - maps table names and class names to model classes
_model_registry: dict[str, type[Base]] = {}


def register_model(model_cls: type[Base]) -> None:
    """Register a model class for relationship resolution."""
    _model_registry[model_cls.__tablename__] = model_cls
    _model_registry[model_cls.__name__] = model_cls


def get_model(name: str) -> type[Base] | None:
    """Get a model class by table name or class name."""
    return _model_registry.get(name)


def model_registry() -> dict[str, type[Base]]:
    """Snapshot of every registered model, keyed by class name."""
    return {name: model for name, model in _model_registry.items() if name == model.__name__}


@dataclass(frozen=True)
class ManyToMany:
    """Resolved metadata for a many-to-many association.

    ``owner.parent_key = pivot.foreign_pivot_key`` and
    ``pivot.related_pivot_key = related.related_key``. ``pivot_id`` names
    the pivot table's own primary key column, or is None when the pivot
    has none.
    """

    owner: type[Base]
    related: type[Base]
    pivot_table: str
    foreign_pivot_key: str
    related_pivot_key: str
    parent_key: str
    related_key: str
    pivot_id: str | None = "id"

    @property
    def pivot_columns(self) -> tuple[str, ...]:
        """Pivot columns worth selecting: its own key then both foreign keys."""
        keys = (self.foreign_pivot_key, self.related_pivot_key)
        return (self.pivot_id, *keys) if self.pivot_id else keys


def belongs_to_many(
    owner: type[Base],
    related: type[Base],
    pivot_table: str,
    foreign_pivot_key: str,
    related_pivot_key: str,
    *,
    parent_key: str | None = None,
    related_key: str | None = None,
    pivot_id: str | None = "id",
) -> ManyToMany:
    """Describe a many-to-many association between two models.

    Example:
        >>> things = belongs_to_many(User, Thing, "user_things", "userId", "thingId")
    """
    parent_key = parent_key or owner.__primary_key__
    related_key = related_key or related.__primary_key__

    if parent_key is None or parent_key not in owner.__columns__:
        raise RelationshipError(f"{owner.__name__} has no key column {parent_key!r}")
    if related_key is None or related_key not in related.__columns__:
        raise RelationshipError(f"{related.__name__} has no key column {related_key!r}")
    if foreign_pivot_key == related_pivot_key:
        raise RelationshipError(
            f"Pivot table {pivot_table!r} needs two distinct foreign keys, got {foreign_pivot_key!r} twice"
        )

    return ManyToMany(
        owner=owner,
        related=related,
        pivot_table=pivot_table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        parent_key=parent_key,
        related_key=related_key,
        pivot_id=pivot_id,
    )


@dataclass
class RelationshipInfo:
    """Stores metadata about a many-to-many relationship between models."""

    secondary: str
    name: str | None = None
    foreign_pivot_key: str | None = None
    related_pivot_key: str | None = None
    parent_key: str | None = None
    related_key: str | None = None
    pivot_id: str | None = "id"
    lazy: str = "select"  # select, noload

    # Resolved at runtime
    descriptor: ManyToMany | None = field(default=None, repr=False)

    def resolve(self, owner_model: type[Base], attr_name: str, type_hint: Any) -> None:
        """Resolve the target model and the pivot columns."""
        self.name = attr_name

        target_name = self._extract_target_from_hint(type_hint)
        target_model = get_model(target_name) if target_name else None
        if target_model is None:
            return

        # Junction table column naming convention: {table}_id
        # e.g., users -> user_id, things -> thing_id
        self.descriptor = belongs_to_many(
            owner_model,
            target_model,
            self.secondary,
            self.foreign_pivot_key or f"{_singular(owner_model.__tablename__)}_id",
            self.related_pivot_key or f"{_singular(target_model.__tablename__)}_id",
            parent_key=self.parent_key,
            related_key=self.related_key,
            pivot_id=self.pivot_id,
        )

    def _extract_target_from_hint(self, hint: Any) -> str | None:
        """Extract target model name from ``Mapped[list[T]]``."""
        args = typing.get_args(hint)
        if not args:
            return None

        inner = args[0]
        if typing.get_origin(inner) is list:
            inner_args = typing.get_args(inner)
            if inner_args:
                inner = inner_args[0]

        if isinstance(inner, str):
            return inner
        elif isinstance(inner, type):
            return inner.__name__
        elif hasattr(inner, "__forward_arg__"):
            return inner.__forward_arg__

        return None


def _singular(table: str) -> str:
    return table[:-1] if table.endswith("s") else table


def relationship(
    *,
    secondary: str,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    parent_key: str | None = None,
    related_key: str | None = None,
    pivot_id: str | None = "id",
    lazy: str = "select",
) -> Any:
    """Define a many-to-many relationship through a pivot table.

    Args:
        secondary: Pivot table name
        foreign_pivot_key: Pivot column referencing the owner (default ``{owner}_id``)
        related_pivot_key: Pivot column referencing the related model (default ``{related}_id``)
        parent_key: Owner column the pivot references (default: owner primary key)
        related_key: Related column the pivot references (default: related primary key)
        pivot_id: The pivot table's own primary key column, or None
        lazy: "select" (load on request) or "noload" (always empty unless loaded)

    Example:
        >>> class User(Base):
        ...     things: Mapped[list["Thing"]] = relationship(
        ...         secondary="user_things",
        ...         foreign_pivot_key="userId",
        ...         related_pivot_key="thingId",
        ...     )
    """
    if lazy not in ("select", "noload"):
        raise ValueError(f"Unsupported lazy strategy: {lazy!r}")
    return RelationshipInfo(
        secondary=secondary,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        parent_key=parent_key,
        related_key=related_key,
        pivot_id=pivot_id,
        lazy=lazy,
    )


def selectinload(attr: str | RelationshipInfo) -> LoadOption:
    """Eager load a relationship for every result with one extra SELECT.

    Example:
        >>> users = await session.query(User).options(selectinload("things")).all()
    """
    return LoadOption("selectin", attr)


def noload(attr: str | RelationshipInfo) -> LoadOption:
    """Mark a relationship as loaded-and-empty without querying.

    Example:
        >>> users = await session.query(User).options(noload("things")).all()
    """
    return LoadOption("noload", attr)


@dataclass
class LoadOption:
    """Represents a relationship loading option."""

    strategy: str  # "selectin", "noload"
    attribute: str | RelationshipInfo

    @property
    def attr_name(self) -> str:
        """Get the attribute name regardless of how it was specified."""
        if isinstance(self.attribute, str):
            return self.attribute
        return self.attribute.name or ""

    def __repr__(self) -> str:
        return f"<LoadOption {self.strategy} {self.attr_name}>"
