"""Declarative base for ORM models."""

from __future__ import annotations

import inspect
import sys
import types
import typing
from dataclasses import replace
from types import MappingProxyType
from typing import Any, ClassVar

from pivotorm.fields import ColumnInfo, Mapped
from pivotorm.relationships import RelationshipInfo, model_registry, register_model

_UNION_TYPES = (typing.Union, types.UnionType)
_UNSET = object()


class ModelMeta(type):
    """Metaclass for ORM models that processes field definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Base class itself
        if name == "Base" and not bases:
            return cls

        tablename = namespace.get("__tablename__") or name.lower() + "s"
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        columns: dict[str, ColumnInfo] = {}
        relationships: dict[str, RelationshipInfo] = {}
        annotations = _own_annotations(cls)

        for attr_name, attr_value in namespace.items():
            if attr_name.startswith("_"):
                continue

            if isinstance(attr_value, ColumnInfo):
                attr_value.name = attr_name
                hint = _resolve_hint(cls, attr_name, annotations.get(attr_name))
                if hint is not None:
                    python_type, nullable = _extract_mapped_type(hint)
                    attr_value.python_type = attr_value.python_type or python_type
                    attr_value.nullable = attr_value.nullable or nullable
                columns[attr_name] = attr_value
            elif isinstance(attr_value, RelationshipInfo):
                attr_value.name = attr_name
                relationships[attr_name] = attr_value
                # Stored in __relationships__; instance access goes through __getattr__
                delattr(cls, attr_name)

        # Bare ``Mapped[T]`` annotations auto-generate a column
        for attr_name, annotation in annotations.items():
            if attr_name.startswith("_") or attr_name in columns or attr_name in relationships:
                continue
            hint = _resolve_hint(cls, attr_name, annotation)
            if hint is None or typing.get_origin(hint) is not Mapped:
                continue
            python_type, nullable = _extract_mapped_type(hint)
            columns[attr_name] = ColumnInfo(name=attr_name, python_type=python_type, nullable=nullable)

        # Declaration order
        position = {attr_name: i for i, attr_name in enumerate(annotations)}
        columns = dict(sorted(columns.items(), key=lambda item: position.get(item[0], len(position))))

        # Columns from parent models and mixins, cloned so that subclasses
        # never share a ColumnInfo
        for klass in cls.__mro__[1:]:
            parent_columns = vars(klass).get("__columns__")
            for attr_name, attr_value in (parent_columns or vars(klass)).items():
                if attr_name.startswith("_") or attr_name in columns:
                    continue
                if isinstance(attr_value, ColumnInfo):
                    columns[attr_name] = replace(attr_value, name=attr_name)

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__relationships__ = relationships  # type: ignore[attr-defined]
        cls.__primary_key__ = next(  # type: ignore[attr-defined]
            (col_name for col_name, col in columns.items() if col.primary_key), None
        )
        cls.__relationships_resolved__ = not relationships  # type: ignore[attr-defined]

        register_model(cls)  # type: ignore[arg-type]
        return cls

    def _resolve_relationships(cls) -> None:
        """Resolve all relationships after all models are defined."""
        if cls.__relationships_resolved__:
            return

        annotations = _own_annotations(cls)
        for rel_name, rel_info in cls.__relationships__.items():
            if rel_info.descriptor is None:
                hint = _resolve_hint(cls, rel_name, annotations.get(rel_name), extra=model_registry())
                rel_info.resolve(cls, rel_name, hint)  # type: ignore[arg-type]

        cls.__relationships_resolved__ = all(  # type: ignore[attr-defined]
            rel_info.descriptor is not None for rel_info in cls.__relationships__.values()
        )


def _own_annotations(cls: type) -> dict[str, Any]:
    try:
        return dict(inspect.get_annotations(cls))
    except NameError:
        # Annotations reference models that are not defined yet
        return {}


def _resolve_hint(cls: type, attr_name: str, annotation: Any, extra: dict[str, Any] | None = None) -> Any:
    """Resolve one (possibly string) annotation in the model's module namespace.

    Returns None while the annotation names a model that is not defined yet.
    """
    if annotation is None:
        return None
    module = sys.modules.get(cls.__module__)
    globalns = dict(getattr(module, "__dict__", {}))
    globalns.setdefault("Mapped", Mapped)
    if extra:
        globalns.update(extra)
    # One annotation per holder, so one forward reference can't hide the rest
    holder = type(cls.__name__, (), {"__annotations__": {attr_name: annotation}})
    try:
        hints = typing.get_type_hints(holder, globalns=globalns, localns={})
    except (NameError, TypeError):
        return None
    return hints.get(attr_name)


def _extract_mapped_type(hint: Any) -> tuple[type | None, bool]:
    """Extract the inner type from ``Mapped[T]``, and whether it is Optional."""
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        hint = args[0] if args else None

    if typing.get_origin(hint) in _UNION_TYPES:
        args = typing.get_args(hint)
        non_none = [a for a in args if a is not type(None)]
        inner = non_none[0] if len(non_none) == 1 else None
        return (inner if isinstance(inner, type) else None), len(non_none) < len(args)

    return (hint if isinstance(hint, type) else None), False


class Base(metaclass=ModelMeta):
    """Base class for all ORM models.

    Instances hydrated from the database carry a snapshot of their column
    values taken at load time. :meth:`is_dirty` compares the current values
    against that snapshot.

    Example:
        >>> class Thing(Base):
        ...     __tablename__ = "things"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     title: Mapped[str] = mapped_column(max_length=100)
    """

    __tablename__: ClassVar[str]
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __relationships__: ClassVar[dict[str, RelationshipInfo]]
    __primary_key__: ClassVar[str | None]
    __relationships_resolved__: ClassVar[bool]

    _loaded_relationships: dict[str, Any]
    _original: MappingProxyType[str, Any]
    _exists: bool

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a model instance with the given column values."""
        object.__setattr__(self, "_loaded_relationships", {})
        object.__setattr__(self, "_original", MappingProxyType({}))
        object.__setattr__(self, "_exists", False)

        for key, value in kwargs.items():
            if key in self.__columns__:
                setattr(self, key, value)
            elif key in self.__relationships__:
                self._set_relationship(key, value)
            else:
                raise TypeError(f"Unknown column or relationship: {key}")

        # Set defaults only for columns that were not provided.
        for col_name, col_info in self.__columns__.items():
            if col_name in kwargs:
                continue
            if col_info.default is not None:
                default = col_info.default() if callable(col_info.default) else col_info.default
                setattr(self, col_name, default)
            elif col_info.nullable:
                setattr(self, col_name, None)

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk and pk in vars(self):
            return f"<{self.__class__.__name__} {pk}={getattr(self, pk)!r}>"
        return f"<{self.__class__.__name__}>"

    def __getattr__(self, name: str) -> Any:
        """Handle access to relationship attributes."""
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        relationships = type(self).__relationships__
        if name in relationships:
            loaded = self.__dict__.get("_loaded_relationships", {})
            if name in loaded:
                return loaded[name]

            rel_info = relationships[name]
            if rel_info.lazy == "noload":
                return []
            raise AttributeError(
                f"Relationship '{name}' is not loaded. "
                "Use selectinload(), await session.load(instance, ...), "
                "or await session.related(instance, ...).all()."
            )

        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def _set_relationship(self, name: str, value: Any) -> None:
        """Set a loaded relationship value."""
        self.__dict__.setdefault("_loaded_relationships", {})[name] = value

    # ========== Dirty Tracking ==========

    @property
    def exists(self) -> bool:
        """Whether this instance was loaded from, or written to, the database."""
        return self.__dict__.get("_exists", False)

    def get_original(self, field: str | None = None) -> Any:
        """Get the value of ``field`` at load time, or the whole snapshot."""
        original = self.__dict__.get("_original", MappingProxyType({}))
        if field is None:
            return original
        return original.get(field)

    def get_dirty(self) -> dict[str, Any]:
        """Return columns whose current value differs from the snapshot."""
        original = self.get_original()
        dirty: dict[str, Any] = {}
        for col_name in self.__columns__:
            current = self.__dict__.get(col_name, _UNSET)
            if current is _UNSET:
                continue
            if col_name not in original or original[col_name] != current:
                dirty[col_name] = current
        return dirty

    def is_dirty(self, *fields: str) -> bool:
        """Check whether any (or any of the given) columns changed since load.

        Example:
            >>> thing.title = "Renamed"
            >>> thing.is_dirty()
            True
            >>> thing.is_dirty("id")
            False
        """
        dirty = self.get_dirty()
        if not fields:
            return bool(dirty)
        return any(field in dirty for field in fields)

    def fill(self, **values: Any) -> Base:
        """Assign several column values at once."""
        for key, value in values.items():
            if key not in self.__columns__:
                raise TypeError(f"Unknown column: {key}")
            setattr(self, key, value)
        return self

    def sync_original(self, *fields: str) -> None:
        """Take a new snapshot of the current column values.

        With ``fields``, only those columns are re-snapshotted; any other
        pending change stays dirty.
        """
        names = fields or tuple(self.__columns__)
        snapshot = dict(self.get_original())
        snapshot.update({name: self.__dict__[name] for name in names if name in self.__dict__})
        object.__setattr__(self, "_original", MappingProxyType(snapshot))

    # ========== Conversion ==========

    def to_dict(self, include_relationships: bool = False) -> dict[str, Any]:
        """Convert model instance to a dictionary."""
        result = {
            col_name: self.__dict__[col_name]
            for col_name in self.__columns__
            if col_name in self.__dict__
        }

        if include_relationships:
            for rel_name, rel_value in self.__dict__.get("_loaded_relationships", {}).items():
                result[rel_name] = [item.to_dict() for item in rel_value]

        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Base:
        """Create a model instance from a dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__columns__})

    @classmethod
    def _from_row(cls, data: dict[str, Any]) -> Base:
        """Build a persisted instance from column values - skips validation.

        Values are converted to the column's Python type and a snapshot is
        taken so the instance starts out clean.
        """
        instance = object.__new__(cls)
        object.__setattr__(instance, "_loaded_relationships", {})
        object.__setattr__(instance, "_exists", True)

        cols = cls.__columns__
        for key, value in data.items():
            col_info = cols.get(key)
            if col_info is not None:
                object.__setattr__(instance, key, col_info.to_python(value))

        instance.sync_original()
        return instance
