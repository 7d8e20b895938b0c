"""Exception hierarchy for pivotorm.

Callers can tell "no such row" (:class:`NotFound`) apart from driver
failures (:class:`ConnectionFailure`) and integrity errors
(:class:`ConstraintViolation`).
"""

from __future__ import annotations

from typing import Any


class OrmError(Exception):
    """Base class for all pivotorm errors."""


class NotFound(OrmError, LookupError):
    """No row exists for the given model and primary key."""

    def __init__(self, model: type, key: Any) -> None:
        self.model = model
        self.key = key
        super().__init__(f"{model.__name__} with {_pk_name(model)}={key!r} not found")


class ConnectionFailure(OrmError):
    """The database connection failed or was closed while in use."""


class ConstraintViolation(OrmError):
    """A unique or foreign-key constraint rejected a write."""


class AmbiguousColumnError(OrmError):
    """Two selected columns would share the same result alias."""


class NoSuchColumnError(KeyError, OrmError):
    """A result row has no column for a mapped alias."""

    def __str__(self) -> str:
        # KeyError.__str__ repr()s the message
        return str(self.args[0]) if self.args else ""


class RelationshipError(OrmError):
    """A relationship is unknown, unresolved, or not loaded."""


def _pk_name(model: type) -> str:
    return getattr(model, "__primary_key__", None) or "id"
