"""Mixins for common model patterns."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import ClassVar

from pivotorm.fields import ColumnInfo


def utcnow() -> datetime:
    return datetime.now(UTC)


class SoftDeleteMixin:
    """Mixin that adds soft delete functionality to models.

    Adds a ``deleted_at`` column. Rows with ``deleted_at`` set are excluded
    from queries and from related-record loading unless asked for.

    Example:
        >>> class Thing(Base, SoftDeleteMixin):
        ...     __tablename__ = "things"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     title: Mapped[str]
        >>>
        >>> things = await session.query(Thing).all()  # live rows only
        >>> everything = await session.query(Thing).with_deleted().all()
        >>> await session.soft_delete(thing)
        >>> await session.restore(thing)
    """

    __soft_delete__: ClassVar[bool] = True

    deleted_at = ColumnInfo(python_type=datetime, nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        """Check if this instance is soft-deleted."""
        return self.__dict__.get("deleted_at") is not None

    def mark_deleted(self) -> None:
        """Mark this instance as deleted (sets deleted_at to now)."""
        self.deleted_at = utcnow()  # type: ignore[assignment]

    def mark_restored(self) -> None:
        """Restore a soft-deleted instance (clears deleted_at)."""
        self.deleted_at = None  # type: ignore[assignment]


class TimestampMixin:
    """Mixin that adds ``created_at``/``updated_at`` columns.

    The session fills both on insert and bumps ``updated_at`` whenever it
    saves dirty changes.
    """

    __timestamps__: ClassVar[bool] = True

    created_at = ColumnInfo(python_type=datetime, nullable=True)
    updated_at = ColumnInfo(python_type=datetime, nullable=True)

    def touch(self, now: datetime | None = None) -> None:
        """Set ``updated_at`` (and ``created_at`` if unset) to ``now``."""
        now = now or utcnow()
        if self.__dict__.get("created_at") is None:
            self.created_at = now  # type: ignore[assignment]
        self.updated_at = now  # type: ignore[assignment]
