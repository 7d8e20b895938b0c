"""pivotorm - an async SQLite ORM with eager and streaming many-to-many loading."""

from __future__ import annotations

from dataclasses import replace

from pivotorm.base import Base
from pivotorm.config import EngineConfig
from pivotorm.engine import ConnectionPool, QueryResult, create_pool
from pivotorm.exceptions import (
    AmbiguousColumnError,
    ConnectionFailure,
    ConstraintViolation,
    NoSuchColumnError,
    NotFound,
    OrmError,
    RelationshipError,
)
from pivotorm.fields import ForeignKey, Mapped, mapped_column
from pivotorm.hydration import Pivot, hydrate, is_dirty, mark_mutated
from pivotorm.loading import ManyToManyLoader, RecordCursor
from pivotorm.mixins import SoftDeleteMixin, TimestampMixin
from pivotorm.query import ColumnMap, PivotSelect, delete, insert, select, update
from pivotorm.relationships import ManyToMany, belongs_to_many, noload, relationship, selectinload
from pivotorm.schema import create_all, drop_all
from pivotorm.session import AsyncSession, Query, RelatedQuery, create_session, session_context

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_engine",
    "create_pool",
    "create_session",
    "session_context",
    "ConnectionPool",
    "EngineConfig",
    "QueryResult",
    "AsyncSession",
    "Query",
    "RelatedQuery",
    # Model definition
    "Base",
    "Mapped",
    "mapped_column",
    "ForeignKey",
    "SoftDeleteMixin",
    "TimestampMixin",
    "relationship",
    "belongs_to_many",
    "ManyToMany",
    # Query building
    "select",
    "insert",
    "update",
    "delete",
    "ColumnMap",
    "PivotSelect",
    # Loading and hydration
    "ManyToManyLoader",
    "RecordCursor",
    "Pivot",
    "hydrate",
    "is_dirty",
    "mark_mutated",
    "selectinload",
    "noload",
    # Schema
    "create_all",
    "drop_all",
    # Errors
    "OrmError",
    "NotFound",
    "ConnectionFailure",
    "ConstraintViolation",
    "AmbiguousColumnError",
    "NoSuchColumnError",
    "RelationshipError",
]


async def create_engine(
    url: str | None = None,
    *,
    config: EngineConfig | None = None,
) -> ConnectionPool:
    """Open a database connection.

    Args:
        url: Database connection URL, ``sqlite::memory:`` or
            ``sqlite:///path/to/db.sqlite``. Overrides ``config.url``.
        config: Full engine settings; defaults to :class:`EngineConfig`.

    Example:
        >>> engine = await create_engine("sqlite:///app.db")
        >>> engine = await create_engine(config=EngineConfig.from_env())
    """
    config = config or EngineConfig()
    if url is not None:
        config = replace(config, url=url)
    return await create_pool(config)
