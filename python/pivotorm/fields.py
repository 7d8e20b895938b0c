"""Column and field definitions for ORM models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Example:
        >>> class Thing(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     title: Mapped[str] = mapped_column(max_length=100)
        ...     note: Mapped[str | None] = mapped_column(nullable=True)
    """

    pass


@dataclass
class ForeignKey:
    """Defines a foreign key reference to another table.

    Example:
        >>> class Comment(Base):
        ...     thing_id: Mapped[int] = mapped_column(ForeignKey("things.id"))
    """

    target: str
    ondelete: str | None = None

    @property
    def table(self) -> str:
        """Get the target table name."""
        return self.target.split(".")[0]

    @property
    def column(self) -> str:
        """Get the target column name."""
        parts = self.target.split(".")
        return parts[1] if len(parts) > 1 else "id"


@dataclass
class ColumnInfo:
    """Stores metadata about a database column."""

    name: str | None = None
    python_type: type | None = None
    primary_key: bool = False
    nullable: bool = False
    unique: bool = False
    index: bool = False
    default: Any = None
    max_length: int | None = None
    foreign_key: ForeignKey | None = None
    autoincrement: bool | None = None

    def sql_type(self) -> str:
        """Get the SQLite type for this column."""
        python_type = self.python_type
        if python_type is bool or python_type is int:
            return "INTEGER"
        if python_type is float:
            return "REAL"
        if python_type is bytes:
            return "BLOB"
        if python_type is datetime:
            return "TIMESTAMP"
        if python_type is str and self.max_length:
            return f"VARCHAR({self.max_length})"
        return "TEXT"

    def to_python(self, value: Any) -> Any:
        """Convert a value read from SQLite into this column's Python type."""
        if value is None:
            return None
        if self.python_type is datetime and isinstance(value, str):
            return datetime.fromisoformat(value)
        if self.python_type is date and isinstance(value, str):
            return date.fromisoformat(value)
        if self.python_type is bool and isinstance(value, int):
            return bool(value)
        return value

    def to_db(self, value: Any) -> Any:
        """Convert a Python value into something sqlite3 binds natively."""
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value


def mapped_column(
    foreign_key: ForeignKey | None = None,
    /,
    *,
    primary_key: bool = False,
    nullable: bool = False,
    unique: bool = False,
    index: bool = False,
    default: Any = None,
    max_length: int | None = None,
    autoincrement: bool | None = None,
) -> Any:
    """Define a database column.

    Args:
        foreign_key: Optional ForeignKey for this column
        primary_key: Whether this is a primary key column
        nullable: Whether NULL values are allowed
        unique: Whether values must be unique
        index: Whether to create an index on this column
        default: Default value (can be callable)
        max_length: Maximum length for string columns
        autoincrement: Whether to auto-increment (for integer PKs)

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> title: Mapped[str] = mapped_column(max_length=100, index=True)
        >>> owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    """
    # Primary keys are not nullable by default
    if primary_key:
        nullable = False
        if autoincrement is None:
            autoincrement = True

    return ColumnInfo(
        primary_key=primary_key,
        nullable=nullable,
        unique=unique,
        index=index,
        default=default,
        max_length=max_length,
        foreign_key=foreign_key,
        autoincrement=autoincrement,
    )
