"""
Base models and mixins for SQLAlchemy ORM.

Provides the declarative base, mixins for timestamps and UUID keys,
and common utilities for entities managed through the repositories.
"""

from datetime import datetime, timezone
from typing import Any, Iterable
import uuid

from sqlalchemy import Column, DateTime, String, inspect
from sqlalchemy.orm import declarative_base


# SQLAlchemy declarative base for all ORM models
Base = declarative_base()


def utc_now() -> datetime:
    """Current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at timestamp columns.

    Attributes:
        created_at: When the record was created (set once on insert)
        updated_at: When the record was last updated (refreshed on every update)
    """

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        doc="UTC timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        doc="UTC timestamp when record was last updated"
    )


class UUIDMixin:
    """
    Mixin that adds a UUID primary key column.

    Uses a string column so the same model works on SQLite and PostgreSQL.
    The key is generated client-side on insert when not set by the caller.

    Attributes:
        id: UUID primary key as TEXT
    """

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        doc="UUID primary key"
    )


class ModelMixin:
    """
    Mixin providing dictionary conversion and a short repr.

    Both go through the mapper, so attribute names are used even where they
    differ from the underlying column names.
    """

    def to_dict(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """
        Mapped column attributes as a dictionary.

        Args:
            exclude: Attribute names to leave out

        Note:
            Relationships are not followed.
        """
        skip = set(exclude)
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(type(self)).column_attrs
            if attr.key not in skip
        }

    def __repr__(self) -> str:
        """Class name plus primary key values, e.g. "City(id=3)"."""
        mapper = inspect(type(self))
        keys = ", ".join(
            f"{mapper.get_property_by_column(column).key}="
            f"{getattr(self, mapper.get_property_by_column(column).key)!r}"
            for column in mapper.primary_key
        )
        return f"{type(self).__name__}({keys})"
