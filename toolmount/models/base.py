"""
toolmount.models.base - Base SQLAlchemy Models

Provides base classes with common functionality:
- Base: SQLAlchemy declarative base
- TimestampedModel: Automatic created_at/updated_at timestamps
- JSONType: JSON column stored as JSONB on PostgreSQL
"""

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.

    All models inherit from this class.
    """

    pass


class TimestampedModel:
    """
    Mixin for models with automatic timestamps.

    Provides:
    - created_at: Set on insert
    - updated_at: Set on insert, updated on every update
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="When this record was created (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        comment="When this record was last updated (UTC)",
    )
