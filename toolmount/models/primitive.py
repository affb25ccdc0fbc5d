"""
toolmount.models.primitive - Primitive and Execution History Models

Primitives are callable operations stored as data. Every invocation that
reaches the runtime leaves an append-only PrimitiveExecution row.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from toolmount.models.base import Base, JSONType, TimestampedModel, utcnow


class Primitive(TimestampedModel, Base):
    """
    A named, schema-described callable operation.

    Example:
        >>> primitive = Primitive(
        ...     name="echo",
        ...     description="Return the input unchanged",
        ...     input_schema={"type": "object", "properties": {"message": {"type": "string"}}},
        ...     handler="return input",
        ...     timeout_ms=30000,
        ... )
    """

    __tablename__ = "primitives"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        comment="Unique identifier",
    )

    # Identity
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Globally unique snake_case name",
    )

    # Descriptive
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    tags: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Discovery tags",
    )
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="FREE",
        comment="FREE or PROPRIETARY",
    )

    # Contract / behavior
    input_schema: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Declarative parameter schema",
    )
    handler: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Python source of the handler body",
    )

    # Execution policy
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=30_000)
    sandboxed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Lifecycle
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Mounted (True) or dismounted (False)",
    )
    built_in: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Seeded primitive; rejects update and delete",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on every update",
    )

    def __repr__(self) -> str:
        return f"<Primitive(id={self.id}, name={self.name}, version={self.version})>"


class PrimitiveExecution(Base):
    """
    Append-only record of one invocation.

    Kept after the primitive is deleted (primitive_id becomes NULL, the
    denormalized primitive_name stays) so the audit trail is complete.
    """

    __tablename__ = "primitive_executions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    primitive_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("primitives.id", ondelete="SET NULL"),
        nullable=True,
        comment="Primitive invoked (NULL once deleted)",
    )
    primitive_name: Mapped[str] = mapped_column(String(100), nullable=False)

    input: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    output: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    outcome: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="success, validation_failed, timeout, error",
    )
    execution_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    security_warnings: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    agent_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # History of one primitive, most recent first
        Index("idx_executions_primitive_time", "primitive_id", "started_at"),
        # Rolling 24h counts
        Index("idx_executions_started", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PrimitiveExecution(id={self.id}, primitive={self.primitive_name}, "
            f"outcome={self.outcome})>"
        )


__all__ = ["Primitive", "PrimitiveExecution"]
