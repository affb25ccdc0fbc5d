"""Create primitive registry tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 12:00:00.000000

This migration adds:
- primitives: Primitive definitions (the registry store)
- primitive_executions: Append-only execution history
- primitive_data: JSON documents handlers reach through context.db
- runtime_settings: Persisted runtime state (permission gate)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
            comment="When this record was created (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
            comment="When this record was last updated (UTC)",
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "primitives",
        sa.Column("id", sa.Uuid(), nullable=False, comment="Unique identifier"),
        sa.Column(
            "name",
            sa.String(length=100),
            nullable=False,
            comment="Globally unique snake_case name",
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("tags", JSON, nullable=False, comment="Discovery tags"),
        sa.Column("icon", sa.String(length=50), nullable=True),
        sa.Column(
            "tier",
            sa.String(length=20),
            server_default="FREE",
            nullable=False,
            comment="FREE or PROPRIETARY",
        ),
        sa.Column("input_schema", JSON, nullable=False, comment="Declarative parameter schema"),
        sa.Column("handler", sa.Text(), nullable=False, comment="Python source of the handler body"),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("sandboxed", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column(
            "enabled",
            sa.Boolean(),
            server_default=sa.true(),
            nullable=False,
            comment="Mounted (True) or dismounted (False)",
        ),
        sa.Column(
            "built_in",
            sa.Boolean(),
            server_default=sa.false(),
            nullable=False,
            comment="Seeded primitive; rejects update and delete",
        ),
        sa.Column(
            "version",
            sa.Integer(),
            server_default="1",
            nullable=False,
            comment="Incremented on every update",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_primitives_category", "primitives", ["category"])
    op.create_index("ix_primitives_enabled", "primitives", ["enabled"])

    op.create_table(
        "primitive_executions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "primitive_id",
            sa.Uuid(),
            nullable=True,
            comment="Primitive invoked (NULL once deleted)",
        ),
        sa.Column("primitive_name", sa.String(length=100), nullable=False),
        sa.Column("input", JSON, nullable=False),
        sa.Column("output", JSON, nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "outcome",
            sa.String(length=30),
            nullable=False,
            comment="success, validation_failed, timeout, error",
        ),
        sa.Column("execution_time_ms", sa.Float(), nullable=False),
        sa.Column("security_warnings", JSON, nullable=False),
        sa.Column("agent_id", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.String(length=100), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["primitive_id"], ["primitives.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_executions_primitive_time",
        "primitive_executions",
        ["primitive_id", "started_at"],
    )
    op.create_index("idx_executions_started", "primitive_executions", ["started_at"])

    op.create_table(
        "primitive_data",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("namespace", sa.String(length=100), nullable=False),
        sa.Column("collection", sa.String(length=100), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", JSON, nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("namespace", "collection", "key", name="uq_primitive_data_key"),
    )
    op.create_index(
        "idx_primitive_data_collection",
        "primitive_data",
        ["namespace", "collection"],
    )

    op.create_table(
        "runtime_settings",
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", JSON, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("runtime_settings")
    op.drop_index("idx_primitive_data_collection", table_name="primitive_data")
    op.drop_table("primitive_data")
    op.drop_index("idx_executions_started", table_name="primitive_executions")
    op.drop_index("idx_executions_primitive_time", table_name="primitive_executions")
    op.drop_table("primitive_executions")
    op.drop_index("ix_primitives_enabled", table_name="primitives")
    op.drop_index("ix_primitives_category", table_name="primitives")
    op.drop_table("primitives")
