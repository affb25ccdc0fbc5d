"""
toolmount.models.primitive_data - Handler Data Documents

JSON documents handlers read and write through ``context.db``. Rows are
namespaced by primitive name so a handler only ever sees its own data.
"""

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from toolmount.models.base import Base, JSONType, TimestampedModel


class PrimitiveDocument(TimestampedModel, Base):
    """One JSON value stored under (namespace, collection, key)."""

    __tablename__ = "primitive_data"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    namespace: Mapped[str] = mapped_column(String(100), nullable=False)
    collection: Mapped[str] = mapped_column(String(100), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        UniqueConstraint("namespace", "collection", "key", name="uq_primitive_data_key"),
        Index("idx_primitive_data_collection", "namespace", "collection"),
    )

    def __repr__(self) -> str:
        return f"<PrimitiveDocument({self.namespace}/{self.collection}/{self.key})>"


__all__ = ["PrimitiveDocument"]
