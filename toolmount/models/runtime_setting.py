"""
toolmount.models.runtime_setting - Persisted Runtime Settings

Key/value rows holding runtime state that must survive restarts
(the permission gate lives under key "permission_gate").
"""

from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from toolmount.models.base import Base, JSONType, TimestampedModel


class RuntimeSetting(TimestampedModel, Base):
    """A single settings document keyed by name."""

    __tablename__ = "runtime_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<RuntimeSetting(key={self.key})>"


__all__ = ["RuntimeSetting"]
