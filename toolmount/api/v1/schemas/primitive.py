"""
toolmount.api.v1.schemas.primitive - Primitive API Schemas

Request/response shapes for the primitives endpoints. Create and update
bodies are the core PrimitiveDefinition / PrimitiveUpdate models.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from toolmount.core.tools.base import (
    ExecutionOutcome,
    MountedTool,
    PrimitiveSnapshot,
    PrimitiveTier,
)


class PrimitiveResponse(BaseModel):
    """Schema for primitive response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    icon: str | None = None
    tier: PrimitiveTier
    input_schema: dict[str, Any]
    handler: str
    timeout_ms: int
    sandboxed: bool
    enabled: bool
    built_in: bool
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Runtime status (not from DB, read from the mount cache)
    is_mounted: bool = False
    invocation_count: int = 0
    last_invoked: datetime | None = None

    @classmethod
    def build(
        cls, primitive: PrimitiveSnapshot, mounted: MountedTool | None
    ) -> "PrimitiveResponse":
        response = cls.model_validate(primitive.model_dump())
        if mounted is not None:
            response.is_mounted = True
            response.invocation_count = mounted.invocation_count
            response.last_invoked = mounted.last_invoked
        return response


class PrimitiveListResponse(BaseModel):
    """Schema for primitive list."""

    items: list[PrimitiveResponse]
    total: int


class ExecuteRequest(BaseModel):
    """Schema for executing or testing a primitive."""

    input: dict[str, Any] = Field(default_factory=dict, description="Handler arguments")
    agent_id: str | None = None
    user_id: str | None = None


class ExecutionRecordResponse(BaseModel):
    """Schema for one execution history record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    primitive_id: UUID | None = None
    primitive_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any | None = None
    error: str | None = None
    success: bool
    outcome: ExecutionOutcome
    execution_time_ms: float
    security_warnings: list[str] = Field(default_factory=list)
    agent_id: str | None = None
    user_id: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class ExecutionListResponse(BaseModel):
    """Schema for paginated execution history."""

    items: list[ExecutionRecordResponse]
    total: int
    page: int
    page_size: int
    pages: int
