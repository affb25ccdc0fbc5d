"""
toolmount.core.tools.base - Base Tool Definitions

Core interfaces and data models for the primitive registry and runtime.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# snake_case, must start with a letter
PRIMITIVE_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"

DEFAULT_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class PrimitiveTier(StrEnum):
    """Licensing tier of a primitive (reported by registry stats)."""

    FREE = "FREE"
    PROPRIETARY = "PROPRIETARY"


class ExecutionOutcome(StrEnum):
    """Terminal outcome of one invocation."""

    SUCCESS = "success"
    VALIDATION_FAILED = "validation_failed"
    TIMEOUT = "timeout"
    ERROR = "error"
    NOT_APPROVED = "not_approved"


class ApprovalPolicy(StrEnum):
    """
    When an agent-facing tool needs an external approval decision.

    - NEVER: read-only or de-escalating operations
    - ASK_MODE: only while the permission gate is in ask mode
    - ALWAYS: even in autonomous mode (e.g. enabling autonomous mode)
    """

    NEVER = "never"
    ASK_MODE = "ask_mode"
    ALWAYS = "always"


class PrimitiveDefinition(BaseModel):
    """
    Definition submitted to create a primitive.

    Example:
        >>> echo = PrimitiveDefinition(
        ...     name="echo",
        ...     description="Return the input unchanged",
        ...     input_schema={
        ...         "type": "object",
        ...         "properties": {"message": {"type": "string"}},
        ...         "required": ["message"],
        ...     },
        ...     handler="return input",
        ... )
    """

    # Identity
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=PRIMITIVE_NAME_PATTERN,
        description="Unique snake_case name (e.g., 'get_product_by_sku')",
    )

    # Descriptive
    description: str = Field(..., min_length=1, description="What this primitive does")
    category: str | None = Field(default=None, max_length=50)
    tags: list[str] = Field(default_factory=list, description="Tags for discovery")
    icon: str | None = Field(default=None, max_length=50)
    tier: PrimitiveTier = PrimitiveTier.FREE

    # Contract
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_INPUT_SCHEMA),
        description="JSON schema for the primitive's parameters",
    )

    # Behavior
    handler: str = Field(..., min_length=1, description="Python source of the handler body")

    # Execution policy (clamped by the registry into the enforced range)
    timeout_ms: int | None = Field(default=None, description="Deadline in milliseconds")
    sandboxed: bool = True

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "echo",
                "description": "Return the input unchanged",
                "category": "utility",
                "tags": ["debug"],
                "input_schema": {
                    "type": "object",
                    "properties": {"message": {"type": "string"}},
                    "required": ["message"],
                },
                "handler": "return input",
                "timeout_ms": 5000,
            }
        }
    )


class PrimitiveUpdate(BaseModel):
    """Partial update of a primitive; only explicitly set fields are applied."""

    name: str | None = Field(
        default=None, min_length=1, max_length=100, pattern=PRIMITIVE_NAME_PATTERN
    )
    description: str | None = Field(default=None, min_length=1)
    category: str | None = Field(default=None, max_length=50)
    tags: list[str] | None = None
    icon: str | None = Field(default=None, max_length=50)
    tier: PrimitiveTier | None = None
    input_schema: dict[str, Any] | None = None
    handler: str | None = Field(default=None, min_length=1)
    timeout_ms: int | None = None
    sandboxed: bool | None = None


class PrimitiveSnapshot(BaseModel):
    """
    Immutable view of a persisted primitive.

    The mount cache and the runtime only ever hold snapshots, never ORM rows,
    so a cached entry can't change underneath a running invocation.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    name: str
    description: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    icon: str | None = None
    tier: PrimitiveTier = PrimitiveTier.FREE
    input_schema: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_INPUT_SCHEMA))
    handler: str
    timeout_ms: int
    sandboxed: bool = True
    enabled: bool = True
    built_in: bool = False
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MountedTool(BaseModel):
    """
    Runtime-visible wrapper around an enabled primitive.

    Counters are advisory, in-memory statistics; they are never persisted
    directly and may drift from the execution history under concurrency.
    """

    primitive: PrimitiveSnapshot
    mounted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    invocation_count: int = Field(default=0, ge=0)
    last_invoked: datetime | None = None

    @property
    def id(self) -> UUID:
        return self.primitive.id

    @property
    def name(self) -> str:
        return self.primitive.name


class ExecutionResult(BaseModel):
    """
    Result of one primitive invocation.

    Captures outcome, timing, and any validation errors or advisory
    security warnings.

    Example:
        >>> result = ExecutionResult(
        ...     success=True,
        ...     outcome=ExecutionOutcome.SUCCESS,
        ...     result={"message": "hi"},
        ...     execution_time_ms=3.2,
        ... )
    """

    success: bool
    outcome: ExecutionOutcome
    result: Any | None = None
    error: str | None = None
    execution_time_ms: float = Field(default=0.0, ge=0)
    validation_errors: list[str] | None = None
    security_warnings: list[str] = Field(default_factory=list)

    # Context
    primitive_id: UUID | None = None
    primitive_name: str | None = None
    record_id: UUID | None = None


class ExecutionRecordCreate(BaseModel):
    """Data persisted for every invocation that reached the runtime."""

    primitive_id: UUID
    primitive_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any | None = None
    error: str | None = None
    success: bool
    outcome: ExecutionOutcome
    execution_time_ms: float = Field(..., ge=0)
    security_warnings: list[str] = Field(default_factory=list)
    agent_id: str | None = None
    user_id: str | None = None
    started_at: datetime
    completed_at: datetime


class RegistryStats(BaseModel):
    """Aggregate registry counts plus the rolling 24h execution count."""

    total: int = 0
    mounted: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_tier: dict[str, int] = Field(
        default_factory=lambda: {tier.value: 0 for tier in PrimitiveTier}
    )
    recent_executions: int = 0


class PermissionMode(StrEnum):
    """Approval mode of the permission gate. Exactly one is active."""

    ASK = "ask"
    AUTONOMOUS = "autonomous"


class PermissionSettings(BaseModel):
    """
    Persisted permission gate state.

    Replaced wholesale on every transition, never mutated in place.
    """

    model_config = ConfigDict(frozen=True)

    mode: PermissionMode = PermissionMode.ASK
    require_approval_for_management: bool = True
    updated_at: datetime | None = None
    updated_by: str | None = None


class ApprovalRequest(BaseModel):
    """What the permission gate asks an approver to decide on."""

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    policy: ApprovalPolicy = ApprovalPolicy.ASK_MODE
    management: bool = False
    agent_id: str | None = None
    reason: str | None = None


class ToolSpec(BaseModel):
    """
    Agent-facing tool description.

    ``parameters_schema`` is a JSON-schema object
    ({"type": "object", "properties": {...}, "required": [...]}).
    """

    name: str = Field(..., description="Tool name (e.g., 'toolmount_create_tool')")
    description: str = Field(..., description="What this tool does")
    parameters_schema: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_INPUT_SCHEMA),
        description="JSON schema for tool parameters",
    )
    approval: ApprovalPolicy = ApprovalPolicy.NEVER
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    runs_handlers: bool = Field(
        default=False,
        description="Runs primitive handler code, so it is gated like a mounted tool call",
    )

    def to_llm_schema(self) -> dict[str, Any]:
        """Render in the function-calling shape used by LLM providers."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters_schema,
        }


class ToolCallResult(BaseModel):
    """Outcome of an agent tool call, as handed back to the reasoning loop."""

    success: bool
    output: Any | None = None
    error: str | None = None
    outcome: ExecutionOutcome = ExecutionOutcome.SUCCESS
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolImplementation(Protocol):
    """
    Protocol for concrete tool implementations.

    Management tools implement this via the @tool decorator
    (FuncToolImplementation); the router calls it after the approval check.
    """

    async def _execute(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool's core logic.

        Args:
            params: Validated parameters for this tool

        Returns:
            Tool output

        Raises:
            Exception if execution fails (captured into ToolCallResult.error)
        """
        ...


class ExecutionRecorder(Protocol):
    """Sink for execution records (database-backed in production)."""

    async def record(self, record: ExecutionRecordCreate) -> UUID | None: ...
