"""
toolmount.core.tools.router - Agent-Facing Tool Router

Single interface the agent's reasoning loop uses:
  - get_all_tool_schemas()
  - execute_tool_call(tool_name, arguments, agent_id)

Two tool families sit behind it:
  - Management tools (@tool methods: create/iterate/delete/mount/... primitives)
  - Every currently mounted primitive, with a schema-derived parameter set

The mounted family is rebuilt whenever the mount cache generation changes,
so mounting or dismounting is visible on the next call without a restart.
"""

import logging
from typing import Any, Protocol

from toolmount.exceptions import NotApprovedError, ToolmountError

from .base import (
    ApprovalPolicy,
    ApprovalRequest,
    ExecutionOutcome,
    ExecutionResult,
    MountedTool,
    ToolCallResult,
    ToolSpec,
)
from .decorator import CollectedTool
from .executor import ExecutionRuntime, parameters_for
from .registry import MountCache

logger = logging.getLogger(__name__)


class ApprovalChecker(Protocol):
    """What the router needs from the permission gate."""

    async def check(self, request: ApprovalRequest) -> None: ...


def spec_for_mounted(tool: MountedTool) -> ToolSpec:
    """Agent-facing spec of a mounted primitive."""
    primitive = tool.primitive
    return ToolSpec(
        name=primitive.name,
        description=primitive.description,
        parameters_schema=parameters_for(primitive).to_json_schema(),
        approval=ApprovalPolicy.ASK_MODE,
        category=primitive.category,
        tags=list(primitive.tags),
    )


class ToolRouter:
    """
    Routes agent tool calls to management tools or mounted primitives.

    Every call is checked with the permission gate first (according to the
    tool's approval policy). Management tools take precedence over a mounted
    primitive with the same name.

    Example:
        >>> router = ToolRouter(cache, executor, gate, collect_tools(toolkit))
        >>> schemas = router.get_all_tool_schemas()
        >>> result = await router.execute_tool_call("echo", {"message": "hi"}, agent_id="a-1")
    """

    def __init__(
        self,
        cache: MountCache,
        executor: ExecutionRuntime,
        gate: ApprovalChecker | None = None,
        management_tools: list[CollectedTool] | None = None,
    ) -> None:
        self._cache = cache
        self._executor = executor
        self._gate = gate
        self._management = {t.spec.name: t for t in management_tools or []}
        self._mounted_specs: dict[str, ToolSpec] = {}
        self._generation = -1

    # =========================================================================
    # Discovery
    # =========================================================================

    def _refresh(self) -> None:
        generation = self._cache.generation
        if generation == self._generation:
            return

        specs: dict[str, ToolSpec] = {}
        for tool in self._cache.list():
            if tool.name in self._management:
                logger.warning(
                    f"Mounted primitive '{tool.name}' is shadowed by a management tool",
                    extra={"primitive_id": str(tool.id)},
                )
                continue
            try:
                specs[tool.name] = spec_for_mounted(tool)
            except ToolmountError as e:
                logger.error(
                    f"Cannot expose primitive '{tool.name}': {e}",
                    extra={"primitive_id": str(tool.id)},
                )

        self._mounted_specs = specs
        self._generation = generation
        logger.debug(
            f"Router refreshed: {len(specs)} mounted tools",
            extra={"generation": generation},
        )

    def get_tool_specs(self) -> list[ToolSpec]:
        """Management tools first, then mounted primitives by name."""
        self._refresh()
        management = [t.spec for t in self._management.values()]
        return management + list(self._mounted_specs.values())

    def get_all_tool_schemas(self) -> list[dict[str, Any]]:
        """Tool schemas for LLM function calling."""
        return [spec.to_llm_schema() for spec in self.get_tool_specs()]

    def has_tool(self, tool_name: str) -> bool:
        self._refresh()
        return tool_name in self._management or tool_name in self._mounted_specs

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_tool_call(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None,
        agent_id: str | None = None,
    ) -> ToolCallResult:
        """Route a tool call.

        Never raises: unknown tools, declined approvals, registry errors and
        handler failures all come back as ToolCallResult(success=False).

        Args:
            tool_name: Tool name as advertised in get_all_tool_schemas()
            arguments: Tool call arguments
            agent_id: Calling agent

        Returns:
            ToolCallResult for the reasoning loop
        """
        arguments = arguments or {}

        collected = self._management.get(tool_name)
        if collected is not None:
            return await self._execute_management_tool(collected, arguments, agent_id)

        tool = self._cache.get_by_name(tool_name)
        if tool is not None:
            result = await self.invoke_mounted(tool, arguments, agent_id=agent_id)
            return ToolCallResult(
                success=result.success,
                output=result.result,
                error=result.error,
                outcome=result.outcome,
                metadata={
                    "primitive_id": str(result.primitive_id) if result.primitive_id else None,
                    "execution_time_ms": result.execution_time_ms,
                    "validation_errors": result.validation_errors,
                    "security_warnings": result.security_warnings,
                    "record_id": str(result.record_id) if result.record_id else None,
                },
            )

        logger.warning(f"Unknown tool requested: {tool_name}", extra={"agent_id": agent_id})
        return ToolCallResult(
            success=False,
            error=f"Unknown tool: {tool_name}",
            outcome=ExecutionOutcome.ERROR,
        )

    async def invoke_mounted(
        self,
        tool: MountedTool,
        arguments: dict[str, Any] | None,
        agent_id: str | None = None,
        user_id: str | None = None,
    ) -> ExecutionResult:
        """
        Unattended invocation of a mounted primitive.

        In ask mode the gate must approve first; a declined approval returns
        a NOT_APPROVED result without touching the runtime (no record, no
        counter change).
        """
        request = ApprovalRequest(
            tool_name=tool.name,
            arguments=arguments if isinstance(arguments, dict) else {},
            policy=ApprovalPolicy.ASK_MODE,
            agent_id=agent_id,
        )
        try:
            await self._check(request)
        except NotApprovedError as e:
            return ExecutionResult(
                success=False,
                outcome=ExecutionOutcome.NOT_APPROVED,
                error=str(e),
                primitive_id=tool.id,
                primitive_name=tool.name,
            )

        return await self._executor.execute(tool, arguments, agent_id=agent_id, user_id=user_id)

    async def _execute_management_tool(
        self,
        collected: CollectedTool,
        arguments: dict[str, Any],
        agent_id: str | None,
    ) -> ToolCallResult:
        spec = collected.spec
        request = ApprovalRequest(
            tool_name=spec.name,
            arguments=arguments,
            policy=spec.approval,
            agent_id=agent_id,
            reason=arguments.get("reason") if isinstance(arguments.get("reason"), str) else None,
            management=not spec.runs_handlers,
        )
        try:
            await self._check(request)
        except NotApprovedError as e:
            return ToolCallResult(
                success=False, error=str(e), outcome=ExecutionOutcome.NOT_APPROVED
            )

        try:
            output = await collected.implementation._execute(arguments)
        except ToolmountError as e:
            logger.info(
                f"Management tool '{spec.name}' rejected: {e}",
                extra={"tool_name": spec.name, "error_type": type(e).__name__},
            )
            return ToolCallResult(
                success=False,
                error=str(e),
                outcome=ExecutionOutcome.ERROR,
                metadata={"error_type": type(e).__name__},
            )
        except Exception as e:
            logger.error(
                f"Management tool '{spec.name}' failed: {e}",
                exc_info=True,
                extra={"tool_name": spec.name},
            )
            return ToolCallResult(
                success=False,
                error=f"{type(e).__name__}: {e}",
                outcome=ExecutionOutcome.ERROR,
            )

        return ToolCallResult(success=True, output=output)

    async def _check(self, request: ApprovalRequest) -> None:
        if self._gate is not None:
            await self._gate.check(request)

    def __repr__(self) -> str:
        self._refresh()
        return (
            f"ToolRouter(management_tools={len(self._management)}, "
            f"mounted_tools={len(self._mounted_specs)})"
        )


__all__ = ["ApprovalChecker", "ToolRouter", "spec_for_mounted"]
