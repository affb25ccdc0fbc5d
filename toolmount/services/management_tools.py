"""
toolmount.services.management_tools - Registry Management Tools

The fixed tool family that lets an agent extend its own tool set at
runtime. Mutating tools and toolmount_test_tool, which runs handler code,
are approval-gated in ask mode. Enabling autonomous mode always needs
approval; read-only tools and the switch back to ask mode never do.
"""

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from toolmount.core.tools.base import (
    ApprovalPolicy,
    PermissionMode,
    PrimitiveDefinition,
    PrimitiveSnapshot,
    PrimitiveUpdate,
)
from toolmount.core.tools.decorator import tool
from toolmount.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from toolmount.services.tool_runtime import ToolRuntime

logger = logging.getLogger(__name__)

HANDLER_GUIDE = (
    "The handler is the Python body of `async def handler(input, context)`: "
    "read validated arguments from `input`, `return` a JSON-serializable value. "
    "`context.db` offers get/put/delete/find/count on JSON records, "
    "`context.utils` offers format_currency, format_date, generate_id, slugify, "
    "now_iso, to_json and truncate. json, math, re, datetime and decimal are "
    "available; import statements, eval/exec and file or process access are rejected."
)


def _definition_error(e: PydanticValidationError) -> ValidationError:
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ())) or 'input'}: {err.get('msg')}"
        for err in e.errors()
    ]
    return ValidationError(f"Invalid tool definition: {'; '.join(errors)}", errors=errors)


def _summary(primitive: PrimitiveSnapshot) -> dict[str, Any]:
    return {
        "id": str(primitive.id),
        "name": primitive.name,
        "description": primitive.description,
        "category": primitive.category,
        "tags": list(primitive.tags),
        "enabled": primitive.enabled,
        "version": primitive.version,
    }


class ManagementToolkit:
    """
    @tool methods bound to one ToolRuntime.

    Registry errors propagate; the router turns them into
    ``{"success": False, "error": ...}`` results for the agent.
    """

    def __init__(self, runtime: "ToolRuntime") -> None:
        self.runtime = runtime

    # =========================================================================
    # Tool management (approval-gated in ask mode)
    # =========================================================================

    @tool(
        name="toolmount_create_tool",
        description=f"Create a new tool and mount it immediately. {HANDLER_GUIDE}",
        approval=ApprovalPolicy.ASK_MODE,
        category="management",
    )
    async def create_tool(
        self,
        name: str,
        description: str,
        handler: str,
        input_schema: dict | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        timeout_ms: int | None = None,
        sandboxed: bool = True,
    ) -> dict[str, Any]:
        try:
            definition = PrimitiveDefinition(
                name=name,
                description=description,
                handler=handler,
                input_schema=input_schema or {"type": "object", "properties": {}},
                category=category,
                tags=tags or [],
                timeout_ms=timeout_ms,
                sandboxed=sandboxed,
            )
        except PydanticValidationError as e:
            raise _definition_error(e) from e

        primitive = await self.runtime.registry.create(definition)
        return {
            "success": True,
            "tool": _summary(primitive),
            "message": f"Tool '{primitive.name}' created and mounted",
        }

    @tool(
        name="toolmount_iterate_tool",
        description="Update an existing tool (new handler, schema or metadata). "
        "Bumps its version; a mounted tool is swapped in place.",
        approval=ApprovalPolicy.ASK_MODE,
        category="management",
    )
    async def iterate_tool(
        self,
        id_or_name: str,
        name: str | None = None,
        description: str | None = None,
        handler: str | None = None,
        input_schema: dict | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        timeout_ms: int | None = None,
        sandboxed: bool | None = None,
    ) -> dict[str, Any]:
        provided = {
            "name": name,
            "description": description,
            "handler": handler,
            "input_schema": input_schema,
            "category": category,
            "tags": tags,
            "timeout_ms": timeout_ms,
            "sandboxed": sandboxed,
        }
        try:
            changes = PrimitiveUpdate(**{k: v for k, v in provided.items() if v is not None})
        except PydanticValidationError as e:
            raise _definition_error(e) from e

        primitive = await self.runtime.registry.update(id_or_name, changes)
        return {
            "success": True,
            "tool": _summary(primitive),
            "message": f"Tool '{primitive.name}' updated to version {primitive.version}",
        }

    @tool(
        name="toolmount_delete_tool",
        description="Delete a tool permanently. Built-in tools cannot be deleted.",
        approval=ApprovalPolicy.ASK_MODE,
        category="management",
    )
    async def delete_tool(self, id_or_name: str) -> dict[str, Any]:
        primitive = await self.runtime.registry.delete(id_or_name)
        return {"success": True, "message": f"Tool '{primitive.name}' deleted"}

    # =========================================================================
    # Read-only / reversible (never gated)
    # =========================================================================

    @tool(
        name="toolmount_list_tools",
        description="List tools in the registry",
        category="management",
    )
    async def list_tools(
        self,
        category: str | None = None,
        tags: list[str] | None = None,
        enabled_only: bool = True,
        limit: int = 50,
    ) -> dict[str, Any]:
        primitives = await self.runtime.registry.list(
            category=category, tags=tags, enabled_only=enabled_only, limit=limit
        )
        return {"count": len(primitives), "tools": [_summary(p) for p in primitives]}

    @tool(
        name="toolmount_search_tools",
        description="Search tools by name, description, or tag",
        category="management",
    )
    async def search_tools(self, query: str) -> dict[str, Any]:
        primitives = await self.runtime.registry.search(query)
        return {"count": len(primitives), "tools": [_summary(p) for p in primitives]}

    @tool(
        name="toolmount_get_tool",
        description="Get a tool's full definition including its handler source",
        category="management",
    )
    async def get_tool(self, id_or_name: str) -> dict[str, Any]:
        primitive = await self.runtime.registry.get(id_or_name)
        if primitive is None:
            raise NotFoundError(f"Tool not found: {id_or_name}")
        return {"success": True, "tool": primitive.model_dump(mode="json")}

    @tool(
        name="toolmount_test_tool",
        description="Run a tool once with sample input (mounted or not) and report the result",
        approval=ApprovalPolicy.ASK_MODE,
        category="management",
        runs_handlers=True,
    )
    async def test_tool(self, id_or_name: str, input: dict | None = None) -> dict[str, Any]:
        result = await self.runtime.test(id_or_name, input or {})
        return {"tool_name": result.primitive_name, **result.model_dump(mode="json")}

    @tool(
        name="toolmount_mount_tool",
        description="Mount (enable) a tool so it can be called",
        category="management",
    )
    async def mount_tool(self, id_or_name: str) -> dict[str, Any]:
        mounted = await self.runtime.registry.mount(id_or_name)
        return {
            "success": True,
            "message": f"Tool '{mounted.name}' is mounted and available",
        }

    @tool(
        name="toolmount_dismount_tool",
        description="Dismount (disable) a tool; its definition stays in the registry",
        category="management",
    )
    async def dismount_tool(self, id_or_name: str) -> dict[str, Any]:
        primitive = await self.runtime.registry.dismount(id_or_name)
        return {"success": True, "message": f"Tool '{primitive.name}' dismounted"}

    @tool(
        name="toolmount_stats",
        description="Registry statistics: totals, mounted, by category and tier, "
        "executions in the last 24 hours",
        category="management",
    )
    async def stats(self) -> dict[str, Any]:
        stats = await self.runtime.registry.stats()
        return stats.model_dump()

    # =========================================================================
    # Mode management
    # =========================================================================

    @tool(
        name="toolmount_get_mode",
        description="Check the current permission mode (ask or autonomous)",
        category="mode",
    )
    async def get_mode(self) -> dict[str, Any]:
        settings = self.runtime.gate.settings
        autonomous = settings.mode is PermissionMode.AUTONOMOUS
        return {
            "mode": settings.mode.value,
            "is_autonomous": autonomous,
            "description": (
                "Autonomous mode: tools can be created and changed without approval."
                if autonomous
                else "Ask mode: creating, changing or calling tools requires approval."
            ),
        }

    @tool(
        name="toolmount_enable_autonomous",
        description="Enable autonomous mode so tools can be created, changed and called "
        "without asking each time. Only use when the user explicitly asks for it.",
        approval=ApprovalPolicy.ALWAYS,
        category="mode",
    )
    async def enable_autonomous(self, reason: str) -> dict[str, Any]:
        await self.runtime.gate.enable_autonomous(updated_by="agent")
        logger.warning(f"Autonomous mode enabled by agent: {reason}")
        return {"success": True, "message": "Autonomous mode enabled", "reason": reason}

    @tool(
        name="toolmount_disable_autonomous",
        description="Disable autonomous mode and return to ask mode",
        category="mode",
    )
    async def disable_autonomous(self) -> dict[str, Any]:
        await self.runtime.gate.disable_autonomous(updated_by="agent")
        return {"success": True, "message": "Ask mode enabled; changes need approval again"}


__all__ = ["HANDLER_GUIDE", "ManagementToolkit"]
