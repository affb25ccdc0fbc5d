"""
toolmount.core.tools.decorator - @tool Decorator

Turn async functions and methods into agent-facing tools with
auto-generated JSON schemas.

Example:
    >>> class Toolkit:
    ...     @tool(name="toolmount_stats", description="Registry statistics")
    ...     async def stats(self) -> dict:
    ...         ...
    >>>
    >>> # Collect all @tool-decorated methods, bound to the instance
    >>> tools = collect_tools(Toolkit())
"""

import inspect
import logging
import types
import typing
from collections.abc import Callable
from typing import Any, NamedTuple, get_args, get_origin

from .base import ApprovalPolicy, ToolImplementation, ToolSpec

logger = logging.getLogger(__name__)

# Attribute name stored on decorated functions
_TOOL_META_ATTR = "_toolmount_tool_spec"


class CollectedTool(NamedTuple):
    """A decorated callable ready to be routed."""

    spec: ToolSpec
    implementation: ToolImplementation


def _python_type_to_json_schema(annotation: Any) -> dict[str, Any]:
    """Map a Python type annotation to a JSON schema type descriptor.

    Handles: str, int, float, bool, list, dict, Optional/Union, and generic
    forms like list[str], dict[str, Any]. Anything else is left untyped.
    """
    if annotation is inspect.Parameter.empty or annotation is Any:
        return {}

    origin = get_origin(annotation)
    args = get_args(annotation)

    # X | None and typing.Optional[X]
    if origin is types.UnionType or origin is typing.Union:
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _python_type_to_json_schema(non_none[0])
        return {}

    if origin is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            items = _python_type_to_json_schema(args[0])
            if items:
                schema["items"] = items
        return schema

    if origin is dict:
        return {"type": "object"}

    type_map: dict[type, str] = {
        str: "string",
        bool: "boolean",
        int: "integer",
        float: "number",
        list: "array",
        dict: "object",
    }
    if isinstance(annotation, type) and annotation in type_map:
        return {"type": type_map[annotation]}

    return {}


def _build_parameters_schema(func: Callable[..., Any]) -> dict[str, Any]:
    """Build a JSON-schema parameters object from a function signature.

    {"type": "object", "properties": {...}, "required": [...]}
    """
    sig = inspect.signature(func)
    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in sig.parameters.items():
        if name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue

        prop = _python_type_to_json_schema(param.annotation)
        if param.default is inspect.Parameter.empty:
            required.append(name)
        elif param.default is not None:
            prop["default"] = param.default

        properties[name] = prop

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FuncToolImplementation:
    """Wraps an async callable as a ToolImplementation."""

    def __init__(self, func: Callable[..., Any], spec: ToolSpec) -> None:
        self._func = func
        self._accepted = set(spec.parameters_schema.get("properties", {}))

    async def _execute(self, params: dict[str, Any]) -> Any:
        # Extra keys from the model are dropped rather than failing the call
        kwargs = {k: v for k, v in params.items() if k in self._accepted}
        return await self._func(**kwargs)


def tool(
    name: str | None = None,
    description: str = "",
    approval: ApprovalPolicy = ApprovalPolicy.NEVER,
    category: str | None = None,
    tags: list[str] | None = None,
    runs_handlers: bool = False,
) -> Callable[..., Any]:
    """Decorator that turns an async function or method into a tool.

    Args:
        name: Tool name (defaults to function name)
        description: Human-readable description (defaults to the docstring)
        approval: When the permission gate must approve a call
        category: Optional category for grouping
        tags: Optional tags for discovery
        runs_handlers: The tool executes primitive handlers; the management
            approval waiver does not apply to it

    Returns:
        Decorator that attaches a ToolSpec to the function

    Example:
        >>> @tool(name="toolmount_delete_tool", approval=ApprovalPolicy.ASK_MODE)
        ... async def delete_tool(self, tool_id: str) -> dict:
        ...     ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@tool can only decorate async functions, got {func.__name__}")

        tool_desc = description or inspect.getdoc(func) or f"Tool: {name or func.__name__}"
        spec = ToolSpec(
            name=name or func.__name__,
            description=tool_desc,
            parameters_schema=_build_parameters_schema(func),
            approval=approval,
            category=category,
            tags=tags or [],
            runs_handlers=runs_handlers,
        )
        setattr(func, _TOOL_META_ATTR, spec)
        return func

    return decorator


def get_tool_spec(func: Callable[..., Any]) -> ToolSpec | None:
    """ToolSpec of a @tool-decorated callable, or None."""
    return getattr(func, _TOOL_META_ATTR, None)


def collect_tools(obj: Any) -> list[CollectedTool]:
    """Find all @tool-decorated callables on a module or object.

    Methods are collected bound to ``obj``, so an instance's tools share
    its collaborators.

    Args:
        obj: Module, class instance, or any object with decorated attributes

    Returns:
        Collected tools ordered by tool name

    Example:
        >>> for collected in collect_tools(ManagementToolkit(runtime)):
        ...     print(collected.spec.name)
    """
    results: list[CollectedTool] = []
    seen: set[str] = set()

    for attr_name in dir(obj):
        if attr_name.startswith("__"):
            continue
        member = getattr(obj, attr_name, None)
        if not callable(member):
            continue
        spec = get_tool_spec(member)
        if spec is None or spec.name in seen:
            continue
        seen.add(spec.name)
        results.append(CollectedTool(spec, FuncToolImplementation(member, spec)))

    logger.debug(f"Collected {len(results)} tools from {type(obj).__name__}")
    return sorted(results, key=lambda c: c.spec.name)


__all__ = ["CollectedTool", "FuncToolImplementation", "collect_tools", "get_tool_spec", "tool"]
