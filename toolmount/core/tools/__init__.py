"""
toolmount.core.tools - Primitive Execution System

Architecture:
- base.py: PrimitiveDefinition, PrimitiveSnapshot, MountedTool, ExecutionResult, ToolSpec
- schema.py: convert_schema() and ParameterSet (input validation/coercion)
- validator.py: blocked/warning source patterns, validate_handler()
- registry.py: MountCache, the lock-free read view of mounted primitives
- sandbox.py: handler compilation, module facades, worker processes killed at the deadline
- worker.py: the worker process entry point (python -m toolmount.core.tools.worker)
- executor.py: ExecutionRuntime (validate, run, record; never raises)
- decorator.py: @tool for management tools implemented as methods
- router.py: ToolRouter, the single entry point for an agent's reasoning loop

Example Usage:
    >>> cache = MountCache()
    >>> cache.mount(snapshot)
    >>> runtime = ExecutionRuntime(cache=cache)
    >>> result = await runtime.execute(cache.get_by_name("echo"), {"message": "hi"})
    >>> result.success
    True
"""

from .base import (
    ApprovalPolicy,
    ExecutionOutcome,
    ExecutionResult,
    MountedTool,
    PrimitiveDefinition,
    PrimitiveSnapshot,
    PrimitiveTier,
    PrimitiveUpdate,
    ToolCallResult,
    ToolSpec,
)
from .decorator import collect_tools, tool
from .executor import ExecutionRuntime
from .registry import MountCache
from .router import ToolRouter
from .schema import ParameterSet, convert_schema
from .validator import scan_security_warnings, validate_handler

__all__ = [
    # Base types
    "ApprovalPolicy",
    "ExecutionOutcome",
    "ExecutionResult",
    "MountedTool",
    "PrimitiveDefinition",
    "PrimitiveSnapshot",
    "PrimitiveTier",
    "PrimitiveUpdate",
    "ToolCallResult",
    "ToolSpec",
    # Schema and validation
    "ParameterSet",
    "convert_schema",
    "scan_security_warnings",
    "validate_handler",
    # Runtime
    "ExecutionRuntime",
    "MountCache",
    "ToolRouter",
    "collect_tools",
    "tool",
]
