"""
toolmount.services - Service Layer

Database-backed services around the core:
registry store, execution history, permission gate, handler data access,
management tools, and the ToolRuntime that wires them together.
"""

from toolmount.services.permission_gate import PermissionGate
from toolmount.services.primitive_registry import PrimitiveRegistry
from toolmount.services.tool_runtime import ToolRuntime

__all__ = ["PermissionGate", "PrimitiveRegistry", "ToolRuntime"]
