"""
toolmount - Dynamic Tool Registry + Sandboxed Execution Runtime

Lets an autonomous agent define, store, mount, and invoke callable
"primitives" entirely as data, without redeploying the host application.

This package provides:
1. Registry store for primitive definitions (SQLAlchemy, async)
2. Process-wide mount cache of enabled primitives
3. Schema conversion from declarative input schemas to typed parameter sets
4. Static handler validation and timeout-bounded sandboxed execution
5. Ask/autonomous permission gate for unattended invocation
6. Agent-facing tool router, REST API and CLI

Example:
    >>> from toolmount.services.tool_runtime import ToolRuntime
    >>> runtime = ToolRuntime(sessionmaker=sessionmaker)
    >>> await runtime.start()
    >>> await runtime.registry.create(
    ...     PrimitiveDefinition(
    ...         name="echo",
    ...         description="Echo the message back",
    ...         input_schema={
    ...             "type": "object",
    ...             "properties": {"message": {"type": "string"}},
    ...             "required": ["message"],
    ...         },
    ...         handler="return input",
    ...     )
    ... )
    >>> result = await runtime.router.execute_tool_call("echo", {"message": "hi"})

Architecture:
    - core.tools: schema converter, validator, mount cache, sandbox, executor, router
    - models: SQLAlchemy models and async session helpers
    - services: registry store, execution history, permission gate, runtime owner
    - api / cli: thin request/response boundaries over the runtime
"""

__version__ = "0.1.0"
__author__ = "toolmount contributors"
__license__ = "Apache-2.0"

__all__ = ["__version__"]
