"""
toolmount.exceptions - Error taxonomy for registry and execution operations

Registry-level errors (validation, conflict, not found, immutable) are raised
before any state change. Execution-level errors (timeout, handler failure,
declined approval) describe outcomes that the runtime reports in
ExecutionResult rather than raising to the agent.

Example:
    >>> from toolmount.exceptions import ConflictError
    >>>
    >>> try:
    ...     await registry.create(definition)
    ... except ConflictError as e:
    ...     logger.warning(f"Duplicate primitive: {e}")
"""


class ToolmountError(Exception):
    """Base exception for all toolmount errors."""


class ValidationError(ToolmountError):
    """
    Raised when a schema, input, or handler is rejected.

    Carries the individual messages in ``errors`` and, for handler safety
    rejections, the name of the matched blacklist entry in ``pattern``.
    Never retried automatically.
    """

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        pattern: str | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors if errors is not None else [message]
        self.pattern = pattern


class ConflictError(ToolmountError):
    """Raised when a primitive name is already taken."""


class NotFoundError(ToolmountError):
    """Raised when a primitive id or name does not exist."""


class ImmutableError(ToolmountError):
    """Raised on any attempt to update or delete a built-in primitive."""


class ExecutionTimeoutError(ToolmountError):
    """
    Raised inside the runtime when a handler exceeds its deadline.

    Named to avoid shadowing the builtin ``TimeoutError``.
    """

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Handler exceeded its deadline of {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ExecutionError(ToolmountError):
    """Raised inside the runtime when a handler fails during a run."""


class HandlerError(ExecutionError):
    """
    Raised when handler code raised an exception inside its worker.

    The exception itself stays in the worker process; ``error_type`` is
    the name of its class.
    """

    def __init__(self, error_type: str, message: str) -> None:
        super().__init__(f"{error_type}: {message}" if message else error_type)
        self.error_type = error_type


class NotApprovedError(ToolmountError):
    """Raised by the permission gate when approval is declined or unavailable."""


__all__ = [
    "ConflictError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "HandlerError",
    "ImmutableError",
    "NotApprovedError",
    "NotFoundError",
    "ToolmountError",
    "ValidationError",
]
