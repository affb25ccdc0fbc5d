"""
toolmount.api.deps - FastAPI Dependencies

Provides reusable dependencies for API endpoints:
- get_runtime: The process-wide ToolRuntime from app state
- http_error: Maps toolmount errors onto HTTP status codes
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from toolmount.exceptions import (
    ConflictError,
    ImmutableError,
    NotApprovedError,
    NotFoundError,
    ToolmountError,
    ValidationError,
)
from toolmount.services.tool_runtime import ToolRuntime

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[ToolmountError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ImmutableError, status.HTTP_403_FORBIDDEN),
    (NotApprovedError, status.HTTP_403_FORBIDDEN),
)


async def get_runtime(request: Request) -> ToolRuntime:
    """
    Get the tool runtime from app state.

    Raises:
        HTTPException: If the runtime has not been started
    """
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        logger.error("Tool runtime not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tool runtime not available",
        )
    return runtime


# Type alias for runtime dependency
Runtime = Annotated[ToolRuntime, Depends(get_runtime)]


def http_error(error: ToolmountError) -> HTTPException:
    """Translate a registry/gate error into an HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            detail: str | dict = str(error)
            if isinstance(error, ValidationError):
                detail = {"message": str(error), "errors": error.errors, "pattern": error.pattern}
            return HTTPException(status_code=status_code, detail=detail)

    logger.error(f"Unmapped toolmount error: {type(error).__name__}: {error}")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
