"""
toolmount.api.v1.endpoints.primitives - Primitive Endpoints

REST API endpoints for the registry store, mounting, execution and
execution history. Calls made here are attended: the operator issuing
the request is the approver, so the permission gate is not consulted.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from toolmount.api.deps import Runtime, http_error
from toolmount.api.v1.schemas.primitive import (
    ExecuteRequest,
    ExecutionListResponse,
    ExecutionRecordResponse,
    PrimitiveListResponse,
    PrimitiveResponse,
)
from toolmount.core.tools.base import (
    ExecutionResult,
    PrimitiveDefinition,
    PrimitiveSnapshot,
    PrimitiveUpdate,
    RegistryStats,
)
from toolmount.exceptions import ToolmountError
from toolmount.services.tool_runtime import ToolRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


def _response(runtime: ToolRuntime, primitive: PrimitiveSnapshot) -> PrimitiveResponse:
    return PrimitiveResponse.build(primitive, runtime.cache.get(primitive.id))


# =============================================================================
# Collection routes (declared before /{id_or_name})
# =============================================================================


@router.get("", response_model=PrimitiveListResponse)
async def list_primitives(
    runtime: Runtime,
    category: str | None = None,
    tags: Annotated[list[str] | None, Query()] = None,
    enabled_only: bool = True,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> PrimitiveListResponse:
    """
    List primitives ordered by name.

    Args:
        runtime: Tool runtime
        category: Filter by category
        tags: Keep primitives carrying any of these tags
        enabled_only: Only mounted primitives (default)
        limit: Max items

    Returns:
        Primitive list
    """
    primitives = await runtime.registry.list(
        category=category, tags=tags, enabled_only=enabled_only, limit=limit
    )
    items = [_response(runtime, p) for p in primitives]
    return PrimitiveListResponse(items=items, total=len(items))


@router.post("", response_model=PrimitiveResponse, status_code=status.HTTP_201_CREATED)
async def create_primitive(runtime: Runtime, data: PrimitiveDefinition) -> PrimitiveResponse:
    """
    Create a primitive; it is mounted immediately.

    Raises:
        HTTPException: 422 for an unsafe handler or bad schema, 409 on a name clash
    """
    try:
        primitive = await runtime.registry.create(data)
    except ToolmountError as e:
        raise http_error(e) from e
    return _response(runtime, primitive)


@router.get("/search", response_model=PrimitiveListResponse)
async def search_primitives(
    runtime: Runtime,
    q: Annotated[str, Query(min_length=1)],
) -> PrimitiveListResponse:
    """Case-insensitive search over name, description and tags."""
    primitives = await runtime.registry.search(q)
    items = [_response(runtime, p) for p in primitives]
    return PrimitiveListResponse(items=items, total=len(items))


@router.get("/stats", response_model=RegistryStats)
async def get_stats(runtime: Runtime) -> RegistryStats:
    return await runtime.registry.stats()


@router.get("/categories", response_model=list[str])
async def get_categories(runtime: Runtime) -> list[str]:
    return await runtime.registry.get_categories()


@router.get("/executions", response_model=ExecutionListResponse)
async def list_executions(
    runtime: Runtime,
    primitive_id: UUID | None = None,
    success: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
) -> ExecutionListResponse:
    """
    Execution history, newest first.

    Args:
        runtime: Tool runtime
        primitive_id: Filter by primitive
        success: Filter by success flag
        page: Page number (1-indexed)
        page_size: Items per page (max 100)

    Returns:
        Paginated execution records
    """
    executions, total = await runtime.history(
        primitive_id=primitive_id, success=success, page=page, page_size=page_size
    )
    pages = (total + page_size - 1) // page_size if total > 0 else 1
    return ExecutionListResponse(
        items=[ExecutionRecordResponse.model_validate(e) for e in executions],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


# =============================================================================
# Item routes
# =============================================================================


@router.get("/{id_or_name}", response_model=PrimitiveResponse)
async def get_primitive(runtime: Runtime, id_or_name: str) -> PrimitiveResponse:
    try:
        primitive = await runtime.registry.require(id_or_name)
    except ToolmountError as e:
        raise http_error(e) from e
    return _response(runtime, primitive)


@router.patch("/{id_or_name}", response_model=PrimitiveResponse)
async def update_primitive(
    runtime: Runtime,
    id_or_name: str,
    data: PrimitiveUpdate,
) -> PrimitiveResponse:
    """
    Update a primitive and bump its version.

    Raises:
        HTTPException: 404 unknown, 403 built-in, 409 name clash, 422 invalid
    """
    try:
        primitive = await runtime.registry.update(id_or_name, data)
    except ToolmountError as e:
        raise http_error(e) from e
    return _response(runtime, primitive)


@router.delete("/{id_or_name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_primitive(runtime: Runtime, id_or_name: str) -> None:
    try:
        primitive = await runtime.registry.delete(id_or_name)
    except ToolmountError as e:
        raise http_error(e) from e
    logger.info(
        f"Deleted primitive {primitive.name} via API",
        extra={"primitive_id": str(primitive.id)},
    )


@router.post("/{id_or_name}/mount", response_model=PrimitiveResponse)
async def mount_primitive(runtime: Runtime, id_or_name: str) -> PrimitiveResponse:
    try:
        mounted = await runtime.registry.mount(id_or_name)
    except ToolmountError as e:
        raise http_error(e) from e
    return PrimitiveResponse.build(mounted.primitive, mounted)


@router.post("/{id_or_name}/dismount", response_model=PrimitiveResponse)
async def dismount_primitive(runtime: Runtime, id_or_name: str) -> PrimitiveResponse:
    try:
        primitive = await runtime.registry.dismount(id_or_name)
    except ToolmountError as e:
        raise http_error(e) from e
    return PrimitiveResponse.build(primitive, None)


@router.post("/{id_or_name}/execute", response_model=ExecutionResult)
async def execute_primitive(
    runtime: Runtime,
    id_or_name: str,
    data: ExecuteRequest,
) -> ExecutionResult:
    """
    Execute a mounted primitive.

    Handler failures come back as a 200 with ``success=false``; only an
    unknown or unmounted primitive is an HTTP error (404).
    """
    try:
        return await runtime.execute(
            id_or_name, data.input, agent_id=data.agent_id, user_id=data.user_id
        )
    except ToolmountError as e:
        raise http_error(e) from e


@router.post("/{id_or_name}/test", response_model=ExecutionResult)
async def test_primitive(
    runtime: Runtime,
    id_or_name: str,
    data: ExecuteRequest,
) -> ExecutionResult:
    """Run a primitive once, mounted or not."""
    try:
        return await runtime.test(id_or_name, data.input, user_id=data.user_id)
    except ToolmountError as e:
        raise http_error(e) from e
