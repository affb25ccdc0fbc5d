"""
toolmount.api.v1.endpoints.settings - Runtime Settings Endpoints

Read and change the permission gate mode.
"""

from fastapi import APIRouter

from toolmount.api.deps import Runtime
from toolmount.api.v1.schemas.settings import PermissionSettingsUpdate
from toolmount.core.tools.base import PermissionSettings

router = APIRouter()


@router.get("/permissions", response_model=PermissionSettings)
async def get_permissions(runtime: Runtime) -> PermissionSettings:
    return runtime.gate.settings


@router.put("/permissions", response_model=PermissionSettings)
async def update_permissions(
    runtime: Runtime,
    data: PermissionSettingsUpdate,
) -> PermissionSettings:
    """
    Change the permission gate.

    Operator-initiated, so enabling autonomous mode here needs no approver.
    """
    return await runtime.gate.update_settings(
        mode=data.mode,
        require_approval_for_management=data.require_approval_for_management,
        updated_by=data.updated_by or "api",
    )
