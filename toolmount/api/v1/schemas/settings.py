"""
toolmount.api.v1.schemas.settings - Runtime Settings API Schemas
"""

from pydantic import BaseModel

from toolmount.core.tools.base import PermissionMode


class PermissionSettingsUpdate(BaseModel):
    """Schema for changing the permission gate. Unset fields keep their value."""

    mode: PermissionMode | None = None
    require_approval_for_management: bool | None = None
    updated_by: str | None = None
