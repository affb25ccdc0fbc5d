"""
toolmount.api.v1.schemas - API Schemas

Contains all v1 API Pydantic schemas.
"""

from toolmount.api.v1.schemas.primitive import (
    ExecuteRequest,
    ExecutionListResponse,
    ExecutionRecordResponse,
    PrimitiveListResponse,
    PrimitiveResponse,
)
from toolmount.api.v1.schemas.settings import PermissionSettingsUpdate

__all__ = [
    "ExecuteRequest",
    "ExecutionListResponse",
    "ExecutionRecordResponse",
    "PermissionSettingsUpdate",
    "PrimitiveListResponse",
    "PrimitiveResponse",
]
