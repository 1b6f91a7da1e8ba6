"""RBAC role and permission schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RoleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    display_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=20)


class RoleUpdateRequest(BaseModel):
    """Display fields only; name and system flag are immutable."""
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=20)


class AssignPermissionsRequest(BaseModel):
    permission_ids: list[str]


class PermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    resource: str
    action: str
    description: Optional[str] = None


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    color: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime


class RoleWithPermissionsResponse(RoleResponse):
    permissions: list[PermissionResponse] = []


class PermissionCheckResponse(BaseModel):
    has_permission: bool
