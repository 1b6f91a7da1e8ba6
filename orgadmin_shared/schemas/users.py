"""User administration schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .common import PlatformRole

PASSWORD_MIN_LENGTH = 8


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    """Create a user (admin console)."""
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=128)
    role: PlatformRole = PlatformRole.MEMBER
    organization_id: Optional[str] = None


class UserUpdateRequest(BaseModel):
    """Update a user's profile fields."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)


class SetRoleRequest(BaseModel):
    role: PlatformRole


class BanRequest(BaseModel):
    ban_reason: Optional[str] = Field(default=None, max_length=500)


class SetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=128)


class BulkRemoveRequest(BaseModel):
    user_ids: List[str]


class BatchCapabilitiesRequest(BaseModel):
    user_ids: List[str] = Field(max_length=200)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class UserResponse(BaseModel):
    """Single user projection."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    email_verified: bool = False
    role: str
    image: Optional[str] = None
    banned: bool = False
    ban_reason: Optional[str] = None
    ban_expires: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    data: List[UserResponse]
    total: int
    limit: int
    offset: int


class BulkRemoveResponse(BaseModel):
    success: bool = True
    deleted_count: int


class CapabilityActions(BaseModel):
    update: bool = False
    set_role: bool = False
    ban: bool = False
    unban: bool = False
    set_password: bool = False
    remove: bool = False
    revoke_sessions: bool = False
    impersonate: bool = False


class UserCapabilities(BaseModel):
    """Which actions the actor may currently take on the target."""
    target_user_id: str
    target_role: PlatformRole
    is_self: bool
    actions: CapabilityActions


class RoleSummary(BaseModel):
    name: str
    display_name: str
    description: Optional[str] = None
    color: Optional[str] = None
    is_system: bool = False


class OrganizationSummary(BaseModel):
    id: str
    name: str
    slug: str


class CreateUserMetadata(BaseModel):
    roles: List[RoleSummary]
    allowed_role_names: List[PlatformRole]
    organizations: List[OrganizationSummary]
