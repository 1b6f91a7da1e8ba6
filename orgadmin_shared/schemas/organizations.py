"""
Organization and membership schemas.

Covers: Org CRUD request/response, member management, role catalogue for
membership assignment.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import PlatformRole
from .users import RoleSummary

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

MAX_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(max_length=200)
    slug: str = Field(max_length=100)
    logo: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class OrgUpdateRequest(BaseModel):
    """Partial update: only provided fields are changed."""
    name: Optional[str] = Field(default=None, max_length=200)
    slug: Optional[str] = Field(default=None, max_length=100)
    logo: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class MemberAddRequest(BaseModel):
    user_id: str
    role: PlatformRole = PlatformRole.MEMBER


class MemberRoleUpdateRequest(BaseModel):
    role: PlatformRole


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: str
    name: str
    slug: str
    logo: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    member_count: Optional[int] = None


class OrgListResponse(BaseModel):
    data: list[OrgResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    user_id: str
    role: str
    created_at: datetime


class MemberUser(BaseModel):
    id: str
    name: str
    email: str
    image: Optional[str] = None


class MemberWithUserResponse(BaseModel):
    id: str
    user_id: str
    role: str
    created_at: datetime
    user: MemberUser


class OrgRolesResponse(BaseModel):
    roles: list[RoleSummary]
    assignable_roles: list[str]
