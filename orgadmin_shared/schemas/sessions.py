"""Session administration schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RevokeSessionRequest(BaseModel):
    session_id: str


class SessionResponse(BaseModel):
    """A session as shown to admins. The token is the bearer credential and is never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    impersonated_by: Optional[str] = None
    active_organization_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ImpersonationResponse(BaseModel):
    session_token: str
    expires_at: datetime
