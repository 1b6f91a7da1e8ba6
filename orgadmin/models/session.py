"""Login session model."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IdMixin, TimestampMixin


class UserSession(IdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "sessions"

    token: str = Field(unique=True, index=True, nullable=False)
    user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    impersonated_by: Optional[str] = Field(default=None, foreign_key="users.id")
    # Organization a manager is scoped into for this session
    active_organization_id: Optional[str] = Field(default=None, foreign_key="organizations.id")
