"""Organization and membership models."""

from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IdMixin, _utcnow


class Organization(IdMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    slug: str = Field(unique=True, nullable=False, index=True)
    logo: Optional[str] = None
    # "metadata" is reserved on declarative classes
    org_metadata: Optional[dict[str, Any]] = Field(
        default=None, sa_column=sa.Column("metadata", sa.JSON, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )


class Member(IdMixin, SQLModel, table=True):
    """A user's organization-scoped role. At most one row per (org, user)."""

    __tablename__ = "members"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
    )

    organization_id: str = Field(foreign_key="organizations.id", index=True, nullable=False)
    user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    role: str = Field(nullable=False, default="member")  # admin | manager | member
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
