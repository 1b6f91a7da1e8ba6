"""Custom roles, permissions and their many-to-many junction."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IdMixin, TimestampMixin


class Role(IdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "roles"

    name: str = Field(unique=True, index=True, nullable=False, max_length=50)
    display_name: str = Field(nullable=False, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(default="gray", max_length=20)
    is_system: bool = Field(default=False, nullable=False)


class Permission(IdMixin, SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    resource: str = Field(nullable=False, index=True, max_length=50)
    action: str = Field(nullable=False, max_length=50)
    description: Optional[str] = None


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: str = Field(foreign_key="roles.id", primary_key=True, ondelete="CASCADE")
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True, ondelete="CASCADE")
