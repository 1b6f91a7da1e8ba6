"""User and credential account models."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IdMixin, TimestampMixin


class User(IdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    name: str = Field(nullable=False)
    email: str = Field(unique=True, index=True, nullable=False)
    email_verified: bool = Field(default=False, nullable=False)
    image: Optional[str] = None
    role: str = Field(default="member", nullable=False)  # admin | manager | member
    banned: bool = Field(default=False, nullable=False)
    ban_reason: Optional[str] = None
    ban_expires: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))


class Account(IdMixin, TimestampMixin, SQLModel, table=True):
    """Login method of a user; ``provider_id == "credential"`` holds a password hash."""

    __tablename__ = "accounts"

    user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    account_id: str = Field(nullable=False)
    provider_id: str = Field(nullable=False)
    password: Optional[str] = None
