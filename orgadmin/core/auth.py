"""
Authentication and authorization for the admin backend.

Supports:
- Password hashing (bcrypt) for credential accounts
- Opaque session tokens looked up in the sessions table
- Actor context resolution (user, platform role, active organization)
- Role and permission dependencies
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

import bcrypt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.config import get_settings
from orgadmin.core.database import get_session
from orgadmin.core.exceptions import Forbidden
from orgadmin.models.session import UserSession
from orgadmin.models.user import User
from orgadmin.services.rbac import has_permission
from orgadmin_shared.schemas.common import PlatformRole, normalize_role

log = structlog.get_logger()
settings = get_settings()

session_token_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with the configured cost factor."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Actor context
# ---------------------------------------------------------------------------

class ActorContext:
    """The authenticated caller: who they are and where they are scoped."""

    def __init__(self, user: User, user_session: UserSession):
        self.user = user
        self.session = user_session
        self.user_id = user.id
        self.platform_role: PlatformRole = normalize_role(user.role)
        self.active_organization_id: Optional[str] = user_session.active_organization_id
        self.session_token = user_session.token

    @property
    def is_admin(self) -> bool:
        return self.platform_role is PlatformRole.ADMIN


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def get_actor_context(
    authorization: Optional[str] = Depends(session_token_header),
    session: AsyncSession = Depends(get_session),
) -> ActorContext:
    """Main authentication dependency: resolves ``Authorization: Bearer <token>``."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authentication required")
    token = authorization[7:].strip()

    result = await session.execute(select(UserSession).where(UserSession.token == token))
    user_session = result.scalar_one_or_none()
    if not user_session:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    if _as_utc(user_session.expires_at) <= datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    user = await session.get(User, user_session.user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.banned:
        raise HTTPException(status_code=401, detail="User is banned")

    return ActorContext(user=user, user_session=user_session)


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------

async def require_admin_or_manager(
    actor: ActorContext = Depends(get_actor_context),
) -> ActorContext:
    """Admin panel access: platform admins and managers."""
    if actor.platform_role not in (PlatformRole.ADMIN, PlatformRole.MANAGER):
        raise Forbidden("Admin access required")
    return actor


async def require_admin(
    actor: ActorContext = Depends(get_actor_context),
) -> ActorContext:
    if not actor.is_admin:
        raise Forbidden("Admin access required")
    return actor


def require_permissions(*permissions: str):
    """Dependency factory: the caller's role must hold every ``resource:action``.

    Platform admins always pass.
    """

    async def _check(
        actor: ActorContext = Depends(get_actor_context),
        session: AsyncSession = Depends(get_session),
    ) -> ActorContext:
        if actor.is_admin:
            return actor
        missing = []
        for perm in permissions:
            resource, _, action = perm.partition(":")
            if not await has_permission(actor.platform_role.value, resource, action, session):
                missing.append(perm)
        if missing:
            log.info("auth.permissions_missing", user_id=actor.user_id, missing=missing)
            raise Forbidden(f"Missing required permissions: {', '.join(missing)}")
        return actor

    return _check
