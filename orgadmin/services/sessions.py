"""
Session administration and impersonation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.auth import generate_session_token
from orgadmin.core.config import get_settings
from orgadmin.core.database import transaction
from orgadmin.core.exceptions import Forbidden, NotFound
from orgadmin.models.session import UserSession
from orgadmin.services.policy import authorize_target_action
from orgadmin_shared.schemas.common import PlatformRole

log = structlog.get_logger()
settings = get_settings()


async def find_session_by_token(token: str, session: AsyncSession) -> Optional[UserSession]:
    result = await session.execute(select(UserSession).where(UserSession.token == token))
    return result.scalar_one_or_none()


async def list_user_sessions(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> list[UserSession]:
    """A user's sessions, newest first.

    Gated like a self-safe action: managers only see their members' sessions
    (and their own), admins everyone's except other admins'.
    """
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=True,
        session=session,
    )
    result = await session.execute(
        select(UserSession)
        .where(UserSession.user_id == target_user_id)
        .order_by(UserSession.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke_session(
    *,
    actor_user_id: Optional[str],
    session_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> None:
    """Revoke one session by id. An unknown id is already revoked."""
    user_session = await session.get(UserSession, session_id)
    if not user_session:
        return

    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=user_session.user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=False,
        session=session,
    )

    owner_id = user_session.user_id

    async def _delete(s: AsyncSession) -> None:
        await s.execute(delete(UserSession).where(UserSession.id == session_id))

    await transaction(session, _delete)
    log.info("session.revoked", actor_user_id=actor_user_id, user_id=owner_id, session_id=session_id)


async def revoke_all_sessions(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> None:
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=False,
        session=session,
    )

    async def _delete(s: AsyncSession) -> None:
        await s.execute(delete(UserSession).where(UserSession.user_id == target_user_id))

    await transaction(session, _delete)
    log.info("session.revoked_all", actor_user_id=actor_user_id, user_id=target_user_id)


async def impersonate_user(
    *,
    actor_user_id: str,
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> UserSession:
    """Open a session as the target, marked with the impersonator's id."""
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=False,
        session=session,
    )

    user_session = UserSession(
        token=generate_session_token(),
        user_id=target_user_id,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.impersonation_ttl_minutes),
        impersonated_by=actor_user_id,
        active_organization_id=active_organization_id,
    )

    async def _insert(s: AsyncSession) -> UserSession:
        s.add(user_session)
        await s.flush()
        return user_session

    created = await transaction(session, _insert)
    log.info(
        "session.impersonation_started",
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        organization_id=active_organization_id,
    )
    return created


async def stop_impersonation(session_token: str, session: AsyncSession) -> None:
    user_session = await find_session_by_token(session_token, session)
    if not user_session:
        raise NotFound("Session not found")
    if not user_session.impersonated_by:
        raise Forbidden("This session is not an impersonation session")

    async def _delete(s: AsyncSession) -> None:
        await s.execute(delete(UserSession).where(UserSession.token == session_token))

    await transaction(session, _delete)
    log.info("session.impersonation_stopped", impersonated_by=user_session.impersonated_by)
