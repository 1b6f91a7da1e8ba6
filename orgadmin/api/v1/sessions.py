"""
Session administration API endpoints.

GET    /api/v1/admin/sessions/users/{userId}        — List a user's sessions
POST   /api/v1/admin/sessions/revoke                — Revoke one session
DELETE /api/v1/admin/sessions/users/{userId}        — Revoke all of a user's sessions
POST   /api/v1/admin/sessions/impersonate/{userId}  — Start impersonating
POST   /api/v1/admin/sessions/stop-impersonating    — End the current impersonation
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orgadmin.core.auth import ActorContext, get_actor_context, require_admin_or_manager
from orgadmin.core.database import get_session
from orgadmin.services import sessions as session_service
from orgadmin_shared.schemas.common import SuccessResponse
from orgadmin_shared.schemas.sessions import (
    ImpersonationResponse,
    RevokeSessionRequest,
    SessionResponse,
)

router = APIRouter()


@router.get("/users/{userId}", response_model=list[SessionResponse])
async def list_user_sessions(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    return await session_service.list_user_sessions(
        actor_user_id=actor.user_id,
        target_user_id=userId,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )


@router.post("/revoke", response_model=SuccessResponse)
async def revoke_session(
    body: RevokeSessionRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await session_service.revoke_session(
        actor_user_id=actor.user_id,
        session_id=body.session_id,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )
    return SuccessResponse()


@router.delete("/users/{userId}", response_model=SuccessResponse)
async def revoke_all_sessions(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await session_service.revoke_all_sessions(
        actor_user_id=actor.user_id,
        target_user_id=userId,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )
    return SuccessResponse()


@router.post("/impersonate/{userId}", response_model=ImpersonationResponse, status_code=201)
async def impersonate_user(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    created = await session_service.impersonate_user(
        actor_user_id=actor.user_id,
        target_user_id=userId,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )
    return ImpersonationResponse(session_token=created.token, expires_at=created.expires_at)


@router.post("/stop-impersonating", response_model=SuccessResponse)
async def stop_impersonating(
    actor: ActorContext = Depends(get_actor_context),
    session: AsyncSession = Depends(get_session),
):
    """Called with the impersonation session's own token."""
    await session_service.stop_impersonation(actor.session_token, session)
    return SuccessResponse()
