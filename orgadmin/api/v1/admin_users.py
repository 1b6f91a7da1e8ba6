"""
Admin user management API endpoints.

GET    /api/v1/admin/users                         — List users
GET    /api/v1/admin/users/create-metadata         — Roles/orgs for the create form
POST   /api/v1/admin/users                         — Create a user
POST   /api/v1/admin/users/capabilities            — Batch capabilities
POST   /api/v1/admin/users/bulk-remove             — Remove several users
GET    /api/v1/admin/users/{userId}/capabilities   — Capabilities on one user
PATCH  /api/v1/admin/users/{userId}                — Update profile
PUT    /api/v1/admin/users/{userId}/role           — Set platform role
POST   /api/v1/admin/users/{userId}/ban            — Ban
POST   /api/v1/admin/users/{userId}/unban          — Unban
POST   /api/v1/admin/users/{userId}/password       — Set password
DELETE /api/v1/admin/users/{userId}                — Remove user
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgadmin.core.auth import ActorContext, require_admin_or_manager
from orgadmin.core.database import get_session, get_session_factory
from orgadmin.services import capabilities as capability_service
from orgadmin.services import membership as membership_service
from orgadmin.services import users as user_service
from orgadmin_shared.schemas.common import SuccessResponse
from orgadmin_shared.schemas.users import (
    BanRequest,
    BatchCapabilitiesRequest,
    BulkRemoveRequest,
    BulkRemoveResponse,
    CreateUserMetadata,
    SetPasswordRequest,
    SetRoleRequest,
    UserCapabilities,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)

router = APIRouter()


def _scope(actor: ActorContext) -> dict:
    return {
        "actor_user_id": actor.user_id,
        "platform_role": actor.platform_role,
        "active_organization_id": actor.active_organization_id,
    }


@router.get("", response_model=UserListResponse)
async def list_users(
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = None,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.list_users(
        limit=limit,
        offset=offset,
        search=search,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )


@router.get("/create-metadata", response_model=CreateUserMetadata)
async def create_user_metadata(
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.get_create_user_metadata(
        actor.platform_role, actor.active_organization_id, session
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    body: UserCreateRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.create_user(
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        organization_id=body.organization_id,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session=session,
    )
    return UserResponse.model_validate(user)


@router.post("/capabilities", response_model=dict[str, UserCapabilities])
async def batch_capabilities(
    body: BatchCapabilitiesRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Capabilities per user id; ids that cannot be resolved are absent."""
    return await capability_service.get_batch_capabilities(
        actor_user_id=actor.user_id,
        target_user_ids=body.user_ids,
        platform_role=actor.platform_role,
        active_organization_id=actor.active_organization_id,
        session_factory=session_factory,
    )


@router.post("/bulk-remove", response_model=BulkRemoveResponse)
async def bulk_remove(
    body: BulkRemoveRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    deleted = await user_service.remove_users(
        target_user_ids=body.user_ids, session=session, **_scope(actor)
    )
    return BulkRemoveResponse(deleted_count=deleted)


@router.get("/{userId}/capabilities", response_model=UserCapabilities)
async def user_capabilities(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    return await capability_service.get_user_capabilities(
        target_user_id=userId, session=session, **_scope(actor)
    )


@router.patch("/{userId}", response_model=UserResponse)
async def update_user(
    userId: str,
    body: UserUpdateRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.update_user(
        target_user_id=userId, name=body.name, session=session, **_scope(actor)
    )
    return UserResponse.model_validate(user)


@router.put("/{userId}/role", response_model=UserResponse)
async def set_role(
    userId: str,
    body: SetRoleRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    user = await membership_service.set_user_role(
        target_user_id=userId, new_role=body.role, session=session, **_scope(actor)
    )
    return UserResponse.model_validate(user)


@router.post("/{userId}/ban", response_model=SuccessResponse)
async def ban_user(
    userId: str,
    body: BanRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await user_service.ban_user(
        target_user_id=userId, reason=body.ban_reason, session=session, **_scope(actor)
    )
    return SuccessResponse()


@router.post("/{userId}/unban", response_model=SuccessResponse)
async def unban_user(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await user_service.unban_user(target_user_id=userId, session=session, **_scope(actor))
    return SuccessResponse()


@router.post("/{userId}/password", response_model=SuccessResponse)
async def set_password(
    userId: str,
    body: SetPasswordRequest,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await user_service.set_user_password(
        target_user_id=userId, new_password=body.new_password, session=session, **_scope(actor)
    )
    return SuccessResponse()


@router.delete("/{userId}", response_model=SuccessResponse)
async def remove_user(
    userId: str,
    actor: ActorContext = Depends(require_admin_or_manager),
    session: AsyncSession = Depends(get_session),
):
    await user_service.remove_user(target_user_id=userId, session=session, **_scope(actor))
    return SuccessResponse()
