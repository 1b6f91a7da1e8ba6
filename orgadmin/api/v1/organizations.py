"""
Organization management API endpoints.

Managers are confined to their active organization; updating and deleting an
organization is reserved to platform admins.

GET    /api/v1/admin/organizations                             — List
POST   /api/v1/admin/organizations                             — Create
GET    /api/v1/admin/organizations/roles-metadata              — Role catalogue
GET    /api/v1/admin/organizations/{orgId}                     — Get
PUT    /api/v1/admin/organizations/{orgId}                     — Update (admin)
DELETE /api/v1/admin/organizations/{orgId}                     — Delete (admin)
GET    /api/v1/admin/organizations/{orgId}/members             — List members
POST   /api/v1/admin/organizations/{orgId}/members             — Add member
PUT    /api/v1/admin/organizations/{orgId}/members/{memberId}/role — Change member role
DELETE /api/v1/admin/organizations/{orgId}/members/{memberId}  — Remove member
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orgadmin.core.auth import (
    ActorContext,
    require_admin,
    require_admin_or_manager,
    require_permissions,
)
from orgadmin.core.database import get_session
from orgadmin.services import membership as membership_service
from orgadmin.services import organizations as org_service
from orgadmin.services.policy import assert_organization_access, require_active_organization
from orgadmin_shared.schemas.common import SuccessResponse
from orgadmin_shared.schemas.organizations import (
    MemberAddRequest,
    MemberResponse,
    MemberRoleUpdateRequest,
    MemberWithUserResponse,
    OrgCreateRequest,
    OrgListResponse,
    OrgResponse,
    OrgRolesResponse,
    OrgUpdateRequest,
)

router = APIRouter(dependencies=[Depends(require_admin_or_manager)])


@router.get("", response_model=OrgListResponse)
async def list_organizations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    actor: ActorContext = Depends(require_permissions("organization:read")),
    session: AsyncSession = Depends(get_session),
):
    """Admins see every organization, managers only their active one."""
    scoped_org_id = require_active_organization(actor.platform_role, actor.active_organization_id)
    return await org_service.list_organizations(
        page=page,
        limit=limit,
        search=search,
        organization_id=scoped_org_id,
        session=session,
    )


@router.post("", response_model=OrgResponse, status_code=201)
async def create_organization(
    body: OrgCreateRequest,
    actor: ActorContext = Depends(require_permissions("organization:create")),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.create_organization(
        name=body.name,
        slug=body.slug,
        logo=body.logo,
        metadata=body.metadata,
        creator_id=actor.user_id,
        session=session,
    )
    return org_service.to_response(org, member_count=1)


@router.get("/roles-metadata", response_model=OrgRolesResponse)
async def roles_metadata(
    actor: ActorContext = Depends(require_permissions("organization:read")),
    session: AsyncSession = Depends(get_session),
):
    return await org_service.get_roles(session, requester_role=actor.platform_role)


@router.get("/{orgId}", response_model=OrgResponse)
async def get_organization(
    orgId: str,
    actor: ActorContext = Depends(require_permissions("organization:read")),
    session: AsyncSession = Depends(get_session),
):
    assert_organization_access(actor.platform_role, actor.active_organization_id, orgId)
    return await org_service.get_organization(orgId, session)


@router.put("/{orgId}", response_model=OrgResponse)
async def update_organization(
    orgId: str,
    body: OrgUpdateRequest,
    actor: ActorContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    changes = body.model_dump(exclude_unset=True)
    org = await org_service.update_organization(orgId, session=session, **changes)
    return org_service.to_response(org)


@router.delete("/{orgId}", response_model=SuccessResponse)
async def delete_organization(
    orgId: str,
    actor: ActorContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    await org_service.delete_organization(orgId, session)
    return SuccessResponse()


@router.get("/{orgId}/members", response_model=list[MemberWithUserResponse])
async def list_members(
    orgId: str,
    actor: ActorContext = Depends(require_permissions("organization:read")),
    session: AsyncSession = Depends(get_session),
):
    assert_organization_access(actor.platform_role, actor.active_organization_id, orgId)
    return await org_service.list_members(orgId, session)


@router.post("/{orgId}/members", response_model=MemberResponse, status_code=201)
async def add_member(
    orgId: str,
    body: MemberAddRequest,
    actor: ActorContext = Depends(require_permissions("organization:invite")),
    session: AsyncSession = Depends(get_session),
):
    assert_organization_access(actor.platform_role, actor.active_organization_id, orgId)
    return await membership_service.add_member(
        orgId,
        body.user_id,
        body.role,
        actor.platform_role,
        session,
        actor_user_id=actor.user_id,
    )


@router.put("/{orgId}/members/{memberId}/role", response_model=MemberResponse)
async def update_member_role(
    orgId: str,
    memberId: str,
    body: MemberRoleUpdateRequest,
    actor: ActorContext = Depends(require_permissions("organization:invite")),
    session: AsyncSession = Depends(get_session),
):
    assert_organization_access(actor.platform_role, actor.active_organization_id, orgId)
    return await membership_service.update_member_role(
        orgId, memberId, body.role, actor.platform_role, session
    )


@router.delete("/{orgId}/members/{memberId}", response_model=SuccessResponse)
async def remove_member(
    orgId: str,
    memberId: str,
    actor: ActorContext = Depends(require_permissions("organization:invite")),
    session: AsyncSession = Depends(get_session),
):
    assert_organization_access(actor.platform_role, actor.active_organization_id, orgId)
    await membership_service.remove_member(orgId, memberId, actor.platform_role, session)
    return SuccessResponse()
