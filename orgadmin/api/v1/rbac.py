"""
RBAC API endpoints: custom roles, the permission catalogue and lookups.

GET    /api/v1/rbac/my-permissions
GET    /api/v1/rbac/roles
POST   /api/v1/rbac/roles
GET    /api/v1/rbac/roles/{roleId}
PUT    /api/v1/rbac/roles/{roleId}
DELETE /api/v1/rbac/roles/{roleId}
PUT    /api/v1/rbac/roles/{roleId}/permissions
GET    /api/v1/rbac/permissions
GET    /api/v1/rbac/permissions/grouped
GET    /api/v1/rbac/users/{roleName}/permissions
GET    /api/v1/rbac/check/{roleName}/{resource}/{action}
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orgadmin.core.auth import ActorContext, get_actor_context, require_permissions
from orgadmin.core.database import get_session
from orgadmin.core.exceptions import NotFound
from orgadmin.services import rbac as rbac_service
from orgadmin_shared.schemas.common import SuccessResponse
from orgadmin_shared.schemas.rbac import (
    AssignPermissionsRequest,
    PermissionCheckResponse,
    PermissionResponse,
    RoleCreateRequest,
    RoleResponse,
    RoleUpdateRequest,
    RoleWithPermissionsResponse,
)

router = APIRouter()


async def _role_with_permissions(role_id: str, session: AsyncSession) -> RoleWithPermissionsResponse:
    role = await rbac_service.get_role(role_id, session)
    if not role:
        raise NotFound("Role not found")
    permissions = await rbac_service.get_role_permissions(role_id, session)
    return RoleWithPermissionsResponse(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


@router.get("/my-permissions", response_model=list[str])
async def my_permissions(
    actor: ActorContext = Depends(get_actor_context),
    session: AsyncSession = Depends(get_session),
):
    """The caller's effective permissions as ``resource:action`` strings."""
    permissions = await rbac_service.get_user_permissions(actor.platform_role.value, session)
    return rbac_service.permission_strings(permissions)


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    return await rbac_service.list_roles(session)


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    body: RoleCreateRequest,
    _: ActorContext = Depends(require_permissions("role:create")),
    session: AsyncSession = Depends(get_session),
):
    return await rbac_service.create_role(
        body.name, body.display_name, body.description, body.color, session=session
    )


@router.get("/roles/{roleId}", response_model=RoleWithPermissionsResponse)
async def get_role(
    roleId: str,
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    return await _role_with_permissions(roleId, session)


@router.put("/roles/{roleId}", response_model=RoleResponse)
async def update_role(
    roleId: str,
    body: RoleUpdateRequest,
    actor: ActorContext = Depends(require_permissions("role:update")),
    session: AsyncSession = Depends(get_session),
):
    return await rbac_service.update_role(
        roleId,
        display_name=body.display_name,
        description=body.description,
        color=body.color,
        requester_role=actor.platform_role,
        session=session,
    )


@router.delete("/roles/{roleId}", response_model=SuccessResponse)
async def delete_role(
    roleId: str,
    actor: ActorContext = Depends(require_permissions("role:delete")),
    session: AsyncSession = Depends(get_session),
):
    await rbac_service.delete_role(roleId, session, actor.platform_role)
    return SuccessResponse()


@router.put("/roles/{roleId}/permissions", response_model=RoleWithPermissionsResponse)
async def set_role_permissions(
    roleId: str,
    body: AssignPermissionsRequest,
    actor: ActorContext = Depends(require_permissions("role:assign")),
    session: AsyncSession = Depends(get_session),
):
    await rbac_service.set_role_permissions(
        roleId, body.permission_ids, session, actor.platform_role
    )
    return await _role_with_permissions(roleId, session)


@router.get("/permissions", response_model=list[PermissionResponse])
async def list_permissions(
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    return await rbac_service.list_permissions(session)


@router.get("/permissions/grouped", response_model=dict[str, list[PermissionResponse]])
async def list_permissions_grouped(
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    return await rbac_service.list_permissions_grouped(session)


@router.get("/users/{roleName}/permissions", response_model=list[str])
async def role_name_permissions(
    roleName: str,
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    permissions = await rbac_service.get_user_permissions(roleName, session)
    return rbac_service.permission_strings(permissions)


@router.get("/check/{roleName}/{resource}/{action}", response_model=PermissionCheckResponse)
async def check_permission(
    roleName: str,
    resource: str,
    action: str,
    _: ActorContext = Depends(require_permissions("role:read")),
    session: AsyncSession = Depends(get_session),
):
    allowed = await rbac_service.has_permission(roleName, resource, action, session)
    return PermissionCheckResponse(has_permission=allowed)
