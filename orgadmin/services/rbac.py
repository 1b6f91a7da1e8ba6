"""
RBAC store: custom roles, resource:action permissions and their junction.

Every function takes the session explicitly; nothing about roles or
permissions is cached in-process, so a lookup always reflects the store.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.database import transaction
from orgadmin.core.exceptions import Conflict, Forbidden, NotFound
from orgadmin.models.rbac import Permission, Role, RolePermission
from orgadmin.services.roles import ROLE_HIERARCHY, get_role_level
from orgadmin_shared.schemas.common import PlatformRole

log = structlog.get_logger()

ROLE_ABOVE_REQUESTER = "Cannot modify a role at or above your own level"
PERMISSION_NOT_HELD = "Cannot grant permissions your role does not hold"


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

async def list_permissions(session: AsyncSession) -> list[Permission]:
    result = await session.execute(
        select(Permission).order_by(Permission.resource, Permission.action)
    )
    return list(result.scalars().all())


async def get_permission(permission_id: str, session: AsyncSession) -> Optional[Permission]:
    return await session.get(Permission, permission_id)


async def find_permission(
    resource: str, action: str, session: AsyncSession
) -> Optional[Permission]:
    result = await session.execute(
        select(Permission).where(Permission.resource == resource, Permission.action == action)
    )
    return result.scalar_one_or_none()


async def list_permissions_grouped(session: AsyncSession) -> dict[str, list[Permission]]:
    """All permissions partitioned by resource."""
    grouped: dict[str, list[Permission]] = {}
    for perm in await list_permissions(session):
        grouped.setdefault(perm.resource, []).append(perm)
    return grouped


async def create_permission(
    resource: str,
    action: str,
    description: Optional[str] = None,
    *,
    session: AsyncSession,
) -> Permission:
    """Create a permission. The (resource, action) pair is unique in the store."""
    perm = Permission(resource=resource, action=action, description=description)

    async def _insert(s: AsyncSession) -> Permission:
        s.add(perm)
        await s.flush()
        return perm

    try:
        created = await transaction(session, _insert)
    except IntegrityError:
        raise Conflict(f"Permission {resource}:{action} already exists")
    log.info("rbac.permission_created", resource=resource, action=action)
    return created


def permission_strings(permissions: list[Permission]) -> list[str]:
    return [f"{p.resource}:{p.action}" for p in permissions]


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

async def list_roles(session: AsyncSession) -> list[Role]:
    """System roles first, then by name."""
    result = await session.execute(
        select(Role).order_by(Role.is_system.desc(), Role.name.asc())
    )
    return list(result.scalars().all())


async def get_role(role_id: str, session: AsyncSession) -> Optional[Role]:
    return await session.get(Role, role_id)


async def find_role_by_name(name: str, session: AsyncSession) -> Optional[Role]:
    result = await session.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()


async def create_role(
    name: str,
    display_name: str,
    description: Optional[str] = None,
    color: Optional[str] = None,
    *,
    session: AsyncSession,
) -> Role:
    """Create a custom (non-system) role."""
    if await find_role_by_name(name, session):
        raise Conflict("Role name already exists")

    role = Role(
        name=name,
        display_name=display_name,
        description=description,
        color=color or "gray",
        is_system=False,
    )

    async def _insert(s: AsyncSession) -> Role:
        s.add(role)
        await s.flush()
        return role

    try:
        created = await transaction(session, _insert)
    except IntegrityError:
        raise Conflict("Role name already exists")
    log.info("rbac.role_created", role_id=created.id, name=name)
    return created


def assert_role_editable(role: Role, requester_role: Optional[PlatformRole]) -> None:
    """Non-admins may not edit a hierarchy role at or above their own level.

    ``requester_role=None`` is a system caller (seed scripts, tests).
    """
    if requester_role is None or requester_role is PlatformRole.ADMIN:
        return
    if role.name in ROLE_HIERARCHY and get_role_level(role.name) >= get_role_level(requester_role):
        log.info("rbac.role_edit_denied", role=role.name, requester_role=requester_role.value)
        raise Forbidden(ROLE_ABOVE_REQUESTER)


async def update_role(
    role_id: str,
    *,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
    requester_role: Optional[PlatformRole] = None,
    session: AsyncSession,
) -> Role:
    """Edit display fields. Name and the system flag never change."""
    role = await get_role(role_id, session)
    if not role:
        raise NotFound("Role not found")
    assert_role_editable(role, requester_role)

    if display_name is None and description is None and color is None:
        return role

    if display_name is not None:
        role.display_name = display_name
    if description is not None:
        role.description = description
    if color is not None:
        role.color = color

    async def _save(s: AsyncSession) -> Role:
        s.add(role)
        await s.flush()
        return role

    updated = await transaction(session, _save)
    log.info("rbac.role_updated", role_id=role_id)
    return updated


async def delete_role(
    role_id: str, session: AsyncSession, requester_role: Optional[PlatformRole] = None
) -> None:
    """Delete a custom role and its permission links. System roles are protected."""
    role = await get_role(role_id, session)
    if not role:
        raise NotFound("Role not found")
    if role.is_system:
        raise Forbidden("Cannot delete system role")
    assert_role_editable(role, requester_role)

    async def _delete(s: AsyncSession) -> None:
        await s.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        await s.delete(role)
        await s.flush()

    await transaction(session, _delete)
    log.info("rbac.role_deleted", role_id=role_id, name=role.name)


async def get_role_permissions(role_id: str, session: AsyncSession) -> list[Permission]:
    """Permissions linked to a role, sorted by resource then action."""
    result = await session.execute(
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.resource, Permission.action)
    )
    return list(result.scalars().all())


async def set_role_permissions(
    role_id: str,
    permission_ids: list[str],
    session: AsyncSession,
    requester_role: Optional[PlatformRole] = None,
) -> None:
    """Replace the full permission set of a role in one transaction.

    An empty list clears the role. Ids that match no permission are ignored.
    A non-admin requester may only edit roles below their own level and only
    hand out permissions their own role holds.
    """
    role = await get_role(role_id, session)
    if not role:
        raise NotFound("Role not found")
    assert_role_editable(role, requester_role)

    wanted = list(dict.fromkeys(permission_ids))
    if requester_role is not None and requester_role is not PlatformRole.ADMIN and wanted:
        held = {p.id for p in await get_user_permissions(requester_role.value, session)}
        result = await session.execute(select(Permission.id).where(Permission.id.in_(wanted)))
        if any(permission_id not in held for permission_id in result.scalars().all()):
            log.info("rbac.grant_denied", role=role.name, requester_role=requester_role.value)
            raise Forbidden(PERMISSION_NOT_HELD)

    async def _replace(s: AsyncSession) -> list[str]:
        await s.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        if not wanted:
            return []
        result = await s.execute(select(Permission.id).where(Permission.id.in_(wanted)))
        existing = list(result.scalars().all())
        for permission_id in existing:
            s.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await s.flush()
        return existing

    assigned = await transaction(session, _replace)
    log.info(
        "rbac.permissions_set",
        role_id=role_id,
        requested=len(wanted),
        assigned=len(assigned),
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def get_user_permissions(role_name: str, session: AsyncSession) -> list[Permission]:
    """Effective permissions for a platform role name; [] if the role is unknown."""
    role = await find_role_by_name(role_name, session)
    if not role:
        return []
    return await get_role_permissions(role.id, session)


async def has_permission(
    role_name: str, resource: str, action: str, session: AsyncSession
) -> bool:
    result = await session.execute(
        select(func.count())
        .select_from(RolePermission)
        .join(Role, Role.id == RolePermission.role_id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(
            Role.name == role_name,
            Permission.resource == resource,
            Permission.action == action,
        )
    )
    return (result.scalar_one() or 0) > 0
