"""
Role hierarchy: ordinal levels that gate which roles an actor may assign.
"""

from __future__ import annotations

from collections.abc import Iterable

from orgadmin_shared.schemas.common import ALL_ROLE_NAMES, PlatformRole

ROLE_HIERARCHY: dict[str, int] = {
    PlatformRole.MEMBER.value: 0,
    PlatformRole.MANAGER.value: 1,
    PlatformRole.ADMIN.value: 2,
}


def _name(role: str | PlatformRole) -> str:
    return role.value if isinstance(role, PlatformRole) else role


def get_role_level(role: str | PlatformRole) -> int:
    """Hierarchy level for a role name. Unknown roles are level 0."""
    return ROLE_HIERARCHY.get(_name(role), 0)


def filter_assignable_roles(
    candidate_roles: Iterable[str], requester_role: str | PlatformRole
) -> list[str]:
    """Roles from ``candidate_roles`` at or below the requester's level.

    Names outside the hierarchy (custom RBAC roles) are dropped: they are never
    assignable as a platform role.
    """
    requester_level = get_role_level(requester_role)
    return [
        role
        for role in candidate_roles
        if role in ROLE_HIERARCHY and ROLE_HIERARCHY[role] <= requester_level
    ]


def allowed_role_names_for_creator(platform_role: PlatformRole) -> list[PlatformRole]:
    """Platform roles a creator may hand out, highest first."""
    return [PlatformRole(name) for name in filter_assignable_roles(ALL_ROLE_NAMES, platform_role)]


def can_assign(role: str | PlatformRole, requester_role: str | PlatformRole) -> bool:
    return _name(role) in filter_assignable_roles(ALL_ROLE_NAMES, requester_role)
