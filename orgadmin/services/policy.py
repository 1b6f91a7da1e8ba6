"""
Target action policy: decides whether an actor may mutate a target user.

Two layers:

1. ``assert_target_action_allowed``: self-protection and peer-role protection.
   Admins never act on other admins; managers act on members only.
2. Organization scoping (``assert_org_scope``): a non-admin actor must be
   scoped into an active organization that the target belongs to.

Mutating services run both layers per target, including inside bulk
operations.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.exceptions import Forbidden, NotFound
from orgadmin.models.organization import Member
from orgadmin.models.user import User
from orgadmin_shared.schemas.common import PlatformRole, normalize_role

log = structlog.get_logger()

SELF_ACTION_FORBIDDEN = "You cannot perform this action on yourself"
TARGET_NOT_FOUND = "Target user not found"
ADMIN_PEER_FORBIDDEN = "Admins cannot perform this action on other admins"
MANAGER_SCOPE_FORBIDDEN = "Managers can only perform this action on members"
ACTIVE_ORG_REQUIRED = "Active organization required"
NOT_IN_ORGANIZATION = "User is not in your organization"
ORGANIZATION_ACCESS_FORBIDDEN = "You can only access your own organization"


async def get_target_role(target_user_id: str, session: AsyncSession) -> Optional[PlatformRole]:
    """Effective platform role of a user, or None if the user does not exist."""
    result = await session.execute(select(User.role).where(User.id == target_user_id))
    row = result.first()
    if row is None:
        return None
    return normalize_role(row[0])


async def evaluate_target_action(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    platform_role: PlatformRole,
    allow_self: bool,
    session: AsyncSession,
) -> None:
    """Raise Forbidden on a policy violation, NotFound if the target is absent."""
    if not actor_user_id:
        # System-initiated action
        return

    if actor_user_id == target_user_id:
        if not allow_self:
            raise Forbidden(SELF_ACTION_FORBIDDEN)
        return

    target_role = await get_target_role(target_user_id, session)
    if target_role is None:
        raise NotFound(TARGET_NOT_FOUND)

    if platform_role is PlatformRole.ADMIN:
        if target_role is PlatformRole.ADMIN:
            raise Forbidden(ADMIN_PEER_FORBIDDEN)
        return

    if target_role is not PlatformRole.MEMBER:
        raise Forbidden(MANAGER_SCOPE_FORBIDDEN)


async def assert_target_action_allowed(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    platform_role: PlatformRole,
    allow_self: bool,
    session: AsyncSession,
) -> None:
    """Policy check at the mutating-action boundary.

    A missing target is reported as Forbidden, indistinguishable from any other
    refusal, so an unauthorized actor cannot discover which user ids exist.
    """
    try:
        await evaluate_target_action(
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            platform_role=platform_role,
            allow_self=allow_self,
            session=session,
        )
    except NotFound:
        raise Forbidden(TARGET_NOT_FOUND) from None
    except Forbidden as exc:
        log.info(
            "policy.denied",
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            platform_role=platform_role.value,
            reason=exc.detail,
        )
        raise


# ---------------------------------------------------------------------------
# Organization scoping
# ---------------------------------------------------------------------------

def require_active_organization(
    platform_role: PlatformRole, active_organization_id: Optional[str]
) -> Optional[str]:
    """Active organization for scoped actors; None for admins (global scope)."""
    if platform_role is PlatformRole.ADMIN:
        return None
    if not active_organization_id:
        raise Forbidden(ACTIVE_ORG_REQUIRED)
    return active_organization_id


async def find_membership(
    user_id: str, organization_id: str, session: AsyncSession
) -> Optional[Member]:
    result = await session.execute(
        select(Member).where(
            Member.organization_id == organization_id, Member.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def assert_user_in_organization(
    user_id: str, organization_id: str, session: AsyncSession
) -> None:
    if not await find_membership(user_id, organization_id, session):
        raise Forbidden(NOT_IN_ORGANIZATION)


async def assert_org_scope(
    *,
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> None:
    """No-op for admins; otherwise the target must be in the active organization."""
    org_id = require_active_organization(platform_role, active_organization_id)
    if org_id is None:
        return
    await assert_user_in_organization(target_user_id, org_id, session)


async def authorize_target_action(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    allow_self: bool,
    session: AsyncSession,
) -> None:
    """Both layers for one target.

    A scoped actor without an active organization is refused before anything
    is looked up; then the target policy runs, then the membership check.
    """
    require_active_organization(platform_role, active_organization_id)
    await assert_target_action_allowed(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        allow_self=allow_self,
        session=session,
    )
    await assert_org_scope(
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        session=session,
    )


def assert_organization_access(
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    organization_id: str,
) -> None:
    """Scoped actors may only address the organization they are scoped into."""
    org_id = require_active_organization(platform_role, active_organization_id)
    if org_id is not None and org_id != organization_id:
        raise Forbidden(ORGANIZATION_ACCESS_FORBIDDEN)
