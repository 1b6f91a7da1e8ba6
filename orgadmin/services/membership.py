"""
Role assignment and membership synchronization.

A user's platform role (``users.role``) and their organization memberships
(``members`` rows) are denormalized facts that must move together. This
module is the only writer of ``members`` rows:

- platform role -> admin: every membership of the user is deleted (global
  scope makes organization rows meaningless);
- platform role -> manager/member: exactly one organization is resolved and
  the user's row in it is upserted with the new role.

Both writes share one transaction. The last admin row of an organization can
never be demoted or removed; this is checked against a live count.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.database import transaction
from orgadmin.core.exceptions import BadRequest, Conflict, Forbidden, NotFound
from orgadmin.models.organization import Member, Organization
from orgadmin.models.user import User
from orgadmin.services.policy import (
    assert_target_action_allowed,
    assert_user_in_organization,
    find_membership,
    require_active_organization,
)
from orgadmin.services.roles import can_assign
from orgadmin_shared.schemas.common import PlatformRole

log = structlog.get_logger()

ROLE_NOT_ALLOWED = "Role not allowed"
ORGANIZATION_UNRESOLVED = "Cannot determine which organization the role applies to"
LAST_ADMIN_DEMOTE = "Cannot change role of the last organization admin"
LAST_ADMIN_REMOVE = "Cannot remove the last organization admin"
MEMBER_OF_OTHER_ORGANIZATION = "User already belongs to another organization"


async def count_org_admins(organization_id: str, session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Member)
        .where(
            Member.organization_id == organization_id,
            Member.role == PlatformRole.ADMIN.value,
        )
    )
    return result.scalar_one()


async def _guard_last_admin(member: Member, new_role: Optional[str], session: AsyncSession) -> None:
    """Refuse to demote (new_role set) or remove (None) an org's only admin row."""
    if member.role != PlatformRole.ADMIN.value or new_role == PlatformRole.ADMIN.value:
        return
    if await count_org_admins(member.organization_id, session) <= 1:
        raise Forbidden(LAST_ADMIN_DEMOTE if new_role is not None else LAST_ADMIN_REMOVE)


async def find_latest_membership(user_id: str, session: AsyncSession) -> Optional[Member]:
    result = await session.execute(
        select(Member)
        .where(Member.user_id == user_id)
        .order_by(Member.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def resolve_assignment_organization(
    *,
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> Optional[str]:
    """Organization a non-admin role assignment is scoped to.

    The active organization wins. Without one, only an admin may fall back to
    the target's most recent membership.
    """
    if active_organization_id:
        return active_organization_id
    if platform_role is not PlatformRole.ADMIN:
        return None
    member = await find_latest_membership(target_user_id, session)
    return member.organization_id if member else None


async def _upsert_membership(
    user_id: str, organization_id: str, role: str, session: AsyncSession
) -> Member:
    member = await find_membership(user_id, organization_id, session)
    if member:
        await _guard_last_admin(member, role, session)
        member.role = role
    else:
        member = Member(organization_id=organization_id, user_id=user_id, role=role)
    session.add(member)
    await session.flush()
    return member


async def set_user_role(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    new_role: PlatformRole,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> User:
    """Change a user's platform role and bring their memberships in line."""
    scoped_org_id = require_active_organization(platform_role, active_organization_id)

    await assert_target_action_allowed(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        allow_self=False,
        session=session,
    )

    if not can_assign(new_role, platform_role):
        raise Forbidden(ROLE_NOT_ALLOWED)

    if scoped_org_id is not None:
        await assert_user_in_organization(target_user_id, scoped_org_id, session)

    organization_id: Optional[str] = None
    if new_role is not PlatformRole.ADMIN:
        organization_id = await resolve_assignment_organization(
            target_user_id=target_user_id,
            platform_role=platform_role,
            active_organization_id=active_organization_id,
            session=session,
        )
        if organization_id is None:
            raise BadRequest(ORGANIZATION_UNRESOLVED)

    async def _apply(s: AsyncSession) -> None:
        await s.execute(
            update(User)
            .where(User.id == target_user_id)
            .values(role=new_role.value, updated_at=datetime.now(timezone.utc))
        )
        if new_role is PlatformRole.ADMIN:
            await s.execute(delete(Member).where(Member.user_id == target_user_id))
        else:
            await _upsert_membership(target_user_id, organization_id, new_role.value, s)

    await transaction(session, _apply)

    user = await session.get(User, target_user_id, populate_existing=True)
    if user is None:
        raise NotFound("User not found")

    log.info(
        "user.role_set",
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        role=new_role.value,
        organization_id=organization_id,
    )
    return user


# ---------------------------------------------------------------------------
# Organization-level membership management
# ---------------------------------------------------------------------------

async def get_member(member_id: str, organization_id: str, session: AsyncSession) -> Optional[Member]:
    result = await session.execute(
        select(Member).where(Member.id == member_id, Member.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def add_member(
    organization_id: str,
    user_id: str,
    role: PlatformRole,
    platform_role: PlatformRole,
    session: AsyncSession,
    *,
    actor_user_id: Optional[str] = None,
) -> Member:
    """Add an existing user to an organization.

    A scoped actor may only add a member-level user who belongs to no other
    organization.
    """
    if not can_assign(role, platform_role):
        raise Forbidden(ROLE_NOT_ALLOWED)
    if not await session.get(Organization, organization_id):
        raise NotFound("Organization not found")
    scoped = platform_role is not PlatformRole.ADMIN
    if scoped:
        await assert_target_action_allowed(
            actor_user_id=actor_user_id,
            target_user_id=user_id,
            platform_role=platform_role,
            allow_self=False,
            session=session,
        )
    if not await session.get(User, user_id):
        raise NotFound("User not found")
    if await find_membership(user_id, organization_id, session):
        raise Conflict("User is already a member of this organization")
    if scoped and await find_latest_membership(user_id, session):
        raise Forbidden(MEMBER_OF_OTHER_ORGANIZATION)

    member = Member(organization_id=organization_id, user_id=user_id, role=role.value)

    async def _insert(s: AsyncSession) -> Member:
        s.add(member)
        await s.flush()
        return member

    created = await transaction(session, _insert)
    log.info("member.added", organization_id=organization_id, user_id=user_id, role=role.value)
    return created


async def update_member_role(
    organization_id: str,
    member_id: str,
    new_role: PlatformRole,
    platform_role: PlatformRole,
    session: AsyncSession,
) -> Member:
    if not can_assign(new_role, platform_role):
        raise Forbidden(ROLE_NOT_ALLOWED)

    member = await get_member(member_id, organization_id, session)
    if not member:
        raise NotFound("Member not found")

    if platform_role is not PlatformRole.ADMIN and member.role != PlatformRole.MEMBER.value:
        raise Forbidden("Managers can only change member roles")

    async def _apply(s: AsyncSession) -> Member:
        await _guard_last_admin(member, new_role.value, s)
        member.role = new_role.value
        s.add(member)
        await s.flush()
        return member

    updated = await transaction(session, _apply)
    log.info("member.role_updated", organization_id=organization_id, member_id=member_id, role=new_role.value)
    return updated


async def remove_member(
    organization_id: str,
    member_id: str,
    platform_role: PlatformRole,
    session: AsyncSession,
) -> None:
    member = await get_member(member_id, organization_id, session)
    if not member:
        raise NotFound("Member not found")

    if platform_role is not PlatformRole.ADMIN and member.role != PlatformRole.MEMBER.value:
        raise Forbidden("Managers can only remove members")

    async def _apply(s: AsyncSession) -> None:
        await _guard_last_admin(member, None, s)
        await s.delete(member)
        await s.flush()

    await transaction(session, _apply)
    log.info("member.removed", organization_id=organization_id, member_id=member_id)


def stage_membership(
    session: AsyncSession, organization_id: str, user_id: str, role: PlatformRole
) -> Member:
    """Add a new membership row to a caller's open transaction.

    Used for rows born together with their user or organization (user
    creation, the creator of a new organization).
    """
    member = Member(organization_id=organization_id, user_id=user_id, role=role.value)
    session.add(member)
    return member


async def delete_user_memberships(user_ids: list[str], session: AsyncSession) -> None:
    """Drop every membership of the given users (part of user removal).

    Refused if it would leave any organization without an admin row.
    """
    result = await session.execute(
        select(Member.organization_id)
        .where(Member.user_id.in_(user_ids), Member.role == PlatformRole.ADMIN.value)
        .distinct()
    )
    for organization_id in result.scalars().all():
        remaining = await session.execute(
            select(func.count())
            .select_from(Member)
            .where(
                Member.organization_id == organization_id,
                Member.role == PlatformRole.ADMIN.value,
                Member.user_id.not_in(user_ids),
            )
        )
        if remaining.scalar_one() == 0:
            raise Forbidden(LAST_ADMIN_REMOVE)
    await session.execute(delete(Member).where(Member.user_id.in_(user_ids)))


async def delete_organization_memberships(organization_id: str, session: AsyncSession) -> None:
    await session.execute(delete(Member).where(Member.organization_id == organization_id))
