"""
User administration service: listing, creation and the mutating user actions.

Every mutating call authorizes its target through the policy layer
(``authorize_target_action``) before touching the store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.auth import hash_password
from orgadmin.core.config import get_settings
from orgadmin.core.database import transaction
from orgadmin.core.exceptions import BadRequest, Conflict, Forbidden, NotFound
from orgadmin.models.organization import Member, Organization
from orgadmin.models.session import UserSession
from orgadmin.models.user import Account, User
from orgadmin.services.membership import (
    ROLE_NOT_ALLOWED,
    delete_user_memberships,
    stage_membership,
)
from orgadmin.services.policy import authorize_target_action, require_active_organization
from orgadmin.services.rbac import list_roles
from orgadmin.services.roles import allowed_role_names_for_creator, can_assign
from orgadmin_shared.schemas.common import PlatformRole
from orgadmin_shared.schemas.users import (
    CreateUserMetadata,
    OrganizationSummary,
    RoleSummary,
    UserListResponse,
    UserResponse,
)

log = structlog.get_logger()
settings = get_settings()

CREDENTIAL_PROVIDER = "credential"
USER_EXISTS = "User already exists"


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def email_taken(email: str, session: AsyncSession) -> bool:
    result = await session.execute(select(User.id).where(User.email == email))
    return result.first() is not None


async def get_user(user_id: str, session: AsyncSession) -> User:
    user = await session.get(User, user_id, populate_existing=True)
    if not user:
        raise NotFound("User not found")
    return user


async def list_users(
    *,
    limit: Optional[int] = None,
    offset: int = 0,
    search: Optional[str] = None,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> UserListResponse:
    """Users newest first. Scoped actors only see their active organization."""
    org_id = require_active_organization(platform_role, active_organization_id)
    limit = max(1, min(limit or settings.default_page_size, settings.max_page_size))
    offset = max(0, offset)

    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if org_id is not None:
        filters.append(
            select(Member.id)
            .where(Member.user_id == User.id, Member.organization_id == org_id)
            .exists()
        )

    count_result = await session.execute(select(func.count()).select_from(User).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(User).where(*filters).order_by(User.created_at.desc()).limit(limit).offset(offset)
    )
    users = result.scalars().all()
    return UserListResponse(
        data=[UserResponse.model_validate(u) for u in users],
        total=total,
        limit=limit,
        offset=offset,
    )


async def get_create_user_metadata(
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> CreateUserMetadata:
    """Roles, assignable role names and target organizations for the create form."""
    org_id = require_active_organization(platform_role, active_organization_id)

    if org_id is None:
        result = await session.execute(select(Organization).order_by(Organization.name))
        orgs = list(result.scalars().all())
    else:
        org = await session.get(Organization, org_id)
        orgs = [org] if org else []

    roles = await list_roles(session)
    return CreateUserMetadata(
        roles=[
            RoleSummary(
                name=r.name,
                display_name=r.display_name,
                description=r.description,
                color=r.color,
                is_system=r.is_system,
            )
            for r in roles
        ],
        allowed_role_names=allowed_role_names_for_creator(platform_role),
        organizations=[OrganizationSummary(id=o.id, name=o.name, slug=o.slug) for o in orgs],
    )


async def create_user(
    *,
    name: str,
    email: str,
    password: str,
    role: PlatformRole,
    organization_id: Optional[str],
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> User:
    """Create a user with a credential account and, for non-admins, a membership."""
    if not can_assign(role, platform_role):
        raise Forbidden(ROLE_NOT_ALLOWED)

    scoped_org_id = require_active_organization(platform_role, active_organization_id)

    target_org_id = None if role is PlatformRole.ADMIN else organization_id
    if role is not PlatformRole.ADMIN:
        if not target_org_id:
            raise BadRequest("Organization is required for non-admin users")
        if scoped_org_id is not None and target_org_id != scoped_org_id:
            raise Forbidden("Managers can only assign users to their active organization")
        if not await session.get(Organization, target_org_id):
            raise NotFound("Organization not found")

    email = email.strip().lower()
    if await email_taken(email, session):
        raise Conflict(USER_EXISTS)

    user = User(name=name.strip(), email=email, role=role.value)
    hashed = hash_password(password)

    async def _insert(s: AsyncSession) -> User:
        s.add(user)
        await s.flush()
        s.add(
            Account(
                user_id=user.id,
                account_id=user.id,
                provider_id=CREDENTIAL_PROVIDER,
                password=hashed,
            )
        )
        if target_org_id:
            stage_membership(s, target_org_id, user.id, role)
        await s.flush()
        return user

    try:
        created = await transaction(session, _insert)
    except IntegrityError:
        # Lost a race with a concurrent insert of the same email
        raise Conflict(USER_EXISTS)
    log.info("user.created", user_id=created.id, role=role.value, organization_id=target_org_id)
    return created


async def update_user(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    name: Optional[str],
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> User:
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=True,
        session=session,
    )
    if name is None:
        raise BadRequest("No data to update")

    async def _apply(s: AsyncSession) -> None:
        await s.execute(
            update(User).where(User.id == target_user_id).values(name=name, updated_at=_now())
        )

    await transaction(session, _apply)
    log.info("user.updated", actor_user_id=actor_user_id, target_user_id=target_user_id)
    return await get_user(target_user_id, session)


async def ban_user(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    reason: Optional[str] = None,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> None:
    """Ban a user and end all of their sessions."""
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=False,
        session=session,
    )

    async def _apply(s: AsyncSession) -> None:
        await s.execute(
            update(User)
            .where(User.id == target_user_id)
            .values(banned=True, ban_reason=reason, updated_at=_now())
        )
        await s.execute(delete(UserSession).where(UserSession.user_id == target_user_id))

    await transaction(session, _apply)
    log.info("user.banned", actor_user_id=actor_user_id, target_user_id=target_user_id)


async def unban_user(
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

    async def _apply(s: AsyncSession) -> None:
        await s.execute(
            update(User)
            .where(User.id == target_user_id)
            .values(banned=False, ban_reason=None, ban_expires=None, updated_at=_now())
        )

    await transaction(session, _apply)
    log.info("user.unbanned", actor_user_id=actor_user_id, target_user_id=target_user_id)


async def set_user_password(
    *,
    actor_user_id: Optional[str],
    target_user_id: str,
    new_password: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> None:
    """Replace the credential password, creating the credential account if missing."""
    await authorize_target_action(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        platform_role=platform_role,
        active_organization_id=active_organization_id,
        allow_self=True,
        session=session,
    )
    hashed = hash_password(new_password)

    async def _apply(s: AsyncSession) -> None:
        result = await s.execute(
            select(Account).where(
                Account.user_id == target_user_id,
                Account.provider_id == CREDENTIAL_PROVIDER,
            )
        )
        account = result.scalar_one_or_none()
        if account:
            account.password = hashed
        else:
            account = Account(
                user_id=target_user_id,
                account_id=target_user_id,
                provider_id=CREDENTIAL_PROVIDER,
                password=hashed,
            )
        s.add(account)
        await s.flush()

    await transaction(session, _apply)
    log.info("user.password_set", actor_user_id=actor_user_id, target_user_id=target_user_id)


async def _delete_users(user_ids: list[str], session: AsyncSession) -> None:
    """Delete users with their memberships, sessions and accounts in one transaction."""

    async def _apply(s: AsyncSession) -> None:
        await delete_user_memberships(user_ids, s)
        await s.execute(
            update(UserSession)
            .where(UserSession.impersonated_by.in_(user_ids))
            .values(impersonated_by=None)
        )
        await s.execute(delete(UserSession).where(UserSession.user_id.in_(user_ids)))
        await s.execute(delete(Account).where(Account.user_id.in_(user_ids)))
        await s.execute(delete(User).where(User.id.in_(user_ids)))

    await transaction(session, _apply)


async def remove_user(
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
    await _delete_users([target_user_id], session)
    log.info("user.removed", actor_user_id=actor_user_id, target_user_id=target_user_id)


async def remove_users(
    *,
    actor_user_id: Optional[str],
    target_user_ids: list[str],
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> int:
    """Bulk removal, all-or-nothing. Returns the number of users deleted."""
    user_ids = list(dict.fromkeys(target_user_ids))
    if not user_ids:
        return 0

    # Every target is validated before anything is deleted.
    for user_id in user_ids:
        await authorize_target_action(
            actor_user_id=actor_user_id,
            target_user_id=user_id,
            platform_role=platform_role,
            active_organization_id=active_organization_id,
            allow_self=False,
            session=session,
        )

    await _delete_users(user_ids, session)
    log.info("user.bulk_removed", actor_user_id=actor_user_id, count=len(user_ids))
    return len(user_ids)
