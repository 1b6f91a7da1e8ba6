"""
Organization service: platform-level org CRUD, membership listing and the
role catalogue used for membership assignment.
"""

from __future__ import annotations

import math
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.database import transaction
from orgadmin.core.exceptions import BadRequest, Conflict, NotFound
from orgadmin.models.organization import Member, Organization
from orgadmin.models.session import UserSession
from orgadmin.models.user import User
from orgadmin.services.membership import (
    delete_organization_memberships,
    stage_membership,
)
from orgadmin.services.rbac import list_roles
from orgadmin.services.roles import filter_assignable_roles
from orgadmin_shared.schemas.common import PlatformRole
from orgadmin_shared.schemas.organizations import (
    MAX_PAGE_SIZE,
    SLUG_PATTERN,
    MemberUser,
    MemberWithUserResponse,
    OrgListResponse,
    OrgResponse,
    OrgRolesResponse,
)
from orgadmin_shared.schemas.users import RoleSummary

log = structlog.get_logger()

_UNSET: Any = object()


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise BadRequest("name is required")
    return name


def _clean_slug(slug: str) -> str:
    slug = slug.strip().lower()
    if not slug:
        raise BadRequest("slug is required")
    if not SLUG_PATTERN.match(slug):
        raise BadRequest("invalid slug")
    return slug


def to_response(org: Organization, member_count: Optional[int] = None) -> OrgResponse:
    return OrgResponse(
        id=org.id,
        name=org.name,
        slug=org.slug,
        logo=org.logo,
        metadata=org.org_metadata,
        created_at=org.created_at,
        member_count=member_count,
    )


async def _slug_taken(slug: str, session: AsyncSession, exclude_id: Optional[str] = None) -> bool:
    stmt = select(Organization.id).where(Organization.slug == slug)
    if exclude_id:
        stmt = stmt.where(Organization.id != exclude_id)
    result = await session.execute(stmt)
    return result.first() is not None


async def _member_count(organization_id: str, session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count()).select_from(Member).where(Member.organization_id == organization_id)
    )
    return result.scalar_one()


async def get_roles(
    session: AsyncSession, requester_role: Optional[PlatformRole] = None
) -> OrgRolesResponse:
    """All seeded roles, plus the names the requester may assign."""
    roles = await list_roles(session)
    names = [r.name for r in roles]
    assignable = filter_assignable_roles(names, requester_role) if requester_role else names
    return OrgRolesResponse(
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
        assignable_roles=assignable,
    )


async def create_organization(
    *,
    name: str,
    slug: str,
    logo: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    creator_id: str,
    session: AsyncSession,
) -> Organization:
    """Create an org and make the creator its admin member."""
    name = _clean_name(name)
    slug = _clean_slug(slug)
    if await _slug_taken(slug, session):
        raise Conflict("Organization slug already taken")

    org = Organization(name=name, slug=slug, logo=logo, org_metadata=metadata)

    async def _insert(s: AsyncSession) -> Organization:
        s.add(org)
        await s.flush()
        stage_membership(s, org.id, creator_id, PlatformRole.ADMIN)
        await s.flush()
        return org

    try:
        created = await transaction(session, _insert)
    except IntegrityError:
        raise Conflict("Organization slug already taken")
    log.info("org.created", organization_id=created.id, slug=slug, creator_id=creator_id)
    return created


async def list_organizations(
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    organization_id: Optional[str] = None,
    session: AsyncSession,
) -> OrgListResponse:
    """Paged organizations with member counts, newest first.

    ``organization_id`` narrows the listing to that one organization (a scoped
    actor's view).
    """
    page = max(1, page)
    limit = min(MAX_PAGE_SIZE, max(1, limit))
    offset = (page - 1) * limit
    search = (search or "").strip() or None

    filters = []
    if organization_id is not None:
        filters.append(Organization.id == organization_id)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Organization.name.ilike(pattern), Organization.slug.ilike(pattern)))

    count_result = await session.execute(
        select(func.count()).select_from(Organization).where(*filters)
    )
    total = count_result.scalar_one()

    member_count = (
        select(func.count())
        .select_from(Member)
        .where(Member.organization_id == Organization.id)
        .scalar_subquery()
    )
    result = await session.execute(
        select(Organization, member_count)
        .where(*filters)
        .order_by(Organization.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return OrgListResponse(
        data=[to_response(org, count) for org, count in result.all()],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


async def get_organization(organization_id: str, session: AsyncSession) -> OrgResponse:
    org = await session.get(Organization, organization_id)
    if not org:
        raise NotFound("Organization not found")
    return to_response(org, await _member_count(org.id, session))


async def update_organization(
    organization_id: str,
    *,
    name: Optional[str] = None,
    slug: Optional[str] = None,
    logo: Any = _UNSET,
    metadata: Any = _UNSET,
    session: AsyncSession,
) -> Organization:
    """Partial update. ``logo``/``metadata`` may be explicitly cleared with None."""
    org = await session.get(Organization, organization_id)
    if not org:
        raise NotFound("Organization not found")

    values: dict[str, Any] = {}
    if name is not None:
        values["name"] = _clean_name(name)
    if slug is not None:
        values["slug"] = _clean_slug(slug)
        if await _slug_taken(values["slug"], session, exclude_id=organization_id):
            raise Conflict("Organization slug already taken")
    if logo is not _UNSET:
        values["logo"] = logo
    if metadata is not _UNSET:
        values["org_metadata"] = metadata

    if not values:
        return org

    async def _apply(s: AsyncSession) -> None:
        for key, value in values.items():
            setattr(org, key, value)
        s.add(org)
        await s.flush()

    await transaction(session, _apply)
    log.info("org.updated", organization_id=organization_id, fields=sorted(values))
    return org


async def delete_organization(organization_id: str, session: AsyncSession) -> None:
    """Delete an org with its memberships; sessions scoped into it lose that scope."""
    org = await session.get(Organization, organization_id)
    if not org:
        raise NotFound("Organization not found")

    async def _apply(s: AsyncSession) -> None:
        await delete_organization_memberships(organization_id, s)
        await s.execute(
            update(UserSession)
            .where(UserSession.active_organization_id == organization_id)
            .values(active_organization_id=None)
        )
        await s.execute(delete(Organization).where(Organization.id == organization_id))

    await transaction(session, _apply)
    log.info("org.deleted", organization_id=organization_id, slug=org.slug)


async def list_members(organization_id: str, session: AsyncSession) -> list[MemberWithUserResponse]:
    if not await session.get(Organization, organization_id):
        raise NotFound("Organization not found")
    result = await session.execute(
        select(Member, User)
        .join(User, User.id == Member.user_id)
        .where(Member.organization_id == organization_id)
        .order_by(Member.created_at.asc())
    )
    return [
        MemberWithUserResponse(
            id=member.id,
            user_id=member.user_id,
            role=member.role,
            created_at=member.created_at,
            user=MemberUser(id=user.id, name=user.name, email=user.email, image=user.image),
        )
        for member, user in result.all()
    ]
