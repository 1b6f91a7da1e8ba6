"""
Tests for role assignment and membership synchronization.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from orgadmin.core.exceptions import BadRequest, Conflict, Forbidden, NotFound
from orgadmin.models.organization import Member
from orgadmin.models.user import User
from orgadmin.services import membership
from orgadmin.services.membership import (
    LAST_ADMIN_DEMOTE,
    LAST_ADMIN_REMOVE,
    MEMBER_OF_OTHER_ORGANIZATION,
    ORGANIZATION_UNRESOLVED,
    ROLE_NOT_ALLOWED,
    add_member,
    count_org_admins,
    remove_member,
    set_user_role,
    update_member_role,
)
from orgadmin.services.policy import (
    ACTIVE_ORG_REQUIRED,
    MANAGER_SCOPE_FORBIDDEN,
    SELF_ACTION_FORBIDDEN,
    TARGET_NOT_FOUND,
)
from orgadmin_shared.schemas.common import PlatformRole

from conftest import add_membership, create_org, create_user

ADMIN = PlatformRole.ADMIN
MANAGER = PlatformRole.MANAGER
MEMBER = PlatformRole.MEMBER


async def memberships_of(session_factory, user_id):
    async with session_factory() as s:
        result = await s.execute(select(Member).where(Member.user_id == user_id))
        return list(result.scalars().all())


async def stored_role(session_factory, user_id):
    async with session_factory() as s:
        user = await s.get(User, user_id)
        return user.role


# ---------------------------------------------------------------------------
# set_user_role
# ---------------------------------------------------------------------------

class TestSetUserRole:

    async def test_promote_to_admin_drops_memberships(self, session, session_factory, world):
        org3 = await create_org(session, "org-three")
        await add_membership(session, org3, world.member1)

        user = await set_user_role(
            actor_user_id=world.admin.id,
            target_user_id=world.member1.id,
            new_role=ADMIN,
            platform_role=ADMIN,
            active_organization_id=None,
            session=session,
        )

        assert user.role == "admin"
        assert await memberships_of(session_factory, world.member1.id) == []

    async def test_promote_to_admin_is_idempotent_on_memberships(self, session, session_factory, world):
        for _ in range(2):
            await set_user_role(
                actor_user_id=None,
                target_user_id=world.member2.id,
                new_role=ADMIN,
                platform_role=ADMIN,
                active_organization_id=None,
                session=session,
            )
        assert await stored_role(session_factory, world.member2.id) == "admin"
        assert await memberships_of(session_factory, world.member2.id) == []

    async def test_admin_without_active_org_uses_latest_membership(self, session, session_factory, world):
        org3 = await create_org(session, "org-three")
        await add_membership(
            session,
            org3,
            world.member2,
            created_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        )

        await set_user_role(
            actor_user_id=world.admin.id,
            target_user_id=world.member2.id,
            new_role=MANAGER,
            platform_role=ADMIN,
            active_organization_id=None,
            session=session,
        )

        rows = {m.organization_id: m.role for m in await memberships_of(session_factory, world.member2.id)}
        assert rows[org3.id] == "manager"
        assert rows[world.org2.id] == "member"

    async def test_active_org_upserts_membership(self, session, session_factory, world):
        # member2 is not in org1 yet: an admin scoped into org1 creates the row
        await set_user_role(
            actor_user_id=world.admin.id,
            target_user_id=world.member2.id,
            new_role=MANAGER,
            platform_role=ADMIN,
            active_organization_id=world.org1.id,
            session=session,
        )
        rows = {m.organization_id: m.role for m in await memberships_of(session_factory, world.member2.id)}
        assert rows[world.org1.id] == "manager"

    async def test_demoting_admin_without_membership_is_bad_request(self, session, world):
        with pytest.raises(BadRequest, match=ORGANIZATION_UNRESOLVED):
            await set_user_role(
                actor_user_id=None,
                target_user_id=world.admin2.id,
                new_role=MEMBER,
                platform_role=ADMIN,
                active_organization_id=None,
                session=session,
            )

    async def test_manager_promotes_own_member(self, session, session_factory, world):
        user = await set_user_role(
            actor_user_id=world.manager1.id,
            target_user_id=world.member1.id,
            new_role=MANAGER,
            platform_role=MANAGER,
            active_organization_id=world.org1.id,
            session=session,
        )
        assert user.role == "manager"
        rows = await memberships_of(session_factory, world.member1.id)
        assert [(m.organization_id, m.role) for m in rows] == [(world.org1.id, "manager")]

    async def test_manager_cannot_grant_admin(self, session, world):
        with pytest.raises(Forbidden, match=ROLE_NOT_ALLOWED):
            await set_user_role(
                actor_user_id=world.manager1.id,
                target_user_id=world.member1.id,
                new_role=ADMIN,
                platform_role=MANAGER,
                active_organization_id=world.org1.id,
                session=session,
            )

    async def test_manager_without_active_org(self, session, world):
        with pytest.raises(Forbidden, match=ACTIVE_ORG_REQUIRED):
            await set_user_role(
                actor_user_id=world.manager1.id,
                target_user_id=world.member1.id,
                new_role=MEMBER,
                platform_role=MANAGER,
                active_organization_id=None,
                session=session,
            )

    async def test_cannot_change_own_role(self, session, world):
        with pytest.raises(Forbidden, match=SELF_ACTION_FORBIDDEN):
            await set_user_role(
                actor_user_id=world.admin.id,
                target_user_id=world.admin.id,
                new_role=MEMBER,
                platform_role=ADMIN,
                active_organization_id=None,
                session=session,
            )

    async def test_last_org_admin_cannot_be_demoted(self, session, session_factory, world):
        with pytest.raises(Forbidden, match=LAST_ADMIN_DEMOTE):
            await set_user_role(
                actor_user_id=world.admin.id,
                target_user_id=world.owner1.id,
                new_role=MEMBER,
                platform_role=ADMIN,
                active_organization_id=world.org1.id,
                session=session,
            )
        # Nothing was applied: the role write shares the transaction
        assert await stored_role(session_factory, world.owner1.id) == "manager"

    async def test_failure_rolls_back_role_write(self, session, session_factory, world, monkeypatch):
        async def _boom(*args, **kwargs):
            raise RuntimeError("membership write failed")

        monkeypatch.setattr(membership, "_upsert_membership", _boom)

        with pytest.raises(RuntimeError):
            await set_user_role(
                actor_user_id=world.admin.id,
                target_user_id=world.member1.id,
                new_role=MANAGER,
                platform_role=ADMIN,
                active_organization_id=world.org1.id,
                session=session,
            )

        assert await stored_role(session_factory, world.member1.id) == "member"
        rows = await memberships_of(session_factory, world.member1.id)
        assert [(m.organization_id, m.role) for m in rows] == [(world.org1.id, "member")]


# ---------------------------------------------------------------------------
# Organization-level membership management
# ---------------------------------------------------------------------------

class TestMemberManagement:

    async def test_add_member(self, session, world):
        member = await add_member(world.org2.id, world.member1.id, MEMBER, ADMIN, session)
        assert member.organization_id == world.org2.id
        assert member.role == "member"

    async def test_add_duplicate(self, session, world):
        with pytest.raises(Conflict):
            await add_member(world.org1.id, world.member1.id, MEMBER, ADMIN, session)

    async def test_add_to_missing_org(self, session, world):
        with pytest.raises(NotFound, match="Organization not found"):
            await add_member("missing", world.member1.id, MEMBER, ADMIN, session)

    async def test_add_missing_user(self, session, world):
        with pytest.raises(NotFound, match="User not found"):
            await add_member(world.org1.id, "missing", MEMBER, ADMIN, session)

    async def test_manager_cannot_add_admin_member(self, session, world):
        with pytest.raises(Forbidden, match=ROLE_NOT_ALLOWED):
            await add_member(world.org1.id, world.member2.id, ADMIN, MANAGER, session)

    async def test_manager_adds_unaffiliated_member(self, session, world):
        fresh = await create_user(session, "Fresh")
        member = await add_member(
            world.org1.id, fresh.id, MEMBER, MANAGER, session, actor_user_id=world.manager1.id
        )
        assert member.organization_id == world.org1.id

    async def test_manager_cannot_pull_member_of_other_org(self, session, session_factory, world):
        with pytest.raises(Forbidden, match=MEMBER_OF_OTHER_ORGANIZATION):
            await add_member(
                world.org1.id, world.member2.id, MEMBER, MANAGER, session,
                actor_user_id=world.manager1.id,
            )
        rows = await memberships_of(session_factory, world.member2.id)
        assert [r.organization_id for r in rows] == [world.org2.id]

    async def test_manager_cannot_add_admin_user(self, session, session_factory, world):
        with pytest.raises(Forbidden, match=MANAGER_SCOPE_FORBIDDEN):
            await add_member(
                world.org1.id, world.admin2.id, MEMBER, MANAGER, session,
                actor_user_id=world.manager1.id,
            )
        assert await memberships_of(session_factory, world.admin2.id) == []

    async def test_manager_cannot_add_unknown_user(self, session, world):
        with pytest.raises(Forbidden, match=TARGET_NOT_FOUND):
            await add_member(
                world.org1.id, "missing", MEMBER, MANAGER, session,
                actor_user_id=world.manager1.id,
            )

    async def test_update_member_role(self, session, world):
        new = await create_user(session, "Fresh")
        row = await add_membership(session, world.org1, new)
        updated = await update_member_role(world.org1.id, row.id, MANAGER, MANAGER, session)
        assert updated.role == "manager"

    async def test_manager_can_only_change_members(self, session, world):
        result = await session.execute(
            select(Member).where(Member.user_id == world.manager1.id)
        )
        row = result.scalar_one()
        with pytest.raises(Forbidden, match="Managers can only change member roles"):
            await update_member_role(world.org1.id, row.id, MEMBER, MANAGER, session)

    async def test_update_unknown_member(self, session, world):
        with pytest.raises(NotFound, match="Member not found"):
            await update_member_role(world.org1.id, "missing", MEMBER, ADMIN, session)

    async def test_last_admin_row_cannot_be_demoted(self, session, world):
        result = await session.execute(select(Member).where(Member.user_id == world.owner1.id))
        row = result.scalar_one()
        with pytest.raises(Forbidden, match=LAST_ADMIN_DEMOTE):
            await update_member_role(world.org1.id, row.id, MEMBER, ADMIN, session)

    async def test_second_admin_allows_demotion(self, session, world):
        result = await session.execute(select(Member).where(Member.user_id == world.owner1.id))
        row = result.scalar_one()
        extra = await create_user(session, "CoOwner", role="manager")
        await add_membership(session, world.org1, extra, role="admin")
        assert await count_org_admins(world.org1.id, session) == 2

        updated = await update_member_role(world.org1.id, row.id, MEMBER, ADMIN, session)
        assert updated.role == "member"

    async def test_remove_last_admin_row(self, session, world):
        result = await session.execute(select(Member).where(Member.user_id == world.owner1.id))
        row = result.scalar_one()
        with pytest.raises(Forbidden, match=LAST_ADMIN_REMOVE):
            await remove_member(world.org1.id, row.id, ADMIN, session)

    async def test_manager_can_only_remove_members(self, session, world):
        result = await session.execute(select(Member).where(Member.user_id == world.owner1.id))
        row = result.scalar_one()
        with pytest.raises(Forbidden, match="Managers can only remove members"):
            await remove_member(world.org1.id, row.id, MANAGER, session)

    async def test_remove_member(self, session, session_factory, world):
        result = await session.execute(select(Member).where(Member.user_id == world.member1b.id))
        row = result.scalar_one()
        await remove_member(world.org1.id, row.id, MANAGER, session)
        assert await memberships_of(session_factory, world.member1b.id) == []
