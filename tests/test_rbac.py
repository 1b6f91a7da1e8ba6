"""
Tests for the RBAC store: seeded matrix, role CRUD, permission assignment and
resolution.
"""

import pytest
from sqlmodel import select

from orgadmin.core.exceptions import Conflict, Forbidden, NotFound
from orgadmin.models.rbac import RolePermission
from orgadmin.scripts.seed_rbac import DEFAULT_PERMISSIONS, seed_default_rbac
from orgadmin.services import rbac
from orgadmin.services.rbac import PERMISSION_NOT_HELD, ROLE_ABOVE_REQUESTER
from orgadmin_shared.schemas.common import PlatformRole


# ---------------------------------------------------------------------------
# Seed
# ---------------------------------------------------------------------------

class TestSeed:

    async def test_catalogue_and_system_roles(self, session):
        permissions = await rbac.list_permissions(session)
        assert len(permissions) == len(DEFAULT_PERMISSIONS)

        roles = await rbac.list_roles(session)
        assert [r.name for r in roles] == ["admin", "manager", "member"]
        assert all(r.is_system for r in roles)

    async def test_seed_is_idempotent(self, session):
        await seed_default_rbac(session)
        result = await session.execute(select(RolePermission))
        links = result.scalars().all()
        admin_perms = await rbac.get_user_permissions("admin", session)
        manager_perms = await rbac.get_user_permissions("manager", session)
        member_perms = await rbac.get_user_permissions("member", session)
        assert len(links) == len(admin_perms) + len(manager_perms) + len(member_perms)
        assert len(admin_perms) == len(DEFAULT_PERMISSIONS)

    async def test_manager_matrix(self, session):
        perms = rbac.permission_strings(await rbac.get_user_permissions("manager", session))
        assert "user:read" in perms
        assert "role:assign" in perms
        assert "user:delete" not in perms
        assert "organization:create" not in perms

    async def test_member_matrix(self, session):
        perms = rbac.permission_strings(await rbac.get_user_permissions("member", session))
        assert sorted(perms) == ["organization:read", "role:read", "user:read"]


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

class TestPermissions:

    async def test_sorted_by_resource_then_action(self, session):
        permissions = await rbac.list_permissions(session)
        keys = [(p.resource, p.action) for p in permissions]
        assert keys == sorted(keys)

    async def test_grouped(self, session):
        grouped = await rbac.list_permissions_grouped(session)
        assert set(grouped) == {"user", "session", "organization", "role"}
        assert len(grouped["session"]) == 3

    async def test_duplicate_pair_conflicts(self, session):
        with pytest.raises(Conflict):
            await rbac.create_permission("user", "read", session=session)

    async def test_create_and_find(self, session):
        created = await rbac.create_permission("report", "export", "Export reports", session=session)
        found = await rbac.find_permission("report", "export", session)
        assert found is not None
        assert found.id == created.id
        assert (await rbac.get_permission(created.id, session)).action == "export"


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestRoles:

    async def test_create_custom_role(self, session):
        role = await rbac.create_role("auditor", "Auditor", session=session)
        assert role.is_system is False
        assert role.color == "gray"

    async def test_duplicate_name_conflicts(self, session):
        with pytest.raises(Conflict, match="Role name already exists"):
            await rbac.create_role("manager", "Another Manager", session=session)

    async def test_update_without_fields_returns_role(self, session):
        role = await rbac.find_role_by_name("member", session)
        same = await rbac.update_role(role.id, session=session)
        assert same.id == role.id
        assert same.display_name == "Member"

    async def test_update_display_fields_of_system_role(self, session):
        role = await rbac.find_role_by_name("member", session)
        updated = await rbac.update_role(role.id, display_name="Staff", color="green", session=session)
        assert updated.display_name == "Staff"
        assert updated.color == "green"
        assert updated.name == "member"
        assert updated.is_system is True

    async def test_update_unknown_role(self, session):
        with pytest.raises(NotFound, match="Role not found"):
            await rbac.update_role("missing", display_name="x", session=session)

    async def test_delete_system_role_forbidden(self, session):
        role = await rbac.find_role_by_name("admin", session)
        with pytest.raises(Forbidden, match="Cannot delete system role"):
            await rbac.delete_role(role.id, session)

    async def test_delete_unknown_role(self, session):
        with pytest.raises(NotFound):
            await rbac.delete_role("missing", session)

    async def test_delete_custom_role_removes_links(self, session):
        role = await rbac.create_role("auditor", "Auditor", session=session)
        perm = await rbac.find_permission("user", "read", session)
        await rbac.set_role_permissions(role.id, [perm.id], session)

        await rbac.delete_role(role.id, session)

        assert await rbac.find_role_by_name("auditor", session) is None
        result = await session.execute(
            select(RolePermission).where(RolePermission.role_id == role.id)
        )
        assert result.scalars().all() == []


# ---------------------------------------------------------------------------
# Assignment and resolution
# ---------------------------------------------------------------------------

class TestAssignment:

    async def test_replace_full_set(self, session):
        role = await rbac.create_role("auditor", "Auditor", session=session)
        read = await rbac.find_permission("user", "read", session)
        ban = await rbac.find_permission("user", "ban", session)
        sessions = await rbac.find_permission("session", "read", session)

        await rbac.set_role_permissions(role.id, [read.id, ban.id], session)
        await rbac.set_role_permissions(role.id, [sessions.id], session)

        perms = rbac.permission_strings(await rbac.get_role_permissions(role.id, session))
        assert perms == ["session:read"]

    async def test_empty_list_clears(self, session):
        role = await rbac.find_role_by_name("member", session)
        await rbac.set_role_permissions(role.id, [], session)
        assert await rbac.get_role_permissions(role.id, session) == []
        assert not await rbac.has_permission("member", "user", "read", session)

    async def test_unknown_permission_ids_are_ignored(self, session):
        role = await rbac.create_role("auditor", "Auditor", session=session)
        read = await rbac.find_permission("user", "read", session)
        await rbac.set_role_permissions(role.id, [read.id, "no-such-permission", read.id], session)
        perms = rbac.permission_strings(await rbac.get_role_permissions(role.id, session))
        assert perms == ["user:read"]

    async def test_unknown_role(self, session):
        with pytest.raises(NotFound):
            await rbac.set_role_permissions("missing", [], session)

    async def test_has_permission(self, session):
        assert await rbac.has_permission("manager", "user", "ban", session)
        assert not await rbac.has_permission("manager", "user", "delete", session)
        assert not await rbac.has_permission("ghost", "user", "read", session)
        assert not await rbac.has_permission("admin", "nothing", "read", session)

    async def test_unknown_role_has_no_permissions(self, session):
        assert await rbac.get_user_permissions("ghost", session) == []


# ---------------------------------------------------------------------------
# Editing limits for non-admin requesters
# ---------------------------------------------------------------------------

class TestRoleEditingLimits:

    async def test_manager_cannot_rewrite_own_role(self, session):
        role = await rbac.find_role_by_name("manager", session)
        all_ids = [p.id for p in await rbac.list_permissions(session)]
        with pytest.raises(Forbidden, match=ROLE_ABOVE_REQUESTER):
            await rbac.set_role_permissions(role.id, all_ids, session, PlatformRole.MANAGER)
        perms = rbac.permission_strings(await rbac.get_user_permissions("manager", session))
        assert "organization:create" not in perms

    async def test_manager_cannot_edit_admin_role(self, session):
        role = await rbac.find_role_by_name("admin", session)
        with pytest.raises(Forbidden, match=ROLE_ABOVE_REQUESTER):
            await rbac.set_role_permissions(role.id, [], session, PlatformRole.MANAGER)
        assert len(await rbac.get_user_permissions("admin", session)) == len(DEFAULT_PERMISSIONS)

    async def test_manager_cannot_rename_manager_role(self, session):
        role = await rbac.find_role_by_name("manager", session)
        with pytest.raises(Forbidden, match=ROLE_ABOVE_REQUESTER):
            await rbac.update_role(
                role.id, display_name="Boss", requester_role=PlatformRole.MANAGER, session=session
            )

    async def test_manager_grants_held_permission_to_member(self, session):
        role = await rbac.find_role_by_name("member", session)
        perm = await rbac.find_permission("session", "read", session)
        await rbac.set_role_permissions(role.id, [perm.id], session, PlatformRole.MANAGER)
        perms = rbac.permission_strings(await rbac.get_user_permissions("member", session))
        assert perms == ["session:read"]

    async def test_manager_cannot_grant_unheld_permission(self, session):
        role = await rbac.create_role("auditor", "Auditor", session=session)
        held = await rbac.find_permission("user", "read", session)
        unheld = await rbac.find_permission("organization", "create", session)
        with pytest.raises(Forbidden, match=PERMISSION_NOT_HELD):
            await rbac.set_role_permissions(
                role.id, [held.id, unheld.id], session, PlatformRole.MANAGER
            )
        assert await rbac.get_role_permissions(role.id, session) == []

    async def test_admin_edits_manager_role(self, session):
        role = await rbac.find_role_by_name("manager", session)
        perm = await rbac.find_permission("organization", "create", session)
        await rbac.set_role_permissions(role.id, [perm.id], session, PlatformRole.ADMIN)
        assert await rbac.has_permission("manager", "organization", "create", session)
