"""
Seed the default permission catalogue, system roles and role-permission matrix.

Safe to run repeatedly: existing rows are left as they are and missing rows
are added.
"""

import argparse
import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgadmin.core.config import get_settings
from orgadmin.core.database import get_session_context, init_db
from orgadmin.core.logging import configure_logging
from orgadmin.models.rbac import Permission, Role, RolePermission

log = structlog.get_logger()

DEFAULT_PERMISSIONS: list[tuple[str, str, str]] = [
    ("user", "create", "Create new users"),
    ("user", "read", "View user details"),
    ("user", "update", "Update user information"),
    ("user", "delete", "Delete users"),
    ("user", "ban", "Ban/unban users"),
    ("user", "impersonate", "Impersonate users"),
    ("user", "set-role", "Change user roles"),
    ("user", "set-password", "Reset user passwords"),
    ("session", "read", "View sessions"),
    ("session", "revoke", "Revoke sessions"),
    ("session", "delete", "Delete sessions"),
    ("organization", "create", "Create organizations"),
    ("organization", "read", "View organizations"),
    ("organization", "update", "Update organizations"),
    ("organization", "delete", "Delete organizations"),
    ("organization", "invite", "Invite members"),
    ("role", "create", "Create roles"),
    ("role", "read", "View roles"),
    ("role", "update", "Update roles"),
    ("role", "delete", "Delete roles"),
    ("role", "assign", "Assign permissions to roles"),
]

# name -> (display_name, color, description)
SYSTEM_ROLES: dict[str, tuple[str, str, str]] = {
    "admin": (
        "Admin",
        "red",
        "Global platform administrator with full access to all organizations and settings",
    ),
    "manager": (
        "Manager",
        "blue",
        "Organization manager with full access within their assigned organization",
    ),
    "member": (
        "Member",
        "gray",
        "Organization member with basic access within their assigned organization",
    ),
}

# None means every permission
ROLE_PERMISSIONS: dict[str, list[str] | None] = {
    "admin": None,
    "manager": [
        "user:read",
        "user:update",
        "user:ban",
        "session:read",
        "session:revoke",
        "organization:read",
        "organization:invite",
        "role:read",
        "role:assign",
        "role:update",
    ],
    "member": ["user:read", "organization:read", "role:read"],
}


async def seed_default_rbac(session: AsyncSession) -> None:
    """Insert whatever part of the default RBAC data is missing."""
    result = await session.execute(select(Permission))
    permissions = {f"{p.resource}:{p.action}": p for p in result.scalars().all()}
    for resource, action, description in DEFAULT_PERMISSIONS:
        key = f"{resource}:{action}"
        if key not in permissions:
            perm = Permission(resource=resource, action=action, description=description)
            session.add(perm)
            permissions[key] = perm

    result = await session.execute(select(Role))
    roles = {r.name: r for r in result.scalars().all()}
    for name, (display_name, color, description) in SYSTEM_ROLES.items():
        if name not in roles:
            role = Role(
                name=name,
                display_name=display_name,
                color=color,
                description=description,
                is_system=True,
            )
            session.add(role)
            roles[name] = role

    await session.flush()

    result = await session.execute(select(RolePermission))
    links = {(rp.role_id, rp.permission_id) for rp in result.scalars().all()}
    added = 0
    for role_name, keys in ROLE_PERMISSIONS.items():
        role = roles[role_name]
        wanted = permissions.values() if keys is None else [permissions[k] for k in keys]
        for perm in wanted:
            if (role.id, perm.id) not in links:
                session.add(RolePermission(role_id=role.id, permission_id=perm.id))
                links.add((role.id, perm.id))
                added += 1

    await session.commit()
    log.info(
        "rbac.seeded",
        permissions=len(permissions),
        roles=len(roles),
        links_added=added,
    )


async def run(create_tables: bool) -> None:
    if create_tables:
        await init_db()
    async with get_session_context() as session:
        await seed_default_rbac(session)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed default roles and permissions.")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables first (development databases only)",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    asyncio.run(run(args.create_tables))


if __name__ == "__main__":
    main()
