"""
Shared fixtures: a seeded SQLite database per test, model factories and an
HTTP client wired to the same database.
"""

from __future__ import annotations

import os

os.environ.setdefault("ORGADMIN_DATABASE_URL", "sqlite+aiosqlite:///./orgadmin-test.db")
os.environ.setdefault("ORGADMIN_BCRYPT_ROUNDS", "4")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

import orgadmin.models  # noqa: F401
from orgadmin.core.auth import generate_session_token
from orgadmin.core.database import get_session, get_session_factory
from orgadmin.main import app
from orgadmin.models.organization import Member, Organization
from orgadmin.models.session import UserSession
from orgadmin.models.user import User
from orgadmin.scripts.seed_rbac import seed_default_rbac


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orgadmin.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        await seed_default_rbac(s)
        yield s


@pytest.fixture
async def client(session, session_factory):
    """HTTP client; every request gets its own session on the test database."""

    async def _get_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

async def create_user(
    session: AsyncSession,
    name: str,
    role: str = "member",
    email: Optional[str] = None,
) -> User:
    user = User(name=name, email=email or f"{name.lower()}@example.com", role=role)
    session.add(user)
    await session.commit()
    return user


async def create_org(session: AsyncSession, slug: str, name: Optional[str] = None) -> Organization:
    org = Organization(name=name or slug.replace("-", " ").title(), slug=slug)
    session.add(org)
    await session.commit()
    return org


async def add_membership(
    session: AsyncSession,
    org: Organization,
    user: User,
    role: str = "member",
    created_at: Optional[datetime] = None,
) -> Member:
    member = Member(organization_id=org.id, user_id=user.id, role=role)
    if created_at is not None:
        member.created_at = created_at
    session.add(member)
    await session.commit()
    return member


async def create_login(
    session: AsyncSession,
    user: User,
    active_org: Optional[Organization] = None,
    impersonated_by: Optional[User] = None,
) -> UserSession:
    user_session = UserSession(
        token=generate_session_token(),
        user_id=user.id,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        active_organization_id=active_org.id if active_org else None,
        impersonated_by=impersonated_by.id if impersonated_by else None,
    )
    session.add(user_session)
    await session.commit()
    return user_session


def bearer(user_session: UserSession) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_session.token}"}


@dataclass(frozen=True)
class Ref:
    """Plain id handle; survives the session expiring its ORM objects on rollback."""

    id: str
    name: str


@dataclass
class World:
    """Two organizations with a manager and members each, plus two platform admins.

    org1: manager1 (manager), member1 and member1b (member), owner1 (admin row)
    org2: manager2 (manager), member2 (member)
    """

    admin: Ref
    admin2: Ref
    org1: Ref
    org2: Ref
    manager1: Ref
    manager2: Ref
    member1: Ref
    member1b: Ref
    member2: Ref
    owner1: Ref


@pytest.fixture
async def world(session) -> World:
    admin = await create_user(session, "Admin", role="admin")
    admin2 = await create_user(session, "Admin2", role="admin")
    org1 = await create_org(session, "org-one")
    org2 = await create_org(session, "org-two")
    manager1 = await create_user(session, "Manager1", role="manager")
    manager2 = await create_user(session, "Manager2", role="manager")
    member1 = await create_user(session, "Member1")
    member1b = await create_user(session, "Member1b")
    member2 = await create_user(session, "Member2")
    owner1 = await create_user(session, "Owner1", role="manager")

    await add_membership(session, org1, owner1, role="admin")
    await add_membership(session, org1, manager1, role="manager")
    await add_membership(session, org1, member1)
    await add_membership(session, org1, member1b)
    await add_membership(session, org2, manager2, role="manager")
    await add_membership(session, org2, member2)

    return World(
        admin=Ref(admin.id, admin.name),
        admin2=Ref(admin2.id, admin2.name),
        org1=Ref(org1.id, org1.name),
        org2=Ref(org2.id, org2.name),
        manager1=Ref(manager1.id, manager1.name),
        manager2=Ref(manager2.id, manager2.name),
        member1=Ref(member1.id, member1.name),
        member1b=Ref(member1b.id, member1b.name),
        member2=Ref(member2.id, member2.name),
        owner1=Ref(owner1.id, owner1.name),
    )
