"""
Shared fixtures: a throwaway SQLite database per test, the seeded RBAC
catalog, and an ASGI client whose Bearer token is simply a user id.
"""
import os

os.environ["RATE_LIMIT_ENABLED"] = "0"

from datetime import timedelta  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import Depends, Request  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select, update  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.database.base import generate_ulid, utcnow  # noqa: E402
from app.core.database.engine import enable_sqlite_foreign_keys, get_db, init_db  # noqa: E402
from app.core.exceptions import AuthenticationError  # noqa: E402
from app.features.invitations import service as invitation_service  # noqa: E402
from app.features.invitations.models import Invitation  # noqa: E402
from app.features.organizations import service as organization_service  # noqa: E402
from app.features.organizations.models import OrganizationMember  # noqa: E402
from app.features.permissions.models import Role  # noqa: E402
from app.features.permissions.service import seed_rbac  # noqa: E402
from app.features.users.dependencies import get_current_user  # noqa: E402
from app.features.users.models import User  # noqa: E402
from app.main import app  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    enable_sqlite_foreign_keys(test_engine)
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """Session for arranging data and calling services directly."""
    async with session_factory() as session:
        await seed_rbac(session)
        yield session


@pytest_asyncio.fixture
async def roles(db) -> dict[str, Role]:
    result = await db.execute(select(Role))
    return {role.name: role for role in result.scalars().all()}


@pytest_asyncio.fixture
async def client(session_factory, db):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user(
        request: Request,
        session: AsyncSession = Depends(get_db),
    ) -> User:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            raise AuthenticationError("Missing bearer token")
        user = await session.get(User, auth.removeprefix("Bearer ").strip())
        if user is None or user.deleted_at is not None:
            raise AuthenticationError("Unknown user")
        return user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    async def _make_user(email: str, name: Optional[str] = None, is_admin: bool = False) -> User:
        user = User(
            appwrite_id=f"aw-{generate_ulid()}",
            email=email.lower(),
            name=name or email.split("@")[0].title(),
            is_admin=is_admin,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_org(db):
    async def _make_org(owner: User, name: str = "Acme Corp"):
        return await organization_service.create_organization(db, creator=owner, name=name)

    return _make_org


@pytest.fixture
def add_member(db, roles):
    async def _add_member(organization, user: User, role_name: str = "Member", is_active: bool = True):
        member = OrganizationMember(
            organization_id=organization.id,
            user_id=user.id,
            role_id=roles[role_name].id,
            is_active=is_active,
        )
        db.add(member)
        await db.commit()
        await db.refresh(member)
        return member

    return _add_member


@pytest.fixture
def make_invitation(db, roles):
    async def _make_invitation(organization, inviter: User, email: str, role_name: str = "Member") -> Invitation:
        return await invitation_service.issue_invitation(
            db,
            organization_id=organization.id,
            email=email,
            role_id=roles[role_name].id,
            invited_by=inviter.id,
        )

    return _make_invitation


@pytest.fixture
def expire_invitation(session_factory):
    """Push expires_at into the past without touching the status column."""
    async def _expire(invitation_id: str):
        async with session_factory() as session:
            await session.execute(
                update(Invitation)
                .where(Invitation.id == invitation_id)
                .values(expires_at=utcnow() - timedelta(hours=1))
            )
            await session.commit()

    return _expire


@pytest.fixture
def auth():
    """Headers for a user, optionally scoped to an organization."""
    def _auth(user: User, organization=None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {user.id}"}
        if organization is not None:
            headers["X-Organization-Id"] = organization.id
        return headers

    return _auth
