"""Shared test fixtures: a fresh SQLite database per test, an HTTP client and data factories."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.database.engine import create_engine, create_session_factory, get_db, init_db
from app.features.organizations.models import Membership, Organization
from app.features.permissions.service import PermissionService
from app.features.projects.models import Project, Task, Team
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.main import app


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def engine(tmp_db: Path):
    e = create_engine(f"sqlite+aiosqlite:///{tmp_db}")
    await init_db(e)
    yield e
    await e.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


class Factory:
    """Creates committed rows in the test database."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def user(self, name: str | None = None, is_admin: bool = False) -> User:
        self._counter += 1
        name = name or f"User {self._counter}"
        email = f"{name.lower().replace(' ', '.')}.{self._counter}@example.com"
        return await self._save(User(email=email, name=name, is_admin=is_admin))

    async def organization(self, name: str = "Acme", seed: bool = True) -> Organization:
        org = await self._save(Organization(name=name))
        if seed:
            service = PermissionService(self.db)
            await service.create_default_roles(org.id)
            await service.create_default_templates(org.id)
        return org

    async def membership(
        self,
        user: User,
        organization: Organization,
        role: str = "member",
        custom_role_id: str | None = None,
        status: str = "active",
    ) -> Membership:
        return await self._save(Membership(
            user_id=user.id,
            organization_id=organization.id,
            role=role,
            custom_role_id=custom_role_id,
            status=status,
            joined_at=datetime.now(),
        ))

    async def project(self, organization: Organization, name: str = "Website") -> Project:
        return await self._save(Project(organization_id=organization.id, name=name))

    async def team(self, organization: Organization, name: str = "Design") -> Team:
        return await self._save(Team(organization_id=organization.id, name=name))

    async def task(self, project: Project, title: str = "Write copy") -> Task:
        return await self._save(Task(project_id=project.id, title=title))


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


def _auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.email, user.name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="auth_headers")
def auth_headers_fixture():
    return _auth_headers
