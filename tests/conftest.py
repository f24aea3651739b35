"""Pytest configuration and shared fixtures.

Every test gets its own SQLite file database, so sessions opened from the
same factory see each other's commits the way separate requests do.
"""

from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import init_db
from app.core.database.store import RecordStore
from app.features.admins.service import AdminManagementService, OrganizationLocks
from app.features.organizations.models import AdminSubRole
from app.features.permissions.catalog import DEFAULT_SECONDARY_PERMISSIONS, PRIMARY_ADMIN_PERMISSIONS
from app.features.permissions.engine import Principal
from app.features.permissions.roles import GlobalRole
from app.features.users.credentials import CredentialIssuer


# bcrypt's minimum cost keeps credential issuance fast in tests
TEST_BCRYPT_ROUNDS = 4


class FakeNotifier:
    """Records notifications instead of sending them."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def notify(self, address: str, template: str, payload: dict[str, Any]) -> bool:
        self.sent.append((address, template, payload))
        return self.deliver


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return RecordStore(db)


# =============================================================================
# Service
# =============================================================================


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def locks():
    return OrganizationLocks()


@pytest.fixture
def credentials():
    return CredentialIssuer(rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def make_service(store, notifier, credentials, locks):
    """Factory for services; pass `store=` to work in another session."""

    def factory(**overrides) -> AdminManagementService:
        kwargs = dict(notifier=notifier, credentials=credentials, locks=locks)
        kwargs.update(overrides)
        return AdminManagementService(kwargs.pop("store", store), **kwargs)

    return factory


@pytest.fixture
def service(make_service):
    return make_service()


# =============================================================================
# Seed data
# =============================================================================


async def create_user(store: RecordStore, name: str, role: GlobalRole, organization_id: str | None = None):
    email = f"{name.lower().replace(' ', '.')}@example.com"
    return await store.create_principal(name=name, email=email, role=role, organization_id=organization_id)


@pytest_asyncio.fixture
async def school(store):
    """
    Organization "Springfield High" with a primary admin and one secondary
    admin holding the default permissions, plus a teacher, a student and a
    superAdmin outside it.
    """
    root = await create_user(store, "Root Admin", GlobalRole.SUPER_ADMIN)
    organization = await store.create_organization(name="Springfield High")
    primary = await create_user(store, "Pat Primary", GlobalRole.ADMIN, organization.id)
    secondary = await create_user(store, "Sam Secondary", GlobalRole.ADMIN, organization.id)
    teacher = await create_user(store, "Terry Teacher", GlobalRole.TEACHER, organization.id)
    student = await create_user(store, "Stu Student", GlobalRole.STUDENT, organization.id)

    organization.add_admin(primary.id, AdminSubRole.PRIMARY_ADMIN, PRIMARY_ADMIN_PERMISSIONS, root.id)
    organization.add_admin(secondary.id, AdminSubRole.SECONDARY_ADMIN, DEFAULT_SECONDARY_PERMISSIONS, primary.id)
    await store.save_organization(organization)
    await store.commit()

    return SimpleNamespace(
        organization_id=organization.id,
        super_admin=Principal.from_user(root),
        primary=Principal.from_user(primary),
        secondary=Principal.from_user(secondary),
        teacher=Principal.from_user(teacher),
        student=Principal.from_user(student),
    )
