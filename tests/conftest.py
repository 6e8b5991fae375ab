"""Pytest configuration and fixtures."""
import os
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

TEST_DB_PATH = Path("test_app.db")
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("LOG_FORMAT", "text")

from app.main import app  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.models.user import Organization, User  # noqa: E402
from app.services.bootstrap_service import ensure_roles  # noqa: E402
from app.utils.security import create_access_token  # noqa: E402
from app.core.security import ROLE_PERMISSIONS  # noqa: E402

SHEET_HEADER = "Semana,Año,Fecha,Email,Descripción,Ubicación,Riesgo"


# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def make_sheet(*rows: str, header: str = SHEET_HEADER) -> str:
    """Build a CSV document from a header and data lines."""
    return "\n".join((header,) + rows) + "\n"


def headers_for(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def db_session():
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
def client(db_session: AsyncSession):
    """Create a test client overriding database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def roles(db_session: AsyncSession):
    """Default roles, created only when missing."""
    return await ensure_roles(db_session, role_names=ROLE_PERMISSIONS.keys())


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession):
    org = Organization(id=uuid.uuid4(), name="Acme Safety")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def other_organization(db_session: AsyncSession):
    org = Organization(id=uuid.uuid4(), name="Other Corp")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


async def _create_user(db_session, organization, role, email, full_name, is_active=True):
    user = User(
        id=uuid.uuid4(),
        organization_id=organization.id,
        email=email,
        full_name=full_name,
        is_active=is_active,
    )
    user.roles = [role]
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession, organization, roles):
    return await _create_user(db_session, organization, roles["admin"], "admin@example.com", "Ada Admin")


@pytest_asyncio.fixture
async def supervisor_user(db_session: AsyncSession, organization, roles):
    return await _create_user(db_session, organization, roles["supervisor"], "sup@example.com", "Sam Supervisor")


@pytest_asyncio.fixture
async def worker_user(db_session: AsyncSession, organization, roles):
    return await _create_user(db_session, organization, roles["worker"], "worker@example.com", "Walter Worker")


@pytest_asyncio.fixture
async def second_worker(db_session: AsyncSession, organization, roles):
    return await _create_user(db_session, organization, roles["worker"], "Wendy@Example.com", "Wendy Worker")


@pytest_asyncio.fixture
async def outsider_user(db_session: AsyncSession, other_organization, roles):
    return await _create_user(db_session, other_organization, roles["admin"], "boss@other.example.com", "Olga Outsider")


@pytest.fixture
def auth_headers(client, admin_user):
    """Get authentication headers."""
    return headers_for(admin_user)


@pytest.fixture
def worker_headers(client, worker_user):
    return headers_for(worker_user)


@pytest.fixture
def supervisor_headers(client, supervisor_user):
    return headers_for(supervisor_user)
