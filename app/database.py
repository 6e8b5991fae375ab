"""Async engine, session factory and schema bootstrap."""
from typing import AsyncIterator, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.core.security import ROLE_PERMISSIONS

Base = declarative_base()


def engine_options(database_url: str) -> dict:
    """Pool settings: one shared connection for SQLite, a sized pool otherwise."""
    options = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["poolclass"] = StaticPool
    else:
        options.update(pool_size=10, max_overflow=20)
    return options


def create_session_factory(
    database_url: Optional[str] = None,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Build an engine and its session factory.

    Worker processes call this inside each ``asyncio.run`` so the engine is
    bound to the loop that uses it.
    """
    url = database_url or settings.DATABASE_URL
    new_engine = create_async_engine(url, **engine_options(url))
    factory = async_sessionmaker(
        new_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return new_engine, factory


engine, AsyncSessionLocal = create_session_factory()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create missing tables and seed the default roles."""
    import app.models  # noqa: F401  registers every mapper on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    from app.services.bootstrap_service import ensure_roles

    async with AsyncSessionLocal() as session:
        await ensure_roles(session, role_names=ROLE_PERMISSIONS.keys())


async def close_db() -> None:
    await engine.dispose()
