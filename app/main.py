"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1 import notifications, pam
from app.config import settings
from app.core.logging import configure_logging
from app.database import close_db, get_db, init_db
from app.middleware.metrics import setup_metrics
from app.services.storage_service import storage_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must run before startup; Starlette refuses new middleware once the app is running.
setup_metrics(app)

app.include_router(pam.router, prefix=f"{settings.API_V1_PREFIX}/pam", tags=["pam"])
app.include_router(
    notifications.router,
    prefix=f"{settings.API_V1_PREFIX}/notifications",
    tags=["notifications"],
)


async def _database_error(db: AsyncSession) -> Optional[str]:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return str(exc)
    return None


def _broker_error() -> Optional[str]:
    try:
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except redis.RedisError as exc:
        return str(exc)
    return None


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Liveness plus the state of the database, the Celery broker and the evidence bucket."""
    errors = {
        "database": await _database_error(db),
        "redis": _broker_error(),
        "s3": storage_service.check_bucket(),
    }
    return {
        "status": "degraded" if any(errors.values()) else "ok",
        "checks": {name: f"error: {error}" if error else "ok" for name, error in errors.items()},
        "default_sheet_configured": bool(settings.PAM_SHEET_CSV_URL),
    }
