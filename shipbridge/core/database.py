"""
Database engine and sessions

Pool sizing depends on the environment. SQLite URLs (the test-suite and
local runs) keep the driver's own pool. The schema itself is owned by the
Alembic revisions under shipbridge/migrations.
"""
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from shipbridge.core.config import settings


def engine_options(database_url: str, environment: str) -> Dict[str, Any]:
    """Pool options for `create_async_engine`."""
    if database_url.startswith("sqlite"):
        return {}
    if environment == "production":
        return {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,
        }
    return {"pool_size": 2, "max_overflow": 5, "pool_pre_ping": True}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **engine_options(settings.DATABASE_URL, settings.ENVIRONMENT),
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Request-scoped session; committed on success, rolled back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
