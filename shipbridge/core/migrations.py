"""
Schema migrations on startup

Applies the Alembic revisions shipped in shipbridge/migrations over the
application's own engine, so a fresh database is usable as soon as the
app has started.
"""
import logging
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from shipbridge.core.database import engine as app_engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def alembic_config(database_url: Optional[str] = None) -> Config:
    """Alembic config pointing at the packaged revisions; no ini file needed."""
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    if database_url:
        cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return cfg


def _upgrade(connection: Connection) -> None:
    cfg = alembic_config()
    cfg.attributes["connection"] = connection
    command.upgrade(cfg, "head")


async def run_migrations(engine: Optional[AsyncEngine] = None) -> None:
    """Upgrade the database to the latest revision."""
    engine = engine or app_engine
    logger.info("Running database migrations (alembic upgrade head)")
    async with engine.begin() as conn:
        await conn.run_sync(_upgrade)
    logger.info("Database migrations complete")
