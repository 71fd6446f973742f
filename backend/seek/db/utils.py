"""Database utility functions."""

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from seek.models import Base

logger = structlog.get_logger(__name__)


async def create_all(engine: AsyncEngine) -> None:
    """Create every catalog table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_ready", tables=sorted(Base.metadata.tables))


async def check_database_health(engine: AsyncEngine) -> bool:
    """Check if the database is accessible and responsive."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
