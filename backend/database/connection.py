"""
Database engine construction and health checks.

The engine is built once at application startup and kept on
`app.state`; nothing in this module holds a process-wide handle.
"""

import logging
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings) -> AsyncEngine:
    """Create the async engine (asyncpg) with pool settings from config."""
    connect_args: Dict[str, Any] = {}
    if settings.POSTGRES_SSLMODE:
        connect_args["ssl"] = settings.POSTGRES_SSLMODE

    return create_async_engine(
        settings.get_database_url(),
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        connect_args=connect_args,
    )


async def init_db(engine: AsyncEngine) -> bool:
    """Verify the database is reachable and the customer tables exist"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            result = await conn.execute(text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name IN ('customers', 'addresses', 'customer_documents', 'customer_status_changes')
            """))
            tables = sorted(row[0] for row in result.fetchall())
            logger.info(f"Customer tables present: {tables}")
            if len(tables) < 4:
                logger.warning("Customer tables missing - run migrations/create_customer_tables.py")
            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def check_database_health(engine: AsyncEngine) -> Dict[str, Any]:
    """
    Run a trivial query and report pool status.

    Returns:
        Dict with status ("healthy"/"unhealthy"), pool figures and error text
    """
    pool = engine.pool
    pool_status = {
        "pool_size": getattr(pool, "size", lambda: None)(),
        "checked_out": getattr(pool, "checkedout", lambda: None)(),
        "overflow": getattr(pool, "overflow", lambda: None)(),
    }
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", **pool_status}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": type(e).__name__, **pool_status}
