"""
Storage wiring for SqlRepository: one async engine over TiDB, a session
factory and table bootstrap.

Sessions are short-lived and opened per repository call, so the context,
candidate and author lookups fanned out by the ranker each get their own
pooled connection. Nothing here is touched when REPOSITORY_BACKEND=memory.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from feed_ranker.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=10,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def dispose_db() -> None:
    """Close pooled connections; the engine can be reused after this."""
    await engine.dispose()
    logger.info("Database connections closed")
