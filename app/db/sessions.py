import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

# Initialize the logger for async database events
logger = logging.getLogger(__name__)


# --- ASYNC ENGINE CONFIG ---

async_engine = create_async_engine(
    settings.async_database_url,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# --- FASTAPI DEPENDENCY ---

async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI Dependency that provides one session per request.

    Services own their commit/rollback; this only guarantees that a
    request failing mid-transaction never leaves it open.
    """
    async with AsyncSessionLocal() as session:
        try:
            logger.debug("Database: New async session yielded for API request.")
            yield session
        except Exception as e:
            await session.rollback()
            logger.exception(f"Database: Async session error: {e}")
            raise
        finally:
            await session.close()
