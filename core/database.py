"""
Database engine and session factories (SQLAlchemy async)
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from core.config import Settings
import logging

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the destination engine. Called once at process start."""
    logger.info(
        "Creating database engine for "
        f"{settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured database'}"
    )
    return create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        poolclass=NullPool,
        future=True
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory handed to the loaders package"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables registered on the declarative base"""
    from models import Base  # registers every model

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
