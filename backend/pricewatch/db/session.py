"""Async database session and engine configuration."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.config import settings
from pricewatch.models.base import Base


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    url = database_url or settings.DATABASE_URL

    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    engine_kwargs: dict = {"echo": settings.DEBUG and settings.LOG_LEVEL == "DEBUG"}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables."""
    import pricewatch.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
