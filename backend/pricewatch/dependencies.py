"""FastAPI dependency injection providers."""

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.services.tracking_service import TrackingService


def get_tracking_service(request: Request) -> TrackingService:
    """Return the pipeline built during application startup."""
    return request.app.state.tracking_service


def get_session_factory(request: Request) -> Optional[async_sessionmaker[AsyncSession]]:
    """Session factory when observations are persisted, else None."""
    return getattr(request.app.state, "session_factory", None)


async def get_db(request: Request) -> AsyncGenerator[Optional[AsyncSession], None]:
    """Yield a database session for request-scoped usage.

    Yields None when the in-memory store is in use. The session is
    committed on success, rolled back on error and always closed.
    """
    session_factory = get_session_factory(request)
    if session_factory is None:
        yield None
        return

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
