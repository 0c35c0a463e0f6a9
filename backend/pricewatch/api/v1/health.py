"""Health check endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.dependencies import get_db, get_tracking_service
from pricewatch.schemas import HealthCheckResponse
from pricewatch.services.tracking_service import TrackingService

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: Optional[AsyncSession] = Depends(get_db),
    service: TrackingService = Depends(get_tracking_service),
):
    """Return service health status.

    Reports the scheduler state, job counts by status and, when
    observations are persisted, database connectivity.
    """
    if db is None:
        db_status = "disabled"
    else:
        try:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
            db_status = "ok"
        except Exception as e:
            db_status = f"error: {str(e)}"

    stats = service.scheduler.get_stats()
    scheduler_status = "running" if stats["running"] else "stopped"
    overall_status = "degraded" if db_status.startswith("error") else "ok"

    return HealthCheckResponse(
        status=overall_status,
        scheduler=scheduler_status,
        database=db_status,
        jobs=stats["jobs_by_status"],
    )
