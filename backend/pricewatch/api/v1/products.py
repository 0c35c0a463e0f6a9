"""Per-product read endpoints: observations, alerts and intelligence."""

from fastapi import APIRouter, Depends, Query

from pricewatch.dependencies import get_tracking_service
from pricewatch.schemas import (
    ApiResponse,
    CompetitiveIntelligenceResponse,
    ListMeta,
    ObservationResponse,
    PriceAlertResponse,
)
from pricewatch.services.tracking_service import TrackingService

router = APIRouter()


@router.get("/{product_id}/observations", response_model=ApiResponse)
async def get_observations(
    product_id: str,
    days: int = Query(7, ge=1, le=365, description="Trailing days of history"),
    service: TrackingService = Depends(get_tracking_service),
):
    """Observation history of a product across all sources, oldest first."""
    observations = await service.get_observations(product_id, days)
    return ApiResponse(
        data=[ObservationResponse.model_validate(o) for o in observations],
        meta=ListMeta(total=len(observations)),
    )


@router.get("/{product_id}/alerts", response_model=ApiResponse)
async def get_alerts(
    product_id: str,
    limit: int = Query(50, ge=1, le=500, description="Maximum alerts returned"),
    service: TrackingService = Depends(get_tracking_service),
):
    """Most recent price alerts of a product."""
    alerts = await service.get_alerts(product_id, limit)
    return ApiResponse(
        data=[PriceAlertResponse.model_validate(a) for a in alerts],
        meta=ListMeta(total=len(alerts), limit=limit),
    )


@router.get("/{product_id}/intelligence", response_model=ApiResponse)
async def get_intelligence(
    product_id: str,
    service: TrackingService = Depends(get_tracking_service),
):
    """Market position, insights, predictions and trends for a product.

    Computed over the trailing history window (HISTORY_RETENTION_DAYS).
    """
    result = await service.get_intelligence(product_id)
    return ApiResponse(data=CompetitiveIntelligenceResponse.model_validate(result))
