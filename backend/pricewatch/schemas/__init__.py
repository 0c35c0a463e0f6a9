"""Pydantic schemas for request/response validation."""

from pricewatch.schemas.common import ApiResponse, ErrorDetail, ErrorResponse, ListMeta
from pricewatch.schemas.health import HealthCheckResponse
from pricewatch.schemas.intelligence import (
    CompetitiveIntelligenceResponse,
    InsightImpactResponse,
    MarketInsightResponse,
    MarketPositionResponse,
    MarketTrendResponse,
    PricePredictionResponse,
)
from pricewatch.schemas.observation import ObservationResponse, PriceAlertResponse
from pricewatch.schemas.tracking import (
    JobIntervalRequest,
    OwnPriceRequest,
    PlanAssignmentRequest,
    PlanAssignmentResponse,
    StartTrackingRequest,
    StartTrackingResponse,
    StopSourcesRequest,
    StopTrackingResponse,
    TrackingJobResponse,
)

__all__ = [
    # Common
    "ApiResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ListMeta",
    # Health
    "HealthCheckResponse",
    # Tracking
    "JobIntervalRequest",
    "OwnPriceRequest",
    "PlanAssignmentRequest",
    "PlanAssignmentResponse",
    "StartTrackingRequest",
    "StartTrackingResponse",
    "StopSourcesRequest",
    "StopTrackingResponse",
    "TrackingJobResponse",
    # Observations and alerts
    "ObservationResponse",
    "PriceAlertResponse",
    # Intelligence
    "CompetitiveIntelligenceResponse",
    "InsightImpactResponse",
    "MarketInsightResponse",
    "MarketPositionResponse",
    "MarketTrendResponse",
    "PricePredictionResponse",
]
