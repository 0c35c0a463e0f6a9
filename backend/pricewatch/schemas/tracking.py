"""Tracking control schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from pricewatch.tracking.jobs import JobStatus


class StartTrackingRequest(BaseModel):
    """Start tracking a product on one or more sources."""

    organization_id: str = Field(min_length=1, max_length=64)
    product_id: str = Field(min_length=1, max_length=64)
    sources: Dict[str, HttpUrl] = Field(min_length=1, description="source id -> product page URL")
    own_price: Optional[Decimal] = Field(None, gt=0)


class StartTrackingResponse(BaseModel):
    product_id: str
    job_ids: List[str]


class StopTrackingResponse(BaseModel):
    product_id: str
    jobs_removed: int


class StopSourcesRequest(BaseModel):
    """Stop tracking a product on some of its sources."""

    source_ids: List[str] = Field(min_length=1)


class JobIntervalRequest(BaseModel):
    interval_minutes: Optional[float] = Field(
        None, gt=0, description="Polling interval; null restores the plan interval"
    )


class OwnPriceRequest(BaseModel):
    price: Optional[Decimal] = Field(None, gt=0, description="Own price; null clears it")


class PlanAssignmentRequest(BaseModel):
    plan: str = Field(min_length=1)


class PlanAssignmentResponse(BaseModel):
    organization_id: str
    plan: str
    jobs_removed: List[str]


class TrackingJobResponse(BaseModel):
    """Snapshot of a tracking job."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    organization_id: str
    product_id: str
    source_id: str
    locator_url: str
    status: JobStatus
    retry_count: int
    max_retries: int
    interval_minutes: float
    interval_override: Optional[float] = None
    next_run_at: datetime
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
