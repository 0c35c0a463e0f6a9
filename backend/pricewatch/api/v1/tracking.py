"""Tracking control endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from pricewatch.dependencies import get_tracking_service
from pricewatch.schemas import (
    ApiResponse,
    JobIntervalRequest,
    ListMeta,
    OwnPriceRequest,
    PlanAssignmentRequest,
    PlanAssignmentResponse,
    StartTrackingRequest,
    StartTrackingResponse,
    StopSourcesRequest,
    StopTrackingResponse,
    TrackingJobResponse,
)
from pricewatch.services.tracking_service import TrackingService
from pricewatch.tracking.jobs import JobStatus

router = APIRouter()


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def start_tracking(
    request: StartTrackingRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    """Start tracking a product on the given sources.

    Either every source is accepted or none is: an unknown source, a source
    outside the organization's plan or a URL the source cannot fetch
    rejects the whole request with 400.
    """
    job_ids = await service.start_tracking(
        request.organization_id,
        request.product_id,
        {source_id: str(url) for source_id, url in request.sources.items()},
        own_price=float(request.own_price) if request.own_price is not None else None,
    )
    return ApiResponse(
        data=StartTrackingResponse(product_id=request.product_id, job_ids=job_ids),
    )


@router.delete("/{product_id}", response_model=ApiResponse)
async def stop_tracking(
    product_id: str,
    service: TrackingService = Depends(get_tracking_service),
):
    """Stop tracking a product. Stopping an untracked product is a no-op."""
    removed = await service.stop_tracking(product_id)
    return ApiResponse(data=StopTrackingResponse(product_id=product_id, jobs_removed=removed))


@router.post("/{product_id}/remove-sources", response_model=ApiResponse)
async def remove_sources(
    product_id: str,
    request: StopSourcesRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    """Stop tracking a product on some of its sources; the rest keep running."""
    removed = await service.stop_tracking(product_id, request.source_ids)
    return ApiResponse(data=StopTrackingResponse(product_id=product_id, jobs_removed=removed))


@router.put("/{product_id}/own-price", response_model=ApiResponse)
async def set_own_price(
    product_id: str,
    request: OwnPriceRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    """Set the price the market position is computed for."""
    service.set_own_price(product_id, float(request.price) if request.price is not None else None)
    return ApiResponse(data={"product_id": product_id, "own_price": request.price})


@router.get("/jobs", response_model=ApiResponse)
async def list_jobs(
    product_id: Optional[str] = Query(None, description="Filter by product"),
    organization_id: Optional[str] = Query(None, description="Filter by organization"),
    job_status: Optional[JobStatus] = Query(None, alias="status", description="Filter by status"),
    service: TrackingService = Depends(get_tracking_service),
):
    """List tracking jobs with their status and last error."""
    jobs = await service.list_jobs(
        product_id=product_id,
        organization_id=organization_id,
        status=job_status,
    )
    return ApiResponse(
        data=[TrackingJobResponse.model_validate(job.to_dict()) for job in jobs],
        meta=ListMeta(total=len(jobs)),
    )


@router.post("/jobs/{job_id}/rearm", response_model=ApiResponse)
async def rearm_job(
    job_id: str,
    service: TrackingService = Depends(get_tracking_service),
):
    """Return a Failed job to Pending with a fresh retry budget."""
    job = await service.scheduler.rearm(job_id)
    return ApiResponse(data=TrackingJobResponse.model_validate(job.to_dict()))


@router.put("/organizations/{organization_id}/plan", response_model=ApiResponse)
async def assign_plan(
    organization_id: str,
    request: PlanAssignmentRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    """Assign a plan tier and drop jobs on sources it no longer includes."""
    plan = service.plans.assign(organization_id, request.plan)
    removed = await service.scheduler.refresh_plan(organization_id)
    return ApiResponse(
        data=PlanAssignmentResponse(
            organization_id=organization_id,
            plan=plan.name,
            jobs_removed=removed,
        )
    )


@router.put("/jobs/{job_id}/interval", response_model=ApiResponse)
async def set_job_interval(
    job_id: str,
    request: JobIntervalRequest,
    service: TrackingService = Depends(get_tracking_service),
):
    """Override a job's polling interval; it cannot be shorter than the plan's."""
    job = await service.set_job_interval(job_id, request.interval_minutes)
    return ApiResponse(data=TrackingJobResponse.model_validate(job.to_dict()))
