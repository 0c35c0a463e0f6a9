"""Tracking job state and the scheduler's job table."""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from pricewatch.tracking.base import FetchErrorKind, TrackingTarget


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TrackingJob:
    """Schedulable unit polling one (product, source) pair.

    Jobs are mutated on every run and never destroyed on failure: once
    retry_count reaches max_retries the job is parked as FAILED until it
    is explicitly re-armed.
    """

    target: TrackingTarget
    interval_minutes: float
    max_retries: int
    next_run_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    last_error_kind: Optional[FetchErrorKind] = None
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    interval_override: Optional[float] = None  # per-job interval, at least the plan's
    cancelled: bool = False

    @property
    def pair(self) -> Tuple[str, str]:
        return self.target.pair

    @property
    def organization_id(self) -> str:
        return self.target.organization_id

    def is_due(self, now: datetime) -> bool:
        return (
            not self.cancelled
            and self.status == JobStatus.PENDING
            and self.next_run_at <= now
        )

    def schedule_next(self, now: datetime) -> None:
        self.status = JobStatus.PENDING
        self.next_run_at = now + timedelta(minutes=self.interval_minutes)

    def snapshot(self) -> "TrackingJob":
        """Copy safe to hand out of the scheduler."""
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "job_id": self.id,
            "organization_id": self.target.organization_id,
            "product_id": self.target.product_id,
            "source_id": self.target.source_id,
            "locator_url": self.target.locator_url,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "interval_minutes": self.interval_minutes,
            "interval_override": self.interval_override,
            "next_run_at": self.next_run_at.isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
        }


class JobTable:
    """Concurrency-safe table of tracking jobs.

    Holds exactly one job per (product, source) pair. Callers must hold
    `lock` around any read-modify-write sequence.
    """

    def __init__(self):
        self.lock = asyncio.Lock()
        self._jobs: Dict[str, TrackingJob] = {}
        self._by_pair: Dict[Tuple[str, str], str] = {}

    def add(self, job: TrackingJob) -> None:
        if job.pair in self._by_pair:
            raise ValueError(f"Job already exists for pair {job.pair}")
        self._jobs[job.id] = job
        self._by_pair[job.pair] = job.id

    def remove(self, job_id: str) -> Optional[TrackingJob]:
        job = self._jobs.pop(job_id, None)
        if job is not None:
            self._by_pair.pop(job.pair, None)
        return job

    def get(self, job_id: str) -> Optional[TrackingJob]:
        return self._jobs.get(job_id)

    def get_by_pair(self, product_id: str, source_id: str) -> Optional[TrackingJob]:
        job_id = self._by_pair.get((product_id, source_id))
        return self._jobs.get(job_id) if job_id else None

    def for_product(self, product_id: str) -> List[TrackingJob]:
        return [j for j in self._jobs.values() if j.target.product_id == product_id]

    def for_organization(self, organization_id: str) -> List[TrackingJob]:
        return [j for j in self._jobs.values() if j.organization_id == organization_id]

    def due(self, now: datetime) -> List[TrackingJob]:
        """Pending jobs whose next run is due, oldest first."""
        due = [j for j in self._jobs.values() if j.is_due(now)]
        due.sort(key=lambda j: (j.next_run_at, j.id))
        return due

    def __iter__(self) -> Iterator[TrackingJob]:
        return iter(list(self._jobs.values()))

    def __len__(self) -> int:
        return len(self._jobs)
