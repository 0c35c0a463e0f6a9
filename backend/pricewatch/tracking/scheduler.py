"""APScheduler-based tracking scheduler.

Runs one TrackingJob per (product, source) pair. A periodic tick picks due
jobs, filters them through the organization's concurrency cap and the
per-source rate limiter, and dispatches a bounded batch of fetches. Every
fetch ends in a state transition; adapter errors never leave this module.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import settings
from pricewatch.core.exceptions import (
    NotFoundError,
    PlanLimitError,
    UnsupportedSourceError,
)
from pricewatch.tracking.base import (
    FetchError,
    FetchErrorKind,
    Observation,
    TrackingTarget,
)
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.jobs import JobStatus, JobTable, TrackingJob
from pricewatch.tracking.plans import PlanRegistry, PlanTierConfig
from pricewatch.tracking.sources import SourceCatalog
from pricewatch.tracking.utils.normalizer import normalize_url
from pricewatch.tracking.utils.rate_limiter import DomainRateLimiter

logger = structlog.get_logger(__name__)

ObservationHandler = Callable[[Observation], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingScheduler:
    """Drives tracking jobs through their state machine.

    Pending -> Running -> Completed -> Pending on success, and
    Running -> Pending (with backoff) on failure until the retry budget is
    spent, after which the job is parked as Failed.
    """

    TICK_JOB_ID = "tracking_tick"

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        catalog: Optional[SourceCatalog] = None,
        plans: Optional[PlanRegistry] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        on_observation: Optional[ObservationHandler] = None,
        clock: Callable[[], datetime] = _utcnow,
        batch_size: Optional[int] = None,
        tick_seconds: Optional[float] = None,
    ):
        """Initialize tracking scheduler.

        Args:
            adapter_factory: Factory resolving source ids to adapters
            catalog: Source catalog (defaults to the built-in sources)
            plans: Plan registry keyed by organization
            rate_limiter: Per-source limiter, configured from the catalog
            on_observation: Coroutine receiving every successful Observation
            clock: Returns the current UTC time
            batch_size: Maximum fetches dispatched per tick
            tick_seconds: Interval between ticks once started
        """
        self.adapter_factory = adapter_factory
        self.catalog = catalog or SourceCatalog()
        self.plans = plans or PlanRegistry()
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.on_observation = on_observation
        self.clock = clock
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.tick_seconds = tick_seconds or settings.SCHEDULER_TICK_SECONDS
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.jobs = JobTable()
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="tracking_scheduler")

        self._running_by_org: Dict[str, int] = {}
        self._running_pairs: Set[Tuple[str, str]] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._stopping = False

        for source in self.catalog:
            self.rate_limiter.configure(
                source.base_domain,
                source.rate_limit_per_minute,
                source.min_request_interval_seconds,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self._stopping = False
        self.scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds, timezone="UTC"),
            id=self.TICK_JOB_ID,
            name="Tracking scheduler tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.logger.info(
            "scheduler_started",
            tick_seconds=self.tick_seconds,
            batch_size=self.batch_size,
        )

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight fetches to settle.

        Newer APScheduler releases run the shutdown on the next loop
        iteration, so this yields until the scheduler reports stopped.
        Ticks that fire meanwhile dispatch nothing.
        """
        self._stopping = True
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            while self.scheduler.running:
                await asyncio.sleep(0)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def _max_retries(self, source_id: str, plan: PlanTierConfig) -> int:
        return min(self.catalog.get(source_id).max_retries, plan.retry_attempts)

    def _validate_target(self, target: TrackingTarget, plan: PlanTierConfig) -> None:
        source = self.catalog.find(target.source_id)
        if source is None:
            raise UnsupportedSourceError(target.source_id, "unknown source")
        if not plan.allows(target.source_id):
            raise PlanLimitError(
                target.organization_id,
                f"source '{target.source_id}' is not included in plan '{plan.name}'",
            )
        adapter = self.adapter_factory.get(target.source_id)
        if adapter is None:
            raise UnsupportedSourceError(target.source_id, "no adapter registered")
        if not adapter.supports(target):
            raise UnsupportedSourceError(
                target.source_id, f"adapter cannot fetch {target.locator_url}"
            )

    async def start_tracking(
        self,
        organization_id: str,
        product_id: str,
        sources: Mapping[str, str],
    ) -> List[str]:
        """Create (or re-arm) one job per source for a product.

        Args:
            organization_id: Owning organization (selects the plan tier)
            product_id: Tracked product
            sources: Mapping of source id to locator URL

        Returns:
            Job ids in the order of `sources`

        Raises:
            UnsupportedSourceError: If a source is unknown or its adapter
                cannot fetch the locator
            PlanLimitError: If the plan does not include a source

        Validation covers every source before any job is created.
        """
        plan = self.plans.get(organization_id)
        targets = [
            TrackingTarget(organization_id, product_id, source_id, normalize_url(url))
            for source_id, url in sources.items()
        ]
        for target in targets:
            self._validate_target(target, plan)

        now = self.clock()
        job_ids: List[str] = []
        async with self.jobs.lock:
            for target in targets:
                existing = self.jobs.get_by_pair(product_id, target.source_id)
                if existing is not None:
                    if existing.status == JobStatus.FAILED:
                        self._rearm(existing, now)
                    job_ids.append(existing.id)
                    continue

                job = TrackingJob(
                    target=target,
                    interval_minutes=plan.update_interval_minutes,
                    max_retries=self._max_retries(target.source_id, plan),
                    next_run_at=now,
                )
                self.jobs.add(job)
                job_ids.append(job.id)
                self.logger.info(
                    "job_created",
                    job_id=job.id,
                    organization_id=organization_id,
                    product_id=product_id,
                    source_id=target.source_id,
                    interval_minutes=job.interval_minutes,
                    max_retries=job.max_retries,
                )
        return job_ids

    async def stop_tracking(
        self, product_id: str, source_ids: Optional[Iterable[str]] = None
    ) -> int:
        """Cancel the jobs of a product. Safe to call repeatedly.

        Args:
            product_id: Tracked product
            source_ids: Only cancel these sources; every source when omitted

        Returns:
            Number of jobs removed
        """
        wanted = None if source_ids is None else set(source_ids)
        async with self.jobs.lock:
            jobs = [
                job
                for job in self.jobs.for_product(product_id)
                if wanted is None or job.target.source_id in wanted
            ]
            for job in jobs:
                self._cancel(job, reason="tracking_stopped")
        if jobs:
            self.logger.info(
                "tracking_stopped",
                product_id=product_id,
                source_ids=sorted(wanted) if wanted is not None else None,
                jobs_removed=len(jobs),
            )
        return len(jobs)

    async def set_interval(
        self, job_id: str, interval_minutes: Optional[float]
    ) -> TrackingJob:
        """Override one job's polling interval, or restore the plan's.

        A job that already ran is rescheduled from its last run; a job in
        backoff keeps its retry time.

        Raises:
            NotFoundError: If the job does not exist
            PlanLimitError: If the interval is shorter than the plan allows
        """
        async with self.jobs.lock:
            job = self.jobs.get(job_id)
            if job is None:
                raise NotFoundError("TrackingJob", job_id)
            plan = self.plans.get(job.organization_id)
            if interval_minutes is not None and interval_minutes < plan.update_interval_minutes:
                raise PlanLimitError(
                    job.organization_id,
                    f"interval {interval_minutes:g} min is below the {plan.update_interval_minutes} "
                    f"min minimum of plan '{plan.name}'",
                )

            job.interval_override = interval_minutes
            job.interval_minutes = self._interval(job, plan)
            if job.status == JobStatus.PENDING and job.retry_count == 0 and job.last_run_at:
                job.next_run_at = job.last_run_at + timedelta(minutes=job.interval_minutes)

            self.logger.info(
                "job_interval_updated",
                job_id=job.id,
                interval_minutes=job.interval_minutes,
                next_run_at=job.next_run_at.isoformat(),
            )
            return job.snapshot()

    @staticmethod
    def _interval(job: TrackingJob, plan: PlanTierConfig) -> float:
        if job.interval_override is None:
            return plan.update_interval_minutes
        return max(job.interval_override, plan.update_interval_minutes)

    async def refresh_plan(self, organization_id: str) -> List[str]:
        """Re-apply an organization's plan to its existing jobs.

        Jobs on sources the plan no longer allows are removed; the rest pick
        up the new retry budget and interval (per-job overrides shorter than
        the new minimum are raised to it).

        Returns:
            Ids of removed jobs
        """
        plan = self.plans.get(organization_id)
        removed: List[str] = []
        async with self.jobs.lock:
            for job in self.jobs.for_organization(organization_id):
                if not plan.allows(job.target.source_id):
                    self._cancel(job, reason="source_not_in_plan")
                    removed.append(job.id)
                    continue
                job.interval_minutes = self._interval(job, plan)
                job.max_retries = self._max_retries(job.target.source_id, plan)

        self.logger.info(
            "plan_refreshed",
            organization_id=organization_id,
            plan=plan.name,
            jobs_removed=len(removed),
        )
        return removed

    async def rearm(self, job_id: str) -> TrackingJob:
        """Return a Failed job to Pending with a fresh retry budget."""
        async with self.jobs.lock:
            job = self.jobs.get(job_id)
            if job is None:
                raise NotFoundError("TrackingJob", job_id)
            if job.status == JobStatus.FAILED:
                self._rearm(job, self.clock())
            return job.snapshot()

    async def get_job(self, job_id: str) -> Optional[TrackingJob]:
        async with self.jobs.lock:
            job = self.jobs.get(job_id)
            return job.snapshot() if job else None

    async def list_jobs(
        self,
        product_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> List[TrackingJob]:
        async with self.jobs.lock:
            jobs = [
                job.snapshot()
                for job in self.jobs
                if (product_id is None or job.target.product_id == product_id)
                and (organization_id is None or job.organization_id == organization_id)
                and (status is None or job.status == status)
            ]
        jobs.sort(key=lambda j: (j.target.product_id, j.target.source_id))
        return jobs

    def running_count(self, organization_id: str) -> int:
        return self._running_by_org.get(organization_id, 0)

    def get_stats(self) -> dict:
        by_status = {status.value: 0 for status in JobStatus}
        for job in self.jobs:
            by_status[job.status.value] += 1
        return {
            "running": self.scheduler.running,
            "total_jobs": len(self.jobs),
            "jobs_by_status": by_status,
            "in_flight": len(self._tasks),
        }

    def _rearm(self, job: TrackingJob, now: datetime) -> None:
        job.status = JobStatus.PENDING
        job.retry_count = 0
        job.next_run_at = now
        self.logger.info(
            "job_rearmed",
            job_id=job.id,
            product_id=job.target.product_id,
            source_id=job.target.source_id,
        )

    def _cancel(self, job: TrackingJob, reason: str) -> None:
        job.cancelled = True
        self.jobs.remove(job.id)
        self.logger.info(
            "job_cancelled",
            job_id=job.id,
            product_id=job.target.product_id,
            source_id=job.target.source_id,
            status=job.status.value,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def tick(self) -> List[asyncio.Task]:
        """Dispatch up to one batch of due jobs.

        Returns:
            Tasks of the fetches started by this tick
        """
        if self._stopping:
            return []

        now = self.clock()
        dispatched: List[asyncio.Task] = []

        async with self.jobs.lock:
            for job in self.jobs.due(now):
                if len(dispatched) >= self.batch_size:
                    break

                plan = self.plans.get(job.organization_id)
                if self.running_count(job.organization_id) >= plan.max_concurrent_jobs:
                    self.logger.debug(
                        "job_deferred",
                        job_id=job.id,
                        organization_id=job.organization_id,
                        reason="concurrency_cap",
                    )
                    continue

                if job.pair in self._running_pairs:
                    continue

                # Limiter last: allow() consumes a slot
                source = self.catalog.get(job.target.source_id)
                if not self.rate_limiter.allow(source.base_domain):
                    self.logger.debug(
                        "job_deferred",
                        job_id=job.id,
                        source_id=source.id,
                        reason="rate_limited",
                    )
                    continue

                job.status = JobStatus.RUNNING
                job.last_run_at = now
                self._running_by_org[job.organization_id] = (
                    self.running_count(job.organization_id) + 1
                )
                self._running_pairs.add(job.pair)
                self.logger.info(
                    "job_running",
                    job_id=job.id,
                    product_id=job.target.product_id,
                    source_id=job.target.source_id,
                    attempt=job.retry_count + 1,
                )

                task = asyncio.create_task(self._run_job(job, plan))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                dispatched.append(task)

        return dispatched

    async def run_pending(self) -> int:
        """Run one tick and wait for every fetch it dispatched.

        Returns:
            Number of jobs dispatched
        """
        tasks = await self.tick()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def _fetch(self, job: TrackingJob, plan: PlanTierConfig) -> Observation:
        adapter = self.adapter_factory.get(job.target.source_id)
        if adapter is None:
            raise FetchError(FetchErrorKind.UNSUPPORTED, "no adapter registered")

        try:
            return await asyncio.wait_for(
                adapter.fetch(job.target, plan.timeout_seconds),
                timeout=plan.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                FetchErrorKind.TIMEOUT, f"no response within {plan.timeout_seconds}s"
            ) from e
        except FetchError:
            raise
        except Exception as e:
            self.logger.error(
                "adapter_unexpected_error",
                job_id=job.id,
                source_id=job.target.source_id,
                error=str(e),
                exc_info=True,
            )
            raise FetchError(FetchErrorKind.MALFORMED, f"adapter error: {e}") from e

    async def _run_job(self, job: TrackingJob, plan: PlanTierConfig) -> None:
        try:
            try:
                observation = await self._fetch(job, plan)
            except FetchError as error:
                await self._record_failure(job, plan, error)
                return

            if job.cancelled:
                self.logger.info("job_result_discarded", job_id=job.id, reason="cancelled")
                return

            if self.on_observation is not None:
                try:
                    await self.on_observation(observation)
                except Exception as e:
                    self.logger.error(
                        "observation_handler_failed",
                        job_id=job.id,
                        product_id=observation.product_id,
                        source_id=observation.source_id,
                        error=str(e),
                        exc_info=True,
                    )

            await self._record_success(job, observation)
        finally:
            async with self.jobs.lock:
                count = self._running_by_org.get(job.organization_id, 0) - 1
                if count > 0:
                    self._running_by_org[job.organization_id] = count
                else:
                    self._running_by_org.pop(job.organization_id, None)
                self._running_pairs.discard(job.pair)

    async def _record_success(self, job: TrackingJob, observation: Observation) -> None:
        async with self.jobs.lock:
            if job.cancelled:
                return
            now = self.clock()
            job.status = JobStatus.COMPLETED
            job.retry_count = 0
            job.last_error = None
            job.last_error_kind = None
            job.last_success_at = now
            self.logger.info(
                "job_completed",
                job_id=job.id,
                product_id=job.target.product_id,
                source_id=job.target.source_id,
                price=str(observation.current_price),
            )
            job.schedule_next(now)
            self.logger.info("job_scheduled", job_id=job.id, next_run_at=job.next_run_at.isoformat())

    async def _record_failure(
        self, job: TrackingJob, plan: PlanTierConfig, error: FetchError
    ) -> None:
        async with self.jobs.lock:
            if job.cancelled:
                self.logger.info("job_result_discarded", job_id=job.id, reason="cancelled")
                return

            now = self.clock()
            job.last_error = error.message
            job.last_error_kind = error.kind

            if not error.kind.is_transient:
                job.status = JobStatus.FAILED
                self.logger.error(
                    "job_failed",
                    job_id=job.id,
                    product_id=job.target.product_id,
                    source_id=job.target.source_id,
                    error_kind=error.kind.value,
                    error=error.message,
                    fatal=True,
                )
                return

            job.retry_count += 1
            if job.retry_count >= job.max_retries:
                job.status = JobStatus.FAILED
                self.logger.error(
                    "job_failed",
                    job_id=job.id,
                    product_id=job.target.product_id,
                    source_id=job.target.source_id,
                    error_kind=error.kind.value,
                    error=error.message,
                    retry_count=job.retry_count,
                )
                return

            delay = plan.backoff_minutes(job.retry_count)
            job.status = JobStatus.PENDING
            job.next_run_at = now + timedelta(minutes=delay)
            self.logger.warning(
                "job_retry_scheduled",
                job_id=job.id,
                product_id=job.target.product_id,
                source_id=job.target.source_id,
                error_kind=error.kind.value,
                error=error.message,
                retry_count=job.retry_count,
                backoff_minutes=delay,
            )
