"""Pipeline facade.

Wires the scheduler to the store, the alert engine, the intelligence
engine and the event hub, and exposes the control surface used by the API
and scripts.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

import structlog

from pricewatch.config import settings
from pricewatch.services.alert_engine import AlertEngine, PriceAlert
from pricewatch.services.distribution import EventHandler, EventHub, EventKind
from pricewatch.services.market_intelligence import (
    CompetitiveIntelligence,
    MarketIntelligenceEngine,
)
from pricewatch.services.storage import InMemoryObservationStore, ObservationStore
from pricewatch.tracking.base import Observation
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.jobs import TrackingJob
from pricewatch.tracking.plans import PlanRegistry
from pricewatch.tracking.scheduler import TrackingScheduler
from pricewatch.tracking.sources import SourceCatalog

logger = structlog.get_logger(__name__)


class TrackingService:
    """Runs observations through the alert and intelligence engines.

    For every successful fetch: read the previous observation of the pair,
    store the new one, evaluate it for an alert, append it to the history
    buffer, re-run the intelligence pass and publish observation, alert
    and insights to the product's subscribers.
    """

    def __init__(
        self,
        adapter_factory: Optional[AdapterFactory] = None,
        store: Optional[ObservationStore] = None,
        alert_engine: Optional[AlertEngine] = None,
        intelligence: Optional[MarketIntelligenceEngine] = None,
        hub: Optional[EventHub] = None,
        catalog: Optional[SourceCatalog] = None,
        plans: Optional[PlanRegistry] = None,
        scheduler: Optional[TrackingScheduler] = None,
    ):
        self.adapter_factory = adapter_factory or AdapterFactory()
        self.store = store or InMemoryObservationStore()
        self.alert_engine = alert_engine or AlertEngine()
        if self.alert_engine.store is None:
            self.alert_engine.store = self.store
        self.intelligence = intelligence or MarketIntelligenceEngine()
        self.hub = hub or EventHub()
        self.scheduler = scheduler or TrackingScheduler(
            self.adapter_factory,
            catalog=catalog,
            plans=plans,
        )
        self.scheduler.on_observation = self.handle_observation
        self._product_locks: Dict[str, asyncio.Lock] = {}
        self._seeded: Set[str] = set()
        self.logger = logger.bind(service="tracking_service")

    @property
    def plans(self) -> PlanRegistry:
        return self.scheduler.plans

    @property
    def catalog(self) -> SourceCatalog:
        return self.scheduler.catalog

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _lock(self, product_id: str) -> asyncio.Lock:
        return self._product_locks.setdefault(product_id, asyncio.Lock())

    async def handle_observation(self, observation: Observation) -> Optional[PriceAlert]:
        """Process one successful observation end to end.

        Observations of one product are processed one at a time, so the
        history buffer has a single appender per product.
        """
        product_id = observation.product_id
        async with self._lock(product_id):
            await self._ensure_history(product_id)
            previous = await self.store.get_latest_observation(product_id, observation.source_id)
            await self.store.store_observation(observation)

            alert = await self.alert_engine.process(previous, observation)
            self.intelligence.record(observation)

            published_at = observation.captured_at
            self.hub.publish(product_id, EventKind.OBSERVATION, observation.to_dict(), published_at)
            if alert is not None:
                self.hub.publish(product_id, EventKind.ALERT, alert.to_dict(), published_at)

            result = self.intelligence.analyze(product_id)
            self.hub.publish(product_id, EventKind.INSIGHTS, result.to_dict(), published_at)

        self.logger.info(
            "observation_processed",
            product_id=product_id,
            source_id=observation.source_id,
            price=str(observation.current_price),
            alert=alert.severity.value if alert else None,
            risk_level=result.risk_level.value,
        )
        return alert

    async def _ensure_history(self, product_id: str) -> None:
        """Seed the history buffer from the store the first time a product is seen.

        Callers hold the product lock.
        """
        if product_id in self._seeded:
            return
        history = await self.store.get_history(product_id, settings.HISTORY_RETENTION_DAYS)
        self.intelligence.buffer.extend(history)
        self._seeded.add(product_id)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.hub.close()
        await self.adapter_factory.cleanup()

    async def start_tracking(
        self,
        organization_id: str,
        product_id: str,
        sources: Mapping[str, str],
        own_price: Optional[float] = None,
    ) -> List[str]:
        job_ids = await self.scheduler.start_tracking(organization_id, product_id, sources)
        if own_price is not None:
            self.intelligence.set_own_price(product_id, own_price)
        self.logger.info(
            "tracking_started",
            organization_id=organization_id,
            product_id=product_id,
            sources=sorted(sources),
            job_count=len(job_ids),
        )
        return job_ids

    async def stop_tracking(
        self, product_id: str, source_ids: Optional[Iterable[str]] = None
    ) -> int:
        """Stop tracking a product, or only some of its sources.

        Stopping the whole product also releases its history, own price,
        alert gate entries and (once unsubscribed) its event sequence.
        Removed sources drop out of the history so they no longer count
        as competitors.
        """
        source_ids = None if source_ids is None else list(source_ids)
        removed = await self.scheduler.stop_tracking(product_id, source_ids)
        async with self._lock(product_id):
            self.intelligence.forget(product_id, source_ids)
            if source_ids is None:
                self._seeded.discard(product_id)
                self.alert_engine.forget_product(product_id)
                self.hub.forget(product_id)
        return removed

    async def set_job_interval(
        self, job_id: str, interval_minutes: Optional[float]
    ) -> TrackingJob:
        return await self.scheduler.set_interval(job_id, interval_minutes)

    def subscribe(self, product_id: str, handler: EventHandler) -> Callable[[], None]:
        return self.hub.subscribe(product_id, handler)

    def set_own_price(self, product_id: str, price: Optional[float]) -> None:
        self.intelligence.set_own_price(product_id, price)

    async def list_jobs(self, **filters) -> List[TrackingJob]:
        return await self.scheduler.list_jobs(**filters)

    async def get_observations(self, product_id: str, days: int) -> List[Observation]:
        return await self.store.get_history(product_id, days)

    async def get_alerts(self, product_id: str, limit: int = 50) -> List[PriceAlert]:
        return await self.store.get_alerts(product_id, limit)

    async def get_intelligence(
        self, product_id: str, as_of: Optional[datetime] = None
    ) -> CompetitiveIntelligence:
        async with self._lock(product_id):
            await self._ensure_history(product_id)
            return self.intelligence.analyze(product_id, as_of=as_of)
