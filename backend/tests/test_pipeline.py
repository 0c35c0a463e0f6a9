"""End-to-end tests for the tracking pipeline facade."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from tenacity import wait_none

from pricewatch.services.alert_engine import AlertEngine, AlertRule, AlertThresholds, Severity
from pricewatch.services.distribution import EventHub, EventKind
from pricewatch.services.market_intelligence import (
    HistoryBuffer,
    MarketIntelligenceEngine,
    PositionCategory,
)
from pricewatch.services.storage import InMemoryObservationStore
from pricewatch.services.tracking_service import TrackingService
from pricewatch.tracking.base import Observation
from pricewatch.tracking.jobs import JobStatus
from pricewatch.tracking.scheduler import TrackingScheduler

from conftest import START, locator


class YieldingStore(InMemoryObservationStore):
    """Suspends on every call, like a database-backed store."""

    async def store_observation(self, observation):
        await asyncio.sleep(0)
        await super().store_observation(observation)

    async def get_latest_observation(self, product_id, source_id):
        await asyncio.sleep(0)
        return await super().get_latest_observation(product_id, source_id)

    async def get_history(self, product_id, days):
        await asyncio.sleep(0)
        return await super().get_history(product_id, days)


class RecordingNotifier:
    def __init__(self):
        self.delivered = []

    async def deliver(self, rule, alert):
        self.delivered.append((rule.id, alert))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store(clock) -> InMemoryObservationStore:
    return InMemoryObservationStore(clock=clock)


@pytest.fixture
async def service(adapter_factory, catalog, plans, clock, notifier, store):
    scheduler = TrackingScheduler(adapter_factory, catalog=catalog, plans=plans, clock=clock)
    service = TrackingService(
        adapter_factory=adapter_factory,
        store=store,
        alert_engine=AlertEngine(
            notifier=notifier,
            thresholds=AlertThresholds(),
            rules=[AlertRule(id="all")],
            delivery_wait=wait_none(),
        ),
        intelligence=MarketIntelligenceEngine(HistoryBuffer(retention_days=30)),
        hub=EventHub(handler_timeout=1.0, queue_size=100),
        scheduler=scheduler,
    )
    yield service
    await service.shutdown()


class TestPipeline:
    async def test_price_drop_produces_alert_and_events(self, service, fixture_adapters, clock, notifier):
        fixture_adapters["alpha"].set_script("sku-1", [100, 88, "87.5"])
        fixture_adapters["beta"].set_script("sku-1", [90])
        events = []
        service.subscribe("sku-1", events.append)

        await service.start_tracking(
            "org-1",
            "sku-1",
            {"alpha": locator("alpha"), "beta": locator("beta")},
            own_price=95,
        )
        assert await service.scheduler.run_pending() == 2
        assert await service.get_alerts("sku-1") == []

        clock.advance(minutes=60)
        await service.scheduler.run_pending()
        [alert] = await service.get_alerts("sku-1")
        assert alert.source_id == "alpha"
        assert alert.old_price == Decimal("100")
        assert alert.new_price == Decimal("88")
        assert alert.change_percent == -12.0
        assert alert.severity == Severity.HIGH
        assert notifier.delivered == [("all", alert)]

        # 88 -> 87.5 stays under the 2% threshold
        clock.advance(minutes=60)
        await service.scheduler.run_pending()
        assert len(await service.get_alerts("sku-1")) == 1

        await service.hub.join()
        kinds = [e.kind for e in events]
        assert kinds.count(EventKind.OBSERVATION) == 6
        assert kinds.count(EventKind.INSIGHTS) == 6
        assert kinds.count(EventKind.ALERT) == 1
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))

        alert_event = next(e for e in events if e.kind == EventKind.ALERT)
        assert alert_event.payload["change_percent"] == -12.0
        assert alert_event.payload["severity"] == "high"
        # Alert follows the observation that caused it
        index = events.index(alert_event)
        assert events[index - 1].kind == EventKind.OBSERVATION
        assert events[index - 1].payload["current_price"] == "88"

    async def test_intelligence_reflects_latest_prices(self, service, fixture_adapters):
        fixture_adapters["alpha"].set_script("sku-1", [100])
        fixture_adapters["beta"].set_script("sku-1", [90])
        await service.start_tracking(
            "org-1", "sku-1", {"alpha": locator("alpha"), "beta": locator("beta")}, own_price=95
        )
        await service.scheduler.run_pending()

        result = await service.get_intelligence("sku-1")
        assert result.position.competitor_count == 2
        assert result.position.category == PositionCategory.PREMIUM
        assert result.as_of == START

        service.set_own_price("sku-1", 80)
        assert (await service.get_intelligence("sku-1")).position.category == PositionCategory.LEADER

    async def test_failed_fetches_do_not_reach_downstream(self, service, fixture_adapters):
        events = []
        service.subscribe("sku-1", events.append)
        await service.start_tracking("org-1", "sku-1", {"alpha": locator("alpha")})
        # alpha has no script for sku-1: NOT_FOUND
        await service.scheduler.run_pending()
        await service.hub.join()

        [job] = await service.list_jobs(product_id="sku-1")
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1
        assert events == []
        assert await service.get_observations("sku-1", 7) == []

    async def test_history_is_seeded_from_store_once(self, service):
        earlier = Observation("alpha", "sku-1", Decimal("100"), START - timedelta(days=1))
        await service.store.store_observation(earlier)

        await service.handle_observation(Observation("alpha", "sku-1", Decimal("99"), START))

        history = service.intelligence.buffer.history("sku-1")
        assert [o.current_price for o in history] == [Decimal("100"), Decimal("99")]

    async def test_stop_tracking(self, service):
        await service.start_tracking("org-1", "sku-1", {"alpha": locator("alpha")})
        assert await service.stop_tracking("sku-1") == 1
        assert await service.list_jobs() == []

    async def test_facade_exposes_catalog_and_plans(self, service, catalog, plans):
        assert service.catalog is catalog
        assert service.plans is plans

    async def test_stop_selected_sources_drops_their_history(self, service):
        await service.start_tracking(
            "org-1", "sku-1", {"alpha": locator("alpha"), "beta": locator("beta")}, own_price=95
        )
        await service.handle_observation(Observation("alpha", "sku-1", Decimal("100"), START))
        await service.handle_observation(Observation("beta", "sku-1", Decimal("90"), START))

        assert await service.stop_tracking("sku-1", ["beta"]) == 1
        [job] = await service.list_jobs(product_id="sku-1")
        assert job.target.source_id == "alpha"
        assert {o.source_id for o in service.intelligence.buffer.history("sku-1")} == {"alpha"}
        assert service.intelligence.own_prices["sku-1"] == 95
        assert (await service.get_intelligence("sku-1")).position.competitor_count == 1

    async def test_stop_tracking_releases_product_state(self, service):
        await service.start_tracking("org-1", "sku-1", {"alpha": locator("alpha")}, own_price=95)
        await service.handle_observation(Observation("alpha", "sku-1", Decimal("100"), START))
        await service.handle_observation(
            Observation("alpha", "sku-1", Decimal("80"), START + timedelta(minutes=1))
        )
        assert service.alert_engine.gate.last_triggered("all", "sku-1") is not None

        assert await service.stop_tracking("sku-1") == 1
        assert "sku-1" not in service.intelligence.buffer
        assert "sku-1" not in service.intelligence.own_prices
        assert service.alert_engine.gate.last_triggered("all", "sku-1") is None
        assert service.hub.publish("sku-1", EventKind.OBSERVATION, {}).sequence == 1

    async def test_set_job_interval(self, service):
        [job_id] = await service.start_tracking("org-1", "sku-1", {"alpha": locator("alpha")})
        job = await service.set_job_interval(job_id, 240)
        assert job.interval_minutes == 240


class TestConcurrentObservations:
    @pytest.fixture
    def store(self, clock) -> InMemoryObservationStore:
        return YieldingStore(clock=clock)

    async def test_history_is_seeded_once_across_sources(self, service):
        earlier = Observation("alpha", "sku-1", Decimal("100"), START - timedelta(hours=1))
        await service.store.store_observation(earlier)

        await asyncio.gather(
            service.handle_observation(Observation("alpha", "sku-1", Decimal("99"), START)),
            service.handle_observation(Observation("beta", "sku-1", Decimal("50"), START)),
        )

        history = service.intelligence.buffer.history("sku-1")
        assert [(o.source_id, o.current_price) for o in history] == [
            ("alpha", Decimal("100")),
            ("alpha", Decimal("99")),
            ("beta", Decimal("50")),
        ]

    async def test_first_observations_are_recorded_once(self, service):
        await asyncio.gather(
            service.handle_observation(Observation("alpha", "sku-1", Decimal("99"), START)),
            service.handle_observation(Observation("beta", "sku-1", Decimal("50"), START)),
            service.handle_observation(Observation("gamma", "sku-1", Decimal("75"), START)),
        )
        history = service.intelligence.buffer.history("sku-1")
        assert sorted(o.source_id for o in history) == ["alpha", "beta", "gamma"]

    async def test_previous_price_is_read_in_order(self, service, notifier):
        await asyncio.gather(
            service.handle_observation(Observation("alpha", "sku-1", Decimal("100"), START)),
            service.handle_observation(
                Observation("alpha", "sku-1", Decimal("80"), START + timedelta(minutes=1))
            ),
        )
        [alert] = await service.get_alerts("sku-1")
        assert alert.old_price == Decimal("100")
        assert alert.new_price == Decimal("80")
