"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PERSIST_OBSERVATIONS", "false")

import pytest  # noqa: E402

from pricewatch.tracking.adapters import FixtureAdapter  # noqa: E402
from pricewatch.tracking.factory import AdapterFactory  # noqa: E402
from pricewatch.tracking.plans import PlanRegistry, PlanTierConfig  # noqa: E402
from pricewatch.tracking.sources import CompetitorSource, SourceCatalog  # noqa: E402

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Manually advanced monotonic clock for the rate limiter."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> SourceCatalog:
    return SourceCatalog(
        [
            CompetitorSource("alpha", "Alpha", "alpha.example", rate_limit_per_minute=60, max_retries=3),
            CompetitorSource("beta", "Beta", "beta.example", rate_limit_per_minute=60, max_retries=3),
            CompetitorSource("gamma", "Gamma", "gamma.example", rate_limit_per_minute=60, max_retries=3),
            CompetitorSource("slow", "Slow", "slow.example", rate_limit_per_minute=1, max_retries=3),
        ]
    )


@pytest.fixture
def test_plan() -> PlanTierConfig:
    return PlanTierConfig(
        name="test",
        max_concurrent_jobs=10,
        update_interval_minutes=60,
        retry_attempts=3,
        timeout_seconds=1.0,
        allowed_source_ids=frozenset({"alpha", "beta", "gamma", "slow"}),
        retry_base_minutes=5,
    )


@pytest.fixture
def plans(test_plan: PlanTierConfig) -> PlanRegistry:
    return PlanRegistry(tiers={"test": test_plan}, default_tier="test")


@pytest.fixture
def fixture_adapters(clock: FakeClock) -> dict:
    return {
        source_id: FixtureAdapter(source_id=source_id, clock=clock)
        for source_id in ("alpha", "beta", "gamma", "slow")
    }


@pytest.fixture
def adapter_factory(fixture_adapters: dict) -> AdapterFactory:
    factory = AdapterFactory()
    for adapter in fixture_adapters.values():
        factory.register_instance(adapter)
    return factory


def locator(source_id: str, product_id: str = "sku-1") -> str:
    return f"https://{source_id}.example/products/{product_id}"
