"""Tests for the per-domain sliding window rate limiter."""

import itertools
import threading
import time

import pytest

from pricewatch.tracking.utils.rate_limiter import DomainRateLimiter

from conftest import FakeMonotonic


@pytest.fixture
def ticker() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def limiter(ticker: FakeMonotonic) -> DomainRateLimiter:
    limiter = DomainRateLimiter(clock=ticker)
    limiter.configure("shop.example", per_minute=3)
    return limiter


class TestSlidingWindow:
    def test_allows_up_to_limit(self, limiter):
        assert [limiter.allow("shop.example") for _ in range(4)] == [True, True, True, False]

    def test_rejection_does_not_consume(self, limiter, ticker):
        for _ in range(3):
            assert limiter.allow("shop.example")
        assert not limiter.allow("shop.example")
        assert not limiter.allow("shop.example")
        ticker.advance(60.0)
        assert limiter.remaining("shop.example") == 3

    def test_window_slides(self, limiter, ticker):
        limiter.allow("shop.example")
        ticker.advance(30)
        limiter.allow("shop.example")
        limiter.allow("shop.example")
        assert not limiter.allow("shop.example")

        # First grant falls out of the window
        ticker.advance(30)
        assert limiter.allow("shop.example")
        assert not limiter.allow("shop.example")

    def test_never_more_than_limit_in_any_window(self, limiter, ticker):
        granted = []
        for _ in range(600):
            if limiter.allow("shop.example"):
                granted.append(ticker())
            ticker.advance(0.5)
        for t in granted:
            in_window = [g for g in granted if t - 60 < g <= t]
            assert len(in_window) <= 3

    def test_domains_are_independent(self, limiter):
        limiter.configure("other.example", per_minute=1)
        for _ in range(3):
            assert limiter.allow("shop.example")
        assert limiter.allow("other.example")
        assert not limiter.allow("other.example")
        assert not limiter.allow("shop.example")

    def test_domain_lookup_is_case_insensitive(self, limiter):
        for _ in range(3):
            assert limiter.allow("Shop.Example")
        assert not limiter.allow("shop.example")

    def test_unknown_domain_uses_default(self, ticker):
        limiter = DomainRateLimiter(clock=ticker)
        granted = sum(limiter.allow("unknown.example") for _ in range(20))
        assert granted == DomainRateLimiter.DEFAULT_RPM

    def test_min_interval(self, ticker):
        limiter = DomainRateLimiter(clock=ticker)
        limiter.configure("spaced.example", per_minute=10, min_interval_seconds=2.0)
        assert limiter.allow("spaced.example")
        ticker.advance(1.0)
        assert not limiter.allow("spaced.example")
        ticker.advance(1.0)
        assert limiter.allow("spaced.example")

    def test_configure_rejects_zero_budget(self, limiter):
        with pytest.raises(ValueError):
            limiter.configure("shop.example", per_minute=0)

    def test_get_limit(self, limiter):
        assert limiter.get_limit("shop.example").per_minute == 3


class TestConcurrency:
    def test_parallel_callers_never_exceed_budget(self):
        limiter = DomainRateLimiter()
        limiter.configure("busy.example", per_minute=50)
        results = []
        results_lock = threading.Lock()

        def worker():
            local = [limiter.allow("busy.example") for _ in range(20)]
            with results_lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 200
        assert sum(results) == 50

    def test_granted_timestamps_stay_ordered(self):
        ticks = itertools.count()
        ticks_lock = threading.Lock()

        def clock():
            with ticks_lock:
                value = next(ticks)
            time.sleep(0)  # let another caller in between reading and recording
            return value / 1000

        limiter = DomainRateLimiter(clock=clock)
        limiter.configure("busy.example", per_minute=10_000, min_interval_seconds=0.0005)

        def worker():
            for _ in range(50):
                limiter.allow("busy.example")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        granted = list(limiter._get_window("busy.example").timestamps)
        assert granted
        assert granted == sorted(granted)
        assert all(later - earlier >= 0.0005 for earlier, later in zip(granted, granted[1:]))
