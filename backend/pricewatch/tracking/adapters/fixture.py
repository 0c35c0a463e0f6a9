"""Deterministic fixture adapter.

Replays scripted outcomes per product instead of touching the network.
Used by tests and local demos; the last scripted outcome repeats once the
script is exhausted so a steady price needs a single entry.
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Deque, Dict, Iterable, List, Optional, Union

from pricewatch.tracking.base import (
    FetchError,
    FetchErrorKind,
    Observation,
    SourceAdapter,
    TrackingTarget,
)

FixtureOutcome = Union[Decimal, int, float, str, FetchErrorKind, FetchError, Observation]


class FixtureAdapter(SourceAdapter):
    """Adapter returning scripted prices or errors."""

    adapter_type = "fixture"

    def __init__(
        self,
        source_id: Optional[str] = None,
        script: Optional[Dict[str, Iterable[FixtureOutcome]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        delay_seconds: float = 0.0,
        currency: str = "USD",
    ):
        super().__init__(source_id)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.delay_seconds = delay_seconds
        self.currency = currency
        self.calls: List[TrackingTarget] = []
        self._scripts: Dict[str, Deque[FixtureOutcome]] = {}
        for product_id, outcomes in (script or {}).items():
            self.set_script(product_id, outcomes)

    def set_script(self, product_id: str, outcomes: Iterable[FixtureOutcome]) -> None:
        self._scripts[product_id] = deque(outcomes)

    def push(self, product_id: str, *outcomes: FixtureOutcome) -> None:
        self._scripts.setdefault(product_id, deque()).extend(outcomes)

    def _next_outcome(self, product_id: str) -> Optional[FixtureOutcome]:
        outcomes = self._scripts.get(product_id)
        if not outcomes:
            return None
        if len(outcomes) > 1:
            return outcomes.popleft()
        return outcomes[0]

    async def fetch(self, target: TrackingTarget, timeout: float) -> Observation:
        self._ensure_supported(target)
        self.calls.append(target)

        if self.delay_seconds:
            await asyncio.sleep(min(self.delay_seconds, timeout))
            if self.delay_seconds >= timeout:
                raise FetchError(FetchErrorKind.TIMEOUT, f"fixture delay exceeded {timeout}s")

        outcome = self._next_outcome(target.product_id)
        if outcome is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"no fixture for {target.product_id}")
        if isinstance(outcome, FetchError):
            raise outcome
        if isinstance(outcome, FetchErrorKind):
            raise FetchError(outcome, "scripted failure")
        if isinstance(outcome, Observation):
            return outcome

        return Observation(
            source_id=self.source_id,
            product_id=target.product_id,
            current_price=Decimal(str(outcome)),
            captured_at=self.clock(),
            currency=self.currency,
            url=target.locator_url,
        )
