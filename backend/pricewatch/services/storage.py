"""Observation and alert persistence.

The pipeline only needs the ObservationStore protocol below. The in-memory
store is the default; the SQLAlchemy store persists to any async database
SQLAlchemy supports.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.models.observation import ObservationRecord
from pricewatch.models.price_alert import PriceAlertRecord
from pricewatch.services.alert_engine import PriceAlert
from pricewatch.tracking.base import Observation

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ObservationStore(Protocol):
    async def store_observation(self, observation: Observation) -> None:
        ...

    async def store_alert(self, alert: PriceAlert) -> None:
        ...

    async def get_latest_observation(self, product_id: str, source_id: str) -> Optional[Observation]:
        ...

    async def get_history(self, product_id: str, days: int) -> List[Observation]:
        ...

    async def get_alerts(self, product_id: str, limit: int = 50) -> List[PriceAlert]:
        ...


class InMemoryObservationStore:
    """Process-local store keyed by product."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self._observations: Dict[str, List[Observation]] = defaultdict(list)
        self._latest: Dict[Tuple[str, str], Observation] = {}
        self._alerts: Dict[str, List[PriceAlert]] = defaultdict(list)

    async def store_observation(self, observation: Observation) -> None:
        self._observations[observation.product_id].append(observation)
        key = (observation.product_id, observation.source_id)
        latest = self._latest.get(key)
        if latest is None or observation.captured_at >= latest.captured_at:
            self._latest[key] = observation

    async def store_alert(self, alert: PriceAlert) -> None:
        self._alerts[alert.product_id].append(alert)

    async def get_latest_observation(self, product_id: str, source_id: str) -> Optional[Observation]:
        return self._latest.get((product_id, source_id))

    async def get_history(self, product_id: str, days: int) -> List[Observation]:
        """Observations of the trailing `days`, oldest first."""
        cutoff = self.clock() - timedelta(days=days)
        history = [o for o in self._observations.get(product_id, []) if o.captured_at >= cutoff]
        history.sort(key=lambda o: (o.captured_at, o.source_id))
        return history

    async def get_alerts(self, product_id: str, limit: int = 50) -> List[PriceAlert]:
        """Most recent alerts first."""
        alerts = sorted(self._alerts.get(product_id, []), key=lambda a: a.timestamp, reverse=True)
        return alerts[:limit]


class SqlAlchemyObservationStore:
    """Store backed by the observations and price_alerts tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.logger = logger.bind(service="observation_store")

    async def store_observation(self, observation: Observation) -> None:
        async with self.session_factory() as db:
            db.add(ObservationRecord.from_observation(observation))
            await db.commit()

    async def store_alert(self, alert: PriceAlert) -> None:
        async with self.session_factory() as db:
            db.add(PriceAlertRecord.from_alert(alert))
            await db.commit()

    async def get_latest_observation(self, product_id: str, source_id: str) -> Optional[Observation]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ObservationRecord)
                .where(
                    ObservationRecord.product_id == product_id,
                    ObservationRecord.source_id == source_id,
                )
                .order_by(ObservationRecord.captured_at.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
        return record.to_observation() if record else None

    async def get_history(self, product_id: str, days: int) -> List[Observation]:
        cutoff = (self.clock() - timedelta(days=days)).astimezone(timezone.utc)
        async with self.session_factory() as db:
            result = await db.execute(
                select(ObservationRecord)
                .where(
                    ObservationRecord.product_id == product_id,
                    ObservationRecord.captured_at >= cutoff,
                )
                .order_by(ObservationRecord.captured_at.asc(), ObservationRecord.source_id.asc())
            )
            records = list(result.scalars().all())
        return [record.to_observation() for record in records]

    async def get_alerts(self, product_id: str, limit: int = 50) -> List[PriceAlert]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PriceAlertRecord)
                .where(PriceAlertRecord.product_id == product_id)
                .order_by(PriceAlertRecord.triggered_at.desc())
                .limit(limit)
            )
            records = list(result.scalars().all())
        return [record.to_alert() for record in records]
