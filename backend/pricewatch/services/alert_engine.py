"""Delta and alert engine.

Turns successive observations of a (product, source) pair into
severity-classified PriceAlerts, gates re-triggers per alert rule and
hands gated alerts to the notifier.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Protocol, Tuple

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from pricewatch.config import settings
from pricewatch.core.exceptions import DeliveryError
from pricewatch.tracking.base import Observation

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


@dataclass(frozen=True)
class AlertThresholds:
    """Percent-change bands used to create and classify alerts."""

    minimum: float = 2.0
    medium: float = 5.0
    high: float = 10.0

    def __post_init__(self):
        if not 0 <= self.minimum <= self.medium <= self.high:
            raise ValueError("thresholds must satisfy 0 <= minimum <= medium <= high")

    @classmethod
    def from_settings(cls) -> "AlertThresholds":
        return cls(
            minimum=settings.ALERT_MIN_CHANGE_PERCENT,
            medium=settings.ALERT_MEDIUM_CHANGE_PERCENT,
            high=settings.ALERT_HIGH_CHANGE_PERCENT,
        )

    def classify(self, magnitude: Decimal) -> Severity:
        if magnitude >= Decimal(str(self.high)):
            return Severity.HIGH
        if magnitude >= Decimal(str(self.medium)):
            return Severity.MEDIUM
        return Severity.LOW


@dataclass(frozen=True)
class PriceAlert:
    """A significant price change between two observations of one pair."""

    product_id: str
    source_id: str
    old_price: Decimal
    new_price: Decimal
    change_percent: float
    severity: Severity
    timestamp: datetime

    @property
    def is_drop(self) -> bool:
        return self.new_price < self.old_price

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "source_id": self.source_id,
            "old_price": str(self.old_price),
            "new_price": str(self.new_price),
            "change_percent": self.change_percent,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }


def evaluate(
    previous: Optional[Observation],
    current: Observation,
    thresholds: Optional[AlertThresholds] = None,
) -> Optional[PriceAlert]:
    """Compare two observations of the same pair.

    Returns None for the first observation of a pair and for changes below
    the minimum threshold. The result depends only on the arguments.
    """
    if previous is None:
        return None
    if (previous.product_id, previous.source_id) != (current.product_id, current.source_id):
        raise ValueError("observations belong to different (product, source) pairs")
    if previous.current_price <= 0:
        return None

    thresholds = thresholds or AlertThresholds()
    change = (current.current_price - previous.current_price) / previous.current_price * 100
    if abs(change) < Decimal(str(thresholds.minimum)):
        return None

    return PriceAlert(
        product_id=current.product_id,
        source_id=current.source_id,
        old_price=previous.current_price,
        new_price=current.current_price,
        change_percent=float(round(change, 2)),
        severity=thresholds.classify(abs(change)),
        timestamp=current.captured_at,
    )


class AlertFrequency(str, Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def window(self) -> timedelta:
        return _FREQUENCY_WINDOWS[self]


_FREQUENCY_WINDOWS = {
    AlertFrequency.IMMEDIATE: timedelta(0),
    AlertFrequency.HOURLY: timedelta(hours=1),
    AlertFrequency.DAILY: timedelta(days=1),
    AlertFrequency.WEEKLY: timedelta(weeks=1),
}


@dataclass(frozen=True)
class AlertRule:
    """Subscription deciding which alerts reach the notifier and how often."""

    id: str
    frequency: AlertFrequency = AlertFrequency.IMMEDIATE
    product_id: Optional[str] = None  # None matches every product
    source_ids: FrozenSet[str] = field(default_factory=frozenset)  # empty matches every source
    min_severity: Severity = Severity.LOW

    def matches(self, alert: PriceAlert) -> bool:
        if self.product_id is not None and alert.product_id != self.product_id:
            return False
        if self.source_ids and alert.source_id not in self.source_ids:
            return False
        return alert.severity.rank >= self.min_severity.rank


class FrequencyGate:
    """Suppresses re-triggers of a rule for a product inside its window."""

    def __init__(self):
        self._last_triggered: Dict[Tuple[str, str], datetime] = {}

    def last_triggered(self, rule_id: str, product_id: str) -> Optional[datetime]:
        return self._last_triggered.get((rule_id, product_id))

    def should_fire(self, rule: AlertRule, product_id: str, now: datetime) -> bool:
        """Record and allow a trigger unless the rule fired too recently."""
        key = (rule.id, product_id)
        last = self._last_triggered.get(key)
        if last is not None and now - last < rule.frequency.window:
            return False
        self._last_triggered[key] = now
        return True

    def reset(self, rule_id: Optional[str] = None, product_id: Optional[str] = None) -> None:
        """Forget triggers, optionally only those of one rule and/or product."""
        for key in list(self._last_triggered):
            if (rule_id is None or key[0] == rule_id) and (product_id is None or key[1] == product_id):
                del self._last_triggered[key]


class Notifier(Protocol):
    """Hands alerts to a transport.

    Raise DeliveryError for failures worth retrying; any other exception
    drops the delivery at once.
    """

    async def deliver(self, rule: AlertRule, alert: PriceAlert) -> None:
        ...


class AlertSink(Protocol):
    async def store_alert(self, alert: PriceAlert) -> None:
        ...


class LoggingNotifier:
    """Notifier that only logs; transports live outside this service."""

    async def deliver(self, rule: AlertRule, alert: PriceAlert) -> None:
        logger.info(
            "alert_delivered",
            rule_id=rule.id,
            product_id=alert.product_id,
            source_id=alert.source_id,
            change_percent=alert.change_percent,
            severity=alert.severity.value,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "alert_delivery_retry",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class AlertEngine:
    """Evaluates observations, stores alerts and notifies matching rules.

    A DeliveryError from the notifier is retried with exponential backoff.
    Once the attempts are spent, or on any other error, the delivery is
    logged and dropped so the pipeline keeps running.
    """

    def __init__(
        self,
        store: Optional[AlertSink] = None,
        notifier: Optional[Notifier] = None,
        thresholds: Optional[AlertThresholds] = None,
        rules: Optional[List[AlertRule]] = None,
        delivery_attempts: Optional[int] = None,
        delivery_wait: Optional[wait_base] = None,
    ):
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.thresholds = thresholds or AlertThresholds.from_settings()
        self.gate = FrequencyGate()
        self.delivery_attempts = delivery_attempts or settings.ALERT_DELIVERY_ATTEMPTS
        self.delivery_wait = delivery_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._rules: Dict[str, AlertRule] = {rule.id: rule for rule in rules or []}
        self.logger = logger.bind(service="alert_engine")

    @property
    def rules(self) -> List[AlertRule]:
        return list(self._rules.values())

    def add_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        self.gate.reset(rule_id)
        return self._rules.pop(rule_id, None) is not None

    def forget_product(self, product_id: str) -> None:
        self.gate.reset(product_id=product_id)

    def evaluate(self, previous: Optional[Observation], current: Observation) -> Optional[PriceAlert]:
        return evaluate(previous, current, self.thresholds)

    async def process(
        self, previous: Optional[Observation], current: Observation
    ) -> Optional[PriceAlert]:
        """Evaluate a new observation and dispatch the resulting alert.

        Returns:
            The PriceAlert, or None if the change was not significant
        """
        alert = self.evaluate(previous, current)
        if alert is None:
            return None

        self.logger.info(
            "price_alert_created",
            product_id=alert.product_id,
            source_id=alert.source_id,
            old_price=str(alert.old_price),
            new_price=str(alert.new_price),
            change_percent=alert.change_percent,
            severity=alert.severity.value,
        )

        if self.store is not None:
            await self.store.store_alert(alert)

        for rule in self.rules:
            if not rule.matches(alert):
                continue
            if not self.gate.should_fire(rule, alert.product_id, alert.timestamp):
                self.logger.debug(
                    "alert_suppressed",
                    rule_id=rule.id,
                    product_id=alert.product_id,
                    frequency=rule.frequency.value,
                )
                continue
            await self._deliver(rule, alert)

        return alert

    async def _deliver(self, rule: AlertRule, alert: PriceAlert) -> bool:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.delivery_attempts),
            wait=self.delivery_wait,
            retry=retry_if_exception_type(DeliveryError),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self.notifier.deliver(rule, alert)
        except Exception as e:
            self.logger.error(
                "alert_delivery_failed",
                rule_id=rule.id,
                product_id=alert.product_id,
                attempts=self.delivery_attempts,
                error=str(e),
            )
            return False
        return True
