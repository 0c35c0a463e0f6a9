"""Real-time distribution of pipeline events to per-product subscribers.

Each subscription owns a bounded queue drained by its own task, so a slow
or failing subscriber only ever delays itself. Events for a product reach
every subscriber in publish order, at most once.
"""

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from pricewatch.config import settings

logger = structlog.get_logger(__name__)


class EventKind(str, Enum):
    OBSERVATION = "observation"
    ALERT = "alert"
    INSIGHTS = "insights"


@dataclass(frozen=True)
class DistributionEvent:
    kind: EventKind
    product_id: str
    payload: Dict[str, Any]
    published_at: datetime
    sequence: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "product_id": self.product_id,
            "payload": self.payload,
            "published_at": self.published_at.isoformat(),
            "sequence": self.sequence,
        }


EventHandler = Callable[[DistributionEvent], Union[Awaitable[None], None]]


@dataclass
class _Subscription:
    id: int
    product_id: str
    handler: EventHandler
    queue: asyncio.Queue
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    dropped: int = 0
    failed: int = 0
    closed: bool = field(default=False)


class EventHub:
    """Per-product publish/subscribe hub."""

    def __init__(
        self,
        handler_timeout: Optional[float] = None,
        queue_size: Optional[int] = None,
    ):
        self.handler_timeout = handler_timeout or settings.SUBSCRIBER_TIMEOUT_SECONDS
        self.queue_size = queue_size or settings.SUBSCRIBER_QUEUE_SIZE
        self._subscriptions: Dict[str, Dict[int, _Subscription]] = {}
        self._sequences: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self.logger = logger.bind(service="event_hub")

    def subscribe(self, product_id: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for a product's events.

        Must be called from inside the running event loop.

        Returns:
            Callable that removes the subscription (safe to call twice)
        """
        loop = asyncio.get_running_loop()
        subscription = _Subscription(
            id=next(self._ids),
            product_id=product_id,
            handler=handler,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        subscription.task = loop.create_task(self._consume(subscription))
        self._subscriptions.setdefault(product_id, {})[subscription.id] = subscription
        self.logger.info("subscriber_added", product_id=product_id, subscription_id=subscription.id)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: _Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        subscribers = self._subscriptions.get(subscription.product_id, {})
        subscribers.pop(subscription.id, None)
        if not subscribers:
            self._subscriptions.pop(subscription.product_id, None)
        if subscription.task is not None:
            subscription.task.cancel()
        self.logger.info(
            "subscriber_removed",
            product_id=subscription.product_id,
            subscription_id=subscription.id,
            delivered=subscription.delivered,
            dropped=subscription.dropped,
            failed=subscription.failed,
        )

    def forget(self, product_id: str) -> bool:
        """Drop a product's sequence counter once nobody is subscribed.

        Returns:
            True if the counter was dropped
        """
        if self._subscriptions.get(product_id):
            return False
        return self._sequences.pop(product_id, None) is not None

    def subscriber_count(self, product_id: str) -> int:
        return len(self._subscriptions.get(product_id, {}))

    def publish(
        self,
        product_id: str,
        kind: EventKind,
        payload: Dict[str, Any],
        published_at: Optional[datetime] = None,
    ) -> DistributionEvent:
        """Queue an event for every current subscriber of a product.

        Never blocks: a subscriber whose queue is full misses this event.
        """
        sequence = self._sequences.get(product_id, 0) + 1
        self._sequences[product_id] = sequence
        event = DistributionEvent(
            kind=kind,
            product_id=product_id,
            payload=payload,
            published_at=published_at or datetime.now(timezone.utc),
            sequence=sequence,
        )

        for subscription in list(self._subscriptions.get(product_id, {}).values()):
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                self.logger.warning(
                    "event_dropped",
                    product_id=product_id,
                    subscription_id=subscription.id,
                    kind=kind.value,
                    sequence=sequence,
                    reason="queue_full",
                )
        return event

    async def _consume(self, subscription: _Subscription) -> None:
        while True:
            event = await subscription.queue.get()
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self.handler_timeout)
                subscription.delivered += 1
            except asyncio.TimeoutError:
                subscription.failed += 1
                self.logger.warning(
                    "subscriber_timeout",
                    product_id=event.product_id,
                    subscription_id=subscription.id,
                    sequence=event.sequence,
                    timeout=self.handler_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                subscription.failed += 1
                self.logger.error(
                    "subscriber_failed",
                    product_id=event.product_id,
                    subscription_id=subscription.id,
                    sequence=event.sequence,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                subscription.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        subscriptions: List[_Subscription] = [
            s for subs in self._subscriptions.values() for s in subs.values()
        ]
        await asyncio.gather(*(s.queue.join() for s in subscriptions))

    async def close(self) -> None:
        """Cancel every subscription."""
        subscriptions = [s for subs in self._subscriptions.values() for s in subs.values()]
        for subscription in subscriptions:
            self._remove(subscription)
        tasks = [s.task for s in subscriptions if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
