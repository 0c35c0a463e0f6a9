"""Base source adapter interface.

Every competitor source is reached through a SourceAdapter. The scheduler
only knows the fetch() contract below: an adapter either returns an
Observation or raises a FetchError, and it never retries on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog

from pricewatch.tracking.utils.user_agents import get_random_user_agent


@dataclass(frozen=True)
class Observation:
    """One successful price/availability reading for a product at a source."""

    source_id: str
    product_id: str
    current_price: Decimal
    captured_at: datetime
    currency: str = "USD"
    available: bool = True
    rating: Optional[float] = None
    review_count: Optional[int] = None
    confidence: float = 1.0  # 0..1, how much the extraction can be trusted
    title: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.source_id:
            raise ValueError("source_id is required")
        if not self.product_id:
            raise ValueError("product_id is required")
        if not isinstance(self.current_price, Decimal):
            object.__setattr__(self, "current_price", Decimal(str(self.current_price)))
        if self.current_price < 0:
            raise ValueError("current_price must be a non-negative Decimal")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        if self.captured_at.tzinfo is None:
            object.__setattr__(
                self, "captured_at", self.captured_at.replace(tzinfo=timezone.utc)
            )

    @property
    def price(self) -> float:
        return float(self.current_price)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "product_id": self.product_id,
            "current_price": str(self.current_price),
            "currency": self.currency,
            "available": self.available,
            "rating": self.rating,
            "review_count": self.review_count,
            "confidence": self.confidence,
            "title": self.title,
            "url": self.url,
            "captured_at": self.captured_at.isoformat(),
        }


class FetchErrorKind(str, Enum):
    """Failure categories an adapter may report."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"  # page loaded but no extractable price
    MALFORMED = "malformed"  # unparseable page/response
    UNSUPPORTED = "unsupported"  # target does not belong to this source
    NETWORK = "network"  # connection level failure

    @property
    def is_transient(self) -> bool:
        return self is not FetchErrorKind.UNSUPPORTED


class FetchError(Exception):
    """Raised by adapters when a fetch does not produce an Observation."""

    def __init__(self, kind: FetchErrorKind, message: str = ""):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message}")


@dataclass(frozen=True)
class TrackingTarget:
    """One (product, source, locator) triple the scheduler polls."""

    organization_id: str
    product_id: str
    source_id: str
    locator_url: str

    @property
    def pair(self) -> tuple[str, str]:
        return (self.product_id, self.source_id)

    @property
    def domain(self) -> str:
        return urlparse(self.locator_url).netloc.lower()


class SourceAdapter(ABC):
    """Abstract base class for all competitor source adapters.

    Adapters may scrape a page, call a REST API or return fixtures; the
    scheduler is agnostic. Implementations must honour the timeout passed
    to fetch() and must not retry internally.
    """

    source_id: str = ""  # Must be overridden in subclass (e.g., "amazon")
    adapter_type: str = ""  # 'scraper', 'api' or 'fixture'

    def __init__(self, source_id: Optional[str] = None):
        if source_id:
            self.source_id = source_id
        self.logger = structlog.get_logger(adapter=self.source_id)

    @abstractmethod
    async def fetch(self, target: TrackingTarget, timeout: float) -> Observation:
        """Fetch the current observation for a target.

        Args:
            target: Tracking target to read
            timeout: Seconds the whole fetch may take

        Returns:
            Observation for target.product_id at this source

        Raises:
            FetchError: When no observation could be produced
        """

    def supports(self, target: TrackingTarget) -> bool:
        """Whether this adapter can fetch the given target at all."""
        return target.source_id == self.source_id

    def _ensure_supported(self, target: TrackingTarget) -> None:
        if not self.supports(target):
            raise FetchError(
                FetchErrorKind.UNSUPPORTED,
                f"target {target.locator_url} does not belong to source {self.source_id}",
            )

    async def cleanup(self) -> None:
        """Release adapter resources."""


class BaseHTTPAdapter(SourceAdapter):
    """Base class for adapters that talk HTTP.

    Maps transport failures and HTTP status codes to FetchError kinds so
    subclasses only deal with parsing a successful response.
    """

    def __init__(
        self,
        source_id: Optional[str] = None,
        base_domain: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
    ):
        super().__init__(source_id)
        self.base_domain = (base_domain or "").lower()
        self.http_client = http_client  # httpx.AsyncClient injected by the factory
        self.user_agent = user_agent
        self._owns_client = False

    def supports(self, target: TrackingTarget) -> bool:
        if not super().supports(target):
            return False
        if not self.base_domain:
            return True
        domain = target.domain
        return domain == self.base_domain or domain.endswith("." + self.base_domain)

    def _get_client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self.http_client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent or get_random_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        """GET a URL, translating every failure into a FetchError."""
        client = self._get_client()
        try:
            response = await client.get(url, headers=self._headers(), timeout=timeout)
        except httpx.TimeoutException as e:
            raise FetchError(FetchErrorKind.TIMEOUT, f"timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise FetchError(FetchErrorKind.NETWORK, str(e) or type(e).__name__) from e

        if response.status_code == 404:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"HTTP 404 for {url}")
        if response.status_code == 429:
            raise FetchError(FetchErrorKind.RATE_LIMITED, f"HTTP 429 for {url}")
        if response.status_code >= 400:
            raise FetchError(
                FetchErrorKind.MALFORMED, f"HTTP {response.status_code} for {url}"
            )
        return response

    async def cleanup(self) -> None:
        if self._owns_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
            self._owns_client = False
