"""Static catalog of competitor sources.

Sources are immutable capability descriptors loaded once at startup. The
rate limiter is configured from them and the scheduler reads their retry
budget; nothing here knows how a source is actually fetched.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from pricewatch.core.exceptions import NotFoundError


@dataclass(frozen=True)
class CompetitorSource:
    """Static descriptor for one competitor/site."""

    id: str
    name: str
    base_domain: str
    rate_limit_per_minute: int = 10
    min_request_interval_seconds: float = 0.0
    max_retries: int = 3

    def __post_init__(self):
        if not self.id:
            raise ValueError("id is required")
        if self.rate_limit_per_minute < 1:
            raise ValueError("rate_limit_per_minute must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


DEFAULT_SOURCES: List[CompetitorSource] = [
    CompetitorSource("amazon", "Amazon", "www.amazon.com", rate_limit_per_minute=10, min_request_interval_seconds=2.0),
    CompetitorSource("bestbuy", "Best Buy", "www.bestbuy.com", rate_limit_per_minute=15),
    CompetitorSource("walmart", "Walmart", "www.walmart.com", rate_limit_per_minute=20),
    CompetitorSource("target", "Target", "www.target.com", rate_limit_per_minute=12),
    CompetitorSource("newegg", "Newegg", "www.newegg.com", rate_limit_per_minute=15),
    CompetitorSource("bhphotovideo", "B&H Photo", "www.bhphotovideo.com", rate_limit_per_minute=10),
    CompetitorSource("microcenter", "Micro Center", "www.microcenter.com", rate_limit_per_minute=10),
    CompetitorSource("shopify", "Shopify Store", "myshopify.com", rate_limit_per_minute=30, max_retries=5),
]


class SourceCatalog:
    """Read-only lookup of CompetitorSource descriptors by id."""

    def __init__(self, sources: Optional[Iterable[CompetitorSource]] = None):
        self._sources: Dict[str, CompetitorSource] = {}
        for source in sources if sources is not None else DEFAULT_SOURCES:
            if source.id in self._sources:
                raise ValueError(f"Duplicate source id: {source.id}")
            self._sources[source.id] = source

    def get(self, source_id: str) -> CompetitorSource:
        source = self._sources.get(source_id)
        if source is None:
            raise NotFoundError("CompetitorSource", source_id)
        return source

    def find(self, source_id: str) -> Optional[CompetitorSource]:
        return self._sources.get(source_id)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._sources

    def __iter__(self):
        return iter(self._sources.values())

    def ids(self) -> List[str]:
        return list(self._sources.keys())
