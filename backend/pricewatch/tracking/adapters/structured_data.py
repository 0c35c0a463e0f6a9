"""Generic product page adapter.

Reads schema.org Product/Offer data embedded as JSON-LD, which most large
retailers publish for search engines. When a page carries none, optional
CSS selectors supplied at registration time are tried instead. No
retailer-specific selectors ship with this adapter.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import httpx
from bs4 import BeautifulSoup

from pricewatch.tracking.base import (
    BaseHTTPAdapter,
    FetchError,
    FetchErrorKind,
    Observation,
    TrackingTarget,
)
from pricewatch.tracking.utils.normalizer import PriceNormalizer

_UNAVAILABLE_MARKERS = ("OutOfStock", "SoldOut", "Discontinued")


def _iter_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    """Yield every JSON object in a JSON-LD document, depth first."""
    if isinstance(data, dict):
        yield data
        for value in data.values():
            yield from _iter_nodes(value)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)


def _has_type(node: Dict[str, Any], type_name: str) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return type_name in node_type
    return node_type == type_name


class StructuredDataAdapter(BaseHTTPAdapter):
    """HTTP adapter extracting prices from JSON-LD or CSS selectors."""

    adapter_type = "scraper"

    JSON_LD_CONFIDENCE = 0.9
    SELECTOR_CONFIDENCE = 0.7

    def __init__(
        self,
        source_id: Optional[str] = None,
        base_domain: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
        price_selectors: Sequence[str] = (),
        title_selectors: Sequence[str] = (),
        out_of_stock_selectors: Sequence[str] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(source_id, base_domain, http_client, user_agent)
        self.price_selectors = list(price_selectors)
        self.title_selectors = list(title_selectors)
        self.out_of_stock_selectors = list(out_of_stock_selectors)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch(self, target: TrackingTarget, timeout: float) -> Observation:
        self._ensure_supported(target)
        response = await self._get(target.locator_url, timeout)

        try:
            soup = BeautifulSoup(response.text, "lxml")
        except Exception as e:
            raise FetchError(FetchErrorKind.MALFORMED, f"unparseable page: {e}") from e

        observation = self._from_json_ld(soup, target) or self._from_selectors(soup, target)
        if observation is None:
            self.logger.warning("price_not_found", url=target.locator_url)
            raise FetchError(FetchErrorKind.NOT_FOUND, f"no price on {target.locator_url}")

        self.logger.debug(
            "observation_extracted",
            product_id=target.product_id,
            price=str(observation.current_price),
            confidence=observation.confidence,
        )
        return observation

    def _json_ld_products(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        products = []
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                data = json.loads(script.string or "")
            except ValueError:
                self.logger.debug("json_ld_invalid")
                continue
            products.extend(node for node in _iter_nodes(data) if _has_type(node, "Product"))
        return products

    def _from_json_ld(self, soup: BeautifulSoup, target: TrackingTarget) -> Optional[Observation]:
        for product in self._json_ld_products(soup):
            offers = product.get("offers")
            if isinstance(offers, dict):
                offers = [offers]
            if not isinstance(offers, list):
                continue

            for offer in offers:
                if not isinstance(offer, dict):
                    continue
                raw_price = offer.get("price")
                if raw_price is None:
                    raw_price = offer.get("lowPrice")
                price = PriceNormalizer.clean_price_string(
                    str(raw_price) if raw_price is not None else None
                )
                if price is None or price <= 0:
                    continue

                availability = str(offer.get("availability") or "")
                rating = product.get("aggregateRating") or {}
                review_count = None
                rating_value = None
                if isinstance(rating, dict):
                    rating_value = PriceNormalizer.parse_rating(str(rating.get("ratingValue") or ""))
                    review_count = PriceNormalizer.parse_review_count(
                        str(rating.get("reviewCount") or rating.get("ratingCount") or "")
                    )

                return Observation(
                    source_id=self.source_id,
                    product_id=target.product_id,
                    current_price=price,
                    captured_at=self.clock(),
                    currency=offer.get("priceCurrency") or "USD",
                    available=not any(marker in availability for marker in _UNAVAILABLE_MARKERS),
                    rating=rating_value,
                    review_count=review_count,
                    confidence=self.JSON_LD_CONFIDENCE,
                    title=product.get("name"),
                    url=target.locator_url,
                )
        return None

    def _select_text(self, soup: BeautifulSoup, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            element = soup.select_one(selector)
            if element is not None:
                text = element.get_text(strip=True)
                if text:
                    return text
        return None

    def _from_selectors(self, soup: BeautifulSoup, target: TrackingTarget) -> Optional[Observation]:
        if not self.price_selectors:
            return None

        price_text = self._select_text(soup, self.price_selectors)
        price = PriceNormalizer.extract_price_from_text(price_text or "")
        if price is None:
            return None

        return Observation(
            source_id=self.source_id,
            product_id=target.product_id,
            current_price=price,
            captured_at=self.clock(),
            currency=PriceNormalizer.detect_currency(price_text),
            available=not any(soup.select_one(sel) for sel in self.out_of_stock_selectors),
            confidence=self.SELECTOR_CONFIDENCE,
            title=self._select_text(soup, self.title_selectors),
            url=target.locator_url,
        )
