"""Shopify storefront adapter.

Every Shopify product page has a JSON twin at `<product url>.js` with the
price in minor units and an `available` flag, so no HTML parsing is needed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from urllib.parse import urlparse, urlunparse

import httpx

from pricewatch.tracking.base import (
    BaseHTTPAdapter,
    FetchError,
    FetchErrorKind,
    Observation,
    TrackingTarget,
)


class ShopifyProductAdapter(BaseHTTPAdapter):
    """Reads prices from the Shopify product JSON endpoint."""

    adapter_type = "api"

    CONFIDENCE = 0.95

    def __init__(
        self,
        source_id: Optional[str] = None,
        base_domain: Optional[str] = "myshopify.com",
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
        currency: str = "USD",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(source_id, base_domain, http_client, user_agent)
        self.currency = currency
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def product_json_url(locator_url: str) -> str:
        parsed = urlparse(locator_url)
        path = parsed.path.rstrip("/")
        if not path.endswith(".js"):
            path = f"{path}.js"
        return urlunparse((parsed.scheme or "https", parsed.netloc, path, "", "", ""))

    def supports(self, target: TrackingTarget) -> bool:
        return super().supports(target) and "/products/" in urlparse(target.locator_url).path

    async def fetch(self, target: TrackingTarget, timeout: float) -> Observation:
        self._ensure_supported(target)
        response = await self._get(self.product_json_url(target.locator_url), timeout)

        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(FetchErrorKind.MALFORMED, "product JSON could not be decoded") from e
        if not isinstance(data, dict):
            raise FetchError(FetchErrorKind.MALFORMED, "product JSON is not an object")

        cents = data.get("price")
        if cents is None:
            variants = data.get("variants") or []
            if variants and isinstance(variants[0], dict):
                cents = variants[0].get("price")
        if cents is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, "product JSON has no price")

        try:
            price = Decimal(str(cents)) / 100
        except ArithmeticError as e:
            raise FetchError(FetchErrorKind.MALFORMED, f"invalid price {cents!r}") from e

        return Observation(
            source_id=self.source_id,
            product_id=target.product_id,
            current_price=price,
            captured_at=self.clock(),
            currency=self.currency,
            available=bool(data.get("available", True)),
            confidence=self.CONFIDENCE,
            title=data.get("title"),
            url=target.locator_url,
        )
