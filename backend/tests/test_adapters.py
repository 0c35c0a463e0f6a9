"""Tests for source adapters, the adapter factory and parsing helpers."""

import json
from decimal import Decimal

import httpx
import pytest

from pricewatch.tracking.adapters import (
    FixtureAdapter,
    ShopifyProductAdapter,
    StructuredDataAdapter,
    UnsupportedAdapter,
)
from pricewatch.tracking.base import FetchError, FetchErrorKind, Observation, TrackingTarget
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.register_adapters import register_all_adapters
from pricewatch.tracking.sources import SourceCatalog
from pricewatch.tracking.utils.normalizer import PriceNormalizer, normalize_url

from conftest import START

PRODUCT_PAGE = """
<html><head>
<script type="application/ld+json">
{
  "@context": "https://schema.org",
  "@graph": [
    {"@type": "BreadcrumbList"},
    {
      "@type": "Product",
      "name": "Noise Cancelling Headphones",
      "aggregateRating": {"@type": "AggregateRating", "ratingValue": "4.6", "reviewCount": "1,204"},
      "offers": {
        "@type": "Offer",
        "price": "279.99",
        "priceCurrency": "USD",
        "availability": "https://schema.org/InStock"
      }
    }
  ]
}
</script>
</head><body></body></html>
"""

SELECTOR_PAGE = """
<html><body>
  <h1 class="title">Mechanical Keyboard</h1>
  <span class="price">$1,049.00</span>
  <div class="sold-out">Sold out</div>
</body></html>
"""


def target(source_id, url, product_id="sku-1") -> TrackingTarget:
    return TrackingTarget("org-1", product_id, source_id, url)


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def fixed_clock():
    return START


class TestStructuredDataAdapter:
    async def test_json_ld_offer(self):
        seen = {}

        def handler(request):
            seen["ua"] = request.headers["user-agent"]
            return httpx.Response(200, text=PRODUCT_PAGE)

        adapter = StructuredDataAdapter(
            source_id="bestbuy",
            base_domain="www.bestbuy.com",
            http_client=client_for(handler),
            user_agent="pricewatch-test",
            clock=fixed_clock,
        )
        observation = await adapter.fetch(target("bestbuy", "https://www.bestbuy.com/site/123"), 5)

        assert observation.current_price == Decimal("279.99")
        assert observation.currency == "USD"
        assert observation.available is True
        assert observation.rating == 4.6
        assert observation.review_count == 1204
        assert observation.confidence == StructuredDataAdapter.JSON_LD_CONFIDENCE
        assert observation.title == "Noise Cancelling Headphones"
        assert observation.captured_at == START
        assert seen["ua"] == "pricewatch-test"

    async def test_out_of_stock_offer_list(self):
        page = """<script type="application/ld+json">
        {"@type": "Product", "name": "X", "offers": [
            {"@type": "AggregateOffer", "lowPrice": 15, "availability": "https://schema.org/OutOfStock"}
        ]}</script>"""
        adapter = StructuredDataAdapter(
            source_id="walmart",
            http_client=client_for(lambda request: httpx.Response(200, text=page)),
        )
        observation = await adapter.fetch(target("walmart", "https://www.walmart.com/ip/1"), 5)
        assert observation.current_price == Decimal("15")
        assert observation.available is False

    async def test_selector_fallback(self):
        adapter = StructuredDataAdapter(
            source_id="newegg",
            http_client=client_for(lambda request: httpx.Response(200, text=SELECTOR_PAGE)),
            price_selectors=[".missing", ".price"],
            title_selectors=["h1.title"],
            out_of_stock_selectors=[".sold-out"],
        )
        observation = await adapter.fetch(target("newegg", "https://www.newegg.com/p/1"), 5)
        assert observation.current_price == Decimal("1049.00")
        assert observation.title == "Mechanical Keyboard"
        assert observation.available is False
        assert observation.confidence == StructuredDataAdapter.SELECTOR_CONFIDENCE

    async def test_page_without_price_is_not_found(self):
        adapter = StructuredDataAdapter(
            source_id="target",
            http_client=client_for(lambda request: httpx.Response(200, text="<html></html>")),
        )
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(target("target", "https://www.target.com/p/1"), 5)
        assert exc_info.value.kind == FetchErrorKind.NOT_FOUND

    @pytest.mark.parametrize(
        "status, kind",
        [
            (404, FetchErrorKind.NOT_FOUND),
            (429, FetchErrorKind.RATE_LIMITED),
            (503, FetchErrorKind.MALFORMED),
        ],
    )
    async def test_http_status_mapping(self, status, kind):
        adapter = StructuredDataAdapter(
            source_id="amazon",
            http_client=client_for(lambda request: httpx.Response(status)),
        )
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(target("amazon", "https://www.amazon.com/dp/1"), 5)
        assert exc_info.value.kind == kind

    async def test_transport_errors(self):
        def timeout(request):
            raise httpx.ReadTimeout("slow", request=request)

        def refused(request):
            raise httpx.ConnectError("refused", request=request)

        for handler, kind in ((timeout, FetchErrorKind.TIMEOUT), (refused, FetchErrorKind.NETWORK)):
            adapter = StructuredDataAdapter(source_id="amazon", http_client=client_for(handler))
            with pytest.raises(FetchError) as exc_info:
                await adapter.fetch(target("amazon", "https://www.amazon.com/dp/1"), 5)
            assert exc_info.value.kind == kind

    async def test_foreign_domain_is_unsupported(self):
        adapter = StructuredDataAdapter(source_id="amazon", base_domain="www.amazon.com")
        foreign = target("amazon", "https://www.ebay.com/itm/1")
        assert not adapter.supports(foreign)
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(foreign, 5)
        assert exc_info.value.kind == FetchErrorKind.UNSUPPORTED


class TestShopifyProductAdapter:
    def test_product_json_url(self):
        assert (
            ShopifyProductAdapter.product_json_url("https://acme.myshopify.com/products/widget/?variant=1")
            == "https://acme.myshopify.com/products/widget.js"
        )

    def test_supports_only_product_pages(self):
        adapter = ShopifyProductAdapter(source_id="shopify")
        assert adapter.supports(target("shopify", "https://acme.myshopify.com/products/widget"))
        assert not adapter.supports(target("shopify", "https://acme.myshopify.com/collections/all"))
        assert not adapter.supports(target("shopify", "https://acme.example.com/products/widget"))

    async def test_price_in_cents(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, json={"title": "Widget", "price": 2499, "available": False})

        adapter = ShopifyProductAdapter(
            source_id="shopify", http_client=client_for(handler), clock=fixed_clock
        )
        observation = await adapter.fetch(
            target("shopify", "https://acme.myshopify.com/products/widget"), 5
        )
        assert requested == ["https://acme.myshopify.com/products/widget.js"]
        assert observation.current_price == Decimal("24.99")
        assert observation.available is False
        assert observation.title == "Widget"

    async def test_variant_price_fallback(self):
        adapter = ShopifyProductAdapter(
            source_id="shopify",
            http_client=client_for(
                lambda request: httpx.Response(200, json={"variants": [{"price": 1000}]})
            ),
        )
        observation = await adapter.fetch(
            target("shopify", "https://acme.myshopify.com/products/widget"), 5
        )
        assert observation.current_price == Decimal("10")

    async def test_invalid_json_is_malformed(self):
        adapter = ShopifyProductAdapter(
            source_id="shopify",
            http_client=client_for(lambda request: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(target("shopify", "https://acme.myshopify.com/products/widget"), 5)
        assert exc_info.value.kind == FetchErrorKind.MALFORMED

    async def test_missing_price_is_not_found(self):
        adapter = ShopifyProductAdapter(
            source_id="shopify",
            http_client=client_for(lambda request: httpx.Response(200, json={"title": "Widget"})),
        )
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(target("shopify", "https://acme.myshopify.com/products/widget"), 5)
        assert exc_info.value.kind == FetchErrorKind.NOT_FOUND


class TestFixtureAdapter:
    async def test_script_replays_and_repeats_last(self):
        adapter = FixtureAdapter(source_id="alpha", clock=fixed_clock)
        adapter.set_script("sku-1", [100, FetchErrorKind.RATE_LIMITED, "99.50"])
        t = target("alpha", "https://alpha.example/p/1")

        assert (await adapter.fetch(t, 1)).current_price == Decimal("100")
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(t, 1)
        assert exc_info.value.kind == FetchErrorKind.RATE_LIMITED
        assert (await adapter.fetch(t, 1)).current_price == Decimal("99.50")
        assert (await adapter.fetch(t, 1)).current_price == Decimal("99.50")
        assert len(adapter.calls) == 4

    async def test_unscripted_product_is_not_found(self):
        adapter = FixtureAdapter(source_id="alpha")
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(target("alpha", "https://alpha.example/p/1"), 1)
        assert exc_info.value.kind == FetchErrorKind.NOT_FOUND

    async def test_observation_outcome_is_returned_as_is(self):
        scripted = Observation("alpha", "sku-1", Decimal("5"), START, available=False)
        adapter = FixtureAdapter(source_id="alpha", script={"sku-1": [scripted]})
        assert await adapter.fetch(target("alpha", "https://alpha.example/p/1"), 1) is scripted

    async def test_unsupported_adapter(self):
        adapter = UnsupportedAdapter(source_id="alpha")
        t = target("alpha", "https://alpha.example/p/1")
        assert not adapter.supports(t)
        with pytest.raises(FetchError) as exc_info:
            await adapter.fetch(t, 1)
        assert exc_info.value.kind == FetchErrorKind.UNSUPPORTED


class TestAdapterFactory:
    async def test_register_all_adapters(self):
        catalog = SourceCatalog()
        factory = AdapterFactory(user_agent="pricewatch-test")
        assert register_all_adapters(factory, catalog) == len(catalog.ids())

        shopify = factory.get("shopify")
        amazon = factory.get("amazon")
        assert isinstance(shopify, ShopifyProductAdapter)
        assert isinstance(amazon, StructuredDataAdapter)
        assert amazon.base_domain == "www.amazon.com"
        assert amazon.user_agent == "pricewatch-test"
        assert factory.get("amazon") is amazon
        assert factory.get("nowhere") is None
        await factory.cleanup()

    def test_rejects_non_adapter_classes(self):
        with pytest.raises(ValueError):
            AdapterFactory().register_adapter("alpha", dict)

    def test_shared_http_client_is_injected(self):
        client = httpx.AsyncClient()
        factory = AdapterFactory(http_client=client)
        factory.register_adapter("amazon", StructuredDataAdapter, base_domain="www.amazon.com")
        assert factory.get("amazon").http_client is client
        assert factory.has_adapter("amazon")
        assert factory.get_registered_sources() == ["amazon"]


class TestObservation:
    def test_price_is_coerced_to_decimal(self):
        observation = Observation("alpha", "sku-1", 19.99, START)
        assert observation.current_price == Decimal("19.99")

    def test_naive_timestamps_become_utc(self):
        observation = Observation("alpha", "sku-1", Decimal("1"), START.replace(tzinfo=None))
        assert observation.captured_at == START

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"source_id": ""},
            {"current_price": Decimal("-1")},
            {"confidence": 1.5},
        ],
    )
    def test_validation(self, kwargs):
        values = {"source_id": "alpha", "product_id": "sku-1", "current_price": Decimal("1"), "captured_at": START}
        values.update(kwargs)
        with pytest.raises(ValueError):
            Observation(**values)

    def test_to_dict_is_json_ready(self):
        data = Observation("alpha", "sku-1", Decimal("9.99"), START).to_dict()
        assert json.loads(json.dumps(data))["current_price"] == "9.99"


class TestNormalizer:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("$1,234.56", Decimal("1234.56")),
            ("USD 12", Decimal("12")),
            ("abc", None),
            ("1.2.3", None),
        ],
    )
    def test_clean_price_string(self, raw, expected):
        assert PriceNormalizer.clean_price_string(raw) == expected

    def test_detect_currency(self):
        assert PriceNormalizer.detect_currency("£30") == "GBP"
        assert PriceNormalizer.detect_currency("30 CAD") == "CAD"
        assert PriceNormalizer.detect_currency("30") == "USD"

    def test_parse_rating(self):
        assert PriceNormalizer.parse_rating("4.5 out of 5 stars") == 4.5
        assert PriceNormalizer.parse_rating("9/10") == 4.5

    def test_normalize_url_strips_tracking(self):
        assert (
            normalize_url("https://WWW.Amazon.com/dp/1?utm_source=x&th=1#reviews")
            == "https://www.amazon.com/dp/1?th=1"
        )
