"""Manual tracker runner for testing and debugging source adapters.

Fetches one product page through the adapter registered for a source and
prints the resulting observation, or the fetch error it mapped to.

Usage:
    python scripts/run_tracker.py --source amazon --url https://www.amazon.com/dp/B0C1234567
    python scripts/run_tracker.py --source shopify --url https://acme.myshopify.com/products/widget
    python scripts/run_tracker.py --source bestbuy --url ... --previous-price 499.99
"""

import argparse
import asyncio
import os
import sys
from decimal import Decimal

# Add backend to path so we can import pricewatch modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from pricewatch.config import settings
from pricewatch.core.logging import configure_logging
from pricewatch.services.alert_engine import AlertThresholds, evaluate
from pricewatch.tracking.base import FetchError, Observation, TrackingTarget
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.register_adapters import register_all_adapters
from pricewatch.tracking.sources import SourceCatalog


async def run_tracker(
    source_id: str,
    url: str,
    product_id: str,
    timeout: float,
    previous_price: Decimal | None = None,
) -> int:
    """Fetch a single target and display the result.

    Returns:
        Process exit code (0 on success)
    """
    catalog = SourceCatalog()
    if source_id not in catalog:
        print(f"\nError: Unknown source '{source_id}'")
        print("\nAvailable sources:")
        for known in sorted(catalog.ids()):
            print(f"   - {known}")
        return 2

    factory = AdapterFactory(user_agent=settings.HTTP_USER_AGENT or None)
    register_all_adapters(factory, catalog)
    adapter = factory.get(source_id)
    target = TrackingTarget("cli", product_id, source_id, url)

    print(f"\n{'=' * 70}")
    print(f"  Fetching {source_id} ({adapter.adapter_type})")
    print(f"{'=' * 70}")
    print(f"  URL: {url}")
    print(f"  Timeout: {timeout}s\n")

    if not adapter.supports(target):
        print(f"Unsupported: {source_id} cannot fetch {url}\n")
        return 2

    try:
        observation = await adapter.fetch(target, timeout)
    except FetchError as e:
        print(f"Fetch failed [{e.kind.value}]: {e.message}\n")
        return 1
    finally:
        await factory.cleanup()

    _print_observation(observation)

    if previous_price is not None:
        previous = Observation(
            source_id=source_id,
            product_id=product_id,
            current_price=previous_price,
            captured_at=observation.captured_at,
        )
        alert = evaluate(previous, observation, AlertThresholds.from_settings())
        if alert is None:
            print("  No alert: change below threshold\n")
        else:
            print(f"  Alert: {alert.change_percent:+.2f}% ({alert.severity.value})\n")
    return 0


def _print_observation(observation: Observation) -> None:
    print(f"  Title: {observation.title or '-'}")
    print(f"  Price: {observation.current_price} {observation.currency}")
    print(f"  Available: {'yes' if observation.available else 'no'}")
    if observation.rating is not None:
        print(f"  Rating: {observation.rating} ({observation.review_count or 0} reviews)")
    print(f"  Confidence: {observation.confidence:.2f}")
    print(f"  Captured: {observation.captured_at.isoformat()}\n")


def main():
    parser = argparse.ArgumentParser(description="Fetch one product page through a source adapter")
    parser.add_argument("--source", required=True, help="Source id (e.g. amazon, shopify)")
    parser.add_argument("--url", required=True, help="Product page URL")
    parser.add_argument("--product", default="cli-product", help="Product id attached to the observation")
    parser.add_argument("--timeout", type=float, default=30.0, help="Fetch timeout in seconds")
    parser.add_argument(
        "--previous-price",
        type=Decimal,
        default=None,
        help="Evaluate the fetched price against this previous price",
    )
    args = parser.parse_args()

    configure_logging()
    exit_code = asyncio.run(
        run_tracker(args.source, args.url, args.product, args.timeout, args.previous_price)
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
