"""Register the built-in source adapters with a factory.

Call during application startup, after the source catalog is loaded.
"""

import structlog

from pricewatch.tracking.adapters import ShopifyProductAdapter, StructuredDataAdapter
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.sources import SourceCatalog

logger = structlog.get_logger(__name__)

# Sources served by a dedicated adapter; every other source falls back to
# the generic JSON-LD page adapter.
_DEDICATED_ADAPTERS = {
    "shopify": ShopifyProductAdapter,
}


def register_all_adapters(factory: AdapterFactory, catalog: SourceCatalog) -> int:
    """Register an adapter for every catalogued source.

    Returns:
        Number of adapters registered
    """
    registered = 0
    for source in catalog:
        adapter_class = _DEDICATED_ADAPTERS.get(source.id, StructuredDataAdapter)
        try:
            factory.register_adapter(source.id, adapter_class, base_domain=source.base_domain)
            registered += 1
        except Exception as e:
            logger.error(
                "adapter_registration_failed",
                source_id=source.id,
                error=str(e),
                exc_info=True,
            )

    logger.info("adapters_registered", count=registered)
    return registered
