"""Source adapter implementations.

Each adapter inherits from SourceAdapter (or BaseHTTPAdapter for adapters
that talk HTTP) and implements fetch().
"""

from .fixture import FixtureAdapter
from .shopify import ShopifyProductAdapter
from .structured_data import StructuredDataAdapter
from .unsupported import UnsupportedAdapter

__all__ = [
    "FixtureAdapter",
    "ShopifyProductAdapter",
    "StructuredDataAdapter",
    "UnsupportedAdapter",
]
