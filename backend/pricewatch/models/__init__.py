"""SQLAlchemy models for PriceWatch.

All models are imported here so metadata.create_all sees every table.
"""

from pricewatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from pricewatch.models.observation import ObservationRecord
from pricewatch.models.price_alert import PriceAlertRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "ObservationRecord",
    "PriceAlertRecord",
]
