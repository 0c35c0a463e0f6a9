"""Observation and alert response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from pricewatch.services.alert_engine import Severity


class ObservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_id: str
    product_id: str
    current_price: Decimal
    currency: str
    available: bool
    rating: Optional[float] = None
    review_count: Optional[int] = None
    confidence: float
    title: Optional[str] = None
    url: Optional[str] = None
    captured_at: datetime


class PriceAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    source_id: str
    old_price: Decimal
    new_price: Decimal
    change_percent: float
    severity: Severity
    timestamp: datetime
