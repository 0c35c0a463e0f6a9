"""Services implementing the alerting, intelligence and distribution stages.

Storage and the pipeline facade are imported from their modules directly
(pricewatch.services.storage, pricewatch.services.tracking_service).
"""

from pricewatch.services.alert_engine import (
    AlertEngine,
    AlertFrequency,
    AlertRule,
    AlertThresholds,
    PriceAlert,
    Severity,
    evaluate,
)
from pricewatch.services.distribution import DistributionEvent, EventHub, EventKind
from pricewatch.services.market_intelligence import (
    CompetitiveIntelligence,
    MarketIntelligenceEngine,
    competitive_intelligence,
)

__all__ = [
    "AlertEngine",
    "AlertFrequency",
    "AlertRule",
    "AlertThresholds",
    "PriceAlert",
    "Severity",
    "evaluate",
    "DistributionEvent",
    "EventHub",
    "EventKind",
    "CompetitiveIntelligence",
    "MarketIntelligenceEngine",
    "competitive_intelligence",
]
