"""Market intelligence response schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from pricewatch.services.market_intelligence import (
    InsightSeverity,
    InsightType,
    PositionCategory,
    RiskLevel,
    Timeframe,
    TrendDirection,
    TrendType,
)


class MarketPositionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    percentile: float
    category: PositionCategory
    strength: float
    your_price: float
    competitor_count: int
    mean: float
    median: float
    minimum: float
    maximum: float
    dispersion: float
    concentration: float


class InsightImpactResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    revenue: float
    market_share: float
    competitive_position: float


class MarketInsightResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    confidence: float
    data_points: List[float]
    recommendations: List[str]
    timestamp: datetime
    impact: Optional[InsightImpactResponse] = None


class PricePredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_id: str
    timeframe: Timeframe
    current_price: float
    predicted_price: float
    confidence: float
    direction: TrendDirection
    volatility: float
    factors: List[str]
    timestamp: datetime


class MarketTrendResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: TrendType
    direction: TrendDirection
    strength: float
    duration_days: int
    confidence: float
    description: str
    affected_sources: List[str]


class CompetitiveIntelligenceResponse(BaseModel):
    """Full intelligence pass for one product."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str
    as_of: datetime
    summary: str
    key_insights: List[str]
    recommendations: List[str]
    risk_level: RiskLevel
    position: Optional[MarketPositionResponse] = None
    opportunities: List[MarketInsightResponse]
    threats: List[MarketInsightResponse]
    insights: List[MarketInsightResponse]
    predictions: List[PricePredictionResponse]
    trends: List[MarketTrendResponse]
