"""Market intelligence engine.

Rule-based statistics over competitor observations: market position,
insights, per-source price predictions, market trends and a risk level.
Everything except HistoryBuffer is a pure function of its inputs. Sparse
data lowers confidence or drops outputs; nothing here raises on it.

Component overview:
    - Market position: rank/percentile of the own price among current
      competitor prices, classified as leader/premium/follower/budget
    - Insights: fixed threshold rules with fixed confidences
    - Trend: OLS slope over daily closing prices, relative to their mean
    - Prediction: current * (1 + trend * days) for 1, 7 and 30 days
    - Risk: derived from the number and severity of threat insights
"""

import statistics
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from pricewatch.config import settings
from pricewatch.tracking.base import Observation

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Rule thresholds
# ---------------------------------------------------------------------------
LEADER_MARGIN = 1.05          # price <= min * 1.05 -> leader
PREMIUM_MARGIN = 0.95         # price >= max * 0.95 -> premium
DISPERSION_THRESHOLD = 0.30   # (max - min) / mean
Z_SCORE_THRESHOLD = 1.5       # std deviations from the mean
MAJOR_GAP_THRESHOLD = 0.15    # gap between major retailers / mean
CONCENTRATION_THRESHOLD = 0.80
OVERPRICED_MARGIN = 1.10      # price > mean * 1.1
UNDERPRICED_MARGIN = 0.90     # price < min * 0.9
TREND_THRESHOLD = 0.01        # relative daily slope for up/down
MARKET_TREND_FLOOR = 0.001    # below this no price trend is reported
LOW_AVAILABILITY_RATE = 0.30
HIGH_VOLATILITY = 0.10

HIGH_DEMAND_MONTHS = frozenset({11, 12, 1, 2})
MAJOR_COMPETITORS = ("amazon", "walmart")

MIN_PREDICTION_POINTS = 3
MIN_TREND_SOURCES = 3


class InsightType(str, Enum):
    OPPORTUNITY = "opportunity"
    THREAT = "threat"
    TREND = "trend"
    RECOMMENDATION = "recommendation"


class InsightSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PositionCategory(str, Enum):
    LEADER = "leader"
    FOLLOWER = "follower"
    PREMIUM = "premium"
    BUDGET = "budget"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TrendType(str, Enum):
    PRICE = "price"
    DEMAND = "demand"
    COMPETITION = "competition"
    SEASONAL = "seasonal"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Timeframe(str, Enum):
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"

    @property
    def days(self) -> int:
        return {"24h": 1, "7d": 7, "30d": 30}[self.value]


@dataclass(frozen=True)
class InsightImpact:
    """Expected effect of acting on an insight, as signed fractions."""

    revenue: float
    market_share: float
    competitive_position: float


@dataclass(frozen=True)
class MarketInsight:
    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    confidence: float
    data_points: Tuple[float, ...]
    recommendations: Tuple[str, ...]
    timestamp: datetime
    impact: Optional[InsightImpact] = None  # None for the price-adjustment rules


@dataclass(frozen=True)
class MarketPosition:
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


@dataclass(frozen=True)
class TrendAnalysis:
    slope: float  # relative to the mean price, per period
    direction: TrendDirection
    volatility: float
    sample_size: int


@dataclass(frozen=True)
class PricePrediction:
    source_id: str
    timeframe: Timeframe
    current_price: float
    predicted_price: float
    confidence: float
    direction: TrendDirection
    volatility: float
    factors: Tuple[str, ...]
    timestamp: datetime


@dataclass(frozen=True)
class MarketTrend:
    type: TrendType
    direction: TrendDirection
    strength: float
    duration_days: int
    confidence: float
    description: str
    affected_sources: Tuple[str, ...]


@dataclass(frozen=True)
class CompetitiveIntelligence:
    product_id: str
    as_of: datetime
    summary: str
    key_insights: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    risk_level: RiskLevel
    position: Optional[MarketPosition]
    insights: Tuple[MarketInsight, ...]
    predictions: Tuple[PricePrediction, ...]
    trends: Tuple[MarketTrend, ...]

    @property
    def opportunities(self) -> List[MarketInsight]:
        return [i for i in self.insights if i.type == InsightType.OPPORTUNITY]

    @property
    def threats(self) -> List[MarketInsight]:
        return [i for i in self.insights if i.type == InsightType.THREAT]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["opportunities"] = [asdict(i) for i in self.opportunities]
        data["threats"] = [asdict(i) for i in self.threats]
        return _jsonable(data)


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Cross-section helpers
# ---------------------------------------------------------------------------


def latest_by_source(observations: Iterable[Observation]) -> Dict[str, Observation]:
    """Newest observation per source, ignoring non-positive prices."""
    latest: Dict[str, Observation] = {}
    for obs in observations:
        if obs.current_price <= 0:
            continue
        current = latest.get(obs.source_id)
        if current is None or obs.captured_at >= current.captured_at:
            latest[obs.source_id] = obs
    return dict(sorted(latest.items()))


def dispersion(prices: Sequence[float]) -> float:
    if not prices:
        return 0.0
    mean = statistics.fmean(prices)
    return (max(prices) - min(prices)) / mean if mean > 0 else 0.0


def concentration(prices: Sequence[float]) -> float:
    """1 / (1 + variance / mean^2); 1.0 when every price is identical."""
    if not prices:
        return 1.0
    mean = statistics.fmean(prices)
    if mean <= 0:
        return 1.0
    return 1 / (1 + statistics.pvariance(prices) / mean ** 2)


def market_position(prices: Sequence[float], your_price: float) -> MarketPosition:
    """Place your_price within the competitor price distribution.

    rank is 1 + the number of competitors strictly cheaper than you, so
    ties rank you first among equals.
    """
    valid = sorted(p for p in prices if p > 0)
    if not valid:
        return MarketPosition(
            rank=1,
            percentile=50.0,
            category=PositionCategory.FOLLOWER,
            strength=0.5,
            your_price=your_price,
            competitor_count=0,
            mean=your_price,
            median=your_price,
            minimum=your_price,
            maximum=your_price,
            dispersion=0.0,
            concentration=1.0,
        )

    count = len(valid)
    mean = statistics.fmean(valid)
    median = statistics.median(valid)
    low, high = valid[0], valid[-1]
    spread = dispersion(valid)
    conc = concentration(valid)

    rank = min(count, sum(1 for p in valid if p < your_price) + 1)
    percentile = rank / count * 100

    if your_price <= low * LEADER_MARGIN:
        category = PositionCategory.LEADER
        strength = 0.8 + 0.2 * (1 - percentile / 100)
    elif your_price >= high * PREMIUM_MARGIN:
        category = PositionCategory.PREMIUM
        strength = 0.6 + 0.4 * (percentile / 100)
    elif your_price <= mean:
        category = PositionCategory.FOLLOWER
        strength = 0.7 + 0.3 * (1 - abs(your_price - median) / median)
    else:
        category = PositionCategory.BUDGET
        strength = 0.5 + 0.5 * (1 - (your_price - median) / median)

    # Volatile markets weaken a position, concentrated ones strengthen it
    strength *= 1 - spread * 0.5
    strength *= 1 + conc * 0.3

    return MarketPosition(
        rank=rank,
        percentile=round(percentile, 4),
        category=category,
        strength=round(_clamp(strength, 0.0, 1.0), 4),
        your_price=your_price,
        competitor_count=count,
        mean=round(mean, 4),
        median=round(median, 4),
        minimum=low,
        maximum=high,
        dispersion=round(spread, 4),
        concentration=round(conc, 4),
    )


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


def generate_insights(
    current: Mapping[str, float],
    your_price: Optional[float],
    as_of: datetime,
) -> List[MarketInsight]:
    """Run every insight rule over the current competitor prices.

    Args:
        current: Latest price per source id
        your_price: Own price, or None to run the market-only rules
        as_of: Evaluation time (drives the seasonal rule and timestamps)
    """
    insights: List[MarketInsight] = []
    prices = [p for p in current.values() if p > 0]

    def add(type_, severity, title, description, confidence, data_points, recommendations, impact=None):
        insights.append(
            MarketInsight(
                type=type_,
                severity=severity,
                title=title,
                description=description,
                confidence=confidence,
                data_points=tuple(round(float(d), 4) for d in data_points),
                recommendations=tuple(recommendations),
                timestamp=as_of,
                impact=impact,
            )
        )

    if prices:
        mean = statistics.fmean(prices)
        stdev = statistics.pstdev(prices)
        low = min(prices)
        spread = dispersion(prices)

        if spread > DISPERSION_THRESHOLD:
            add(
                InsightType.OPPORTUNITY,
                InsightSeverity.HIGH,
                "High Market Inefficiency Detected",
                f"Price dispersion of {spread * 100:.1f}% indicates significant market "
                "inefficiency. This presents opportunities for strategic pricing.",
                0.85,
                (spread, mean, stdev),
                (
                    "Consider dynamic pricing strategy",
                    "Monitor competitor price changes more frequently",
                    "Implement price optimization algorithms",
                ),
                InsightImpact(round(spread * 0.15, 4), round(spread * 0.2, 4), 0.8),
            )

        if your_price is not None and stdev > 0:
            distance = (your_price - mean) / stdev
            if distance > Z_SCORE_THRESHOLD:
                add(
                    InsightType.THREAT,
                    InsightSeverity.MEDIUM,
                    "Premium Pricing Risk",
                    f"Your price is {distance:.1f} standard deviations above the mean, "
                    "indicating premium positioning that may limit market share.",
                    0.75,
                    (distance, mean, your_price),
                    (
                        "Consider value-add strategies to justify premium pricing",
                        "Analyze customer willingness to pay",
                        "Monitor market share trends",
                    ),
                    InsightImpact(-0.1, -0.2, 0.6),
                )
            elif distance < -Z_SCORE_THRESHOLD:
                add(
                    InsightType.OPPORTUNITY,
                    InsightSeverity.HIGH,
                    "Market Leadership Opportunity",
                    f"Your price is {abs(distance):.1f} standard deviations below the mean, "
                    "positioning you as a market leader.",
                    0.90,
                    (distance, mean, your_price),
                    (
                        "Consider gradual price increases to maximize profit",
                        "Focus on volume and market share growth",
                        "Monitor competitor responses",
                    ),
                    InsightImpact(0.2, 0.3, 0.9),
                )

        major = [
            next((p for s, p in sorted(current.items()) if name in s.lower() and p > 0), None)
            for name in MAJOR_COMPETITORS
        ]
        if all(p is not None for p in major):
            gap = abs(major[0] - major[1]) / mean
            if gap > MAJOR_GAP_THRESHOLD:
                add(
                    InsightType.TREND,
                    InsightSeverity.MEDIUM,
                    "Major Retailer Price Divergence",
                    f"Amazon and Walmart prices differ by {gap * 100:.1f}%, "
                    "indicating potential market disruption.",
                    0.70,
                    (gap, major[0], major[1]),
                    (
                        "Monitor both retailers closely for price changes",
                        "Consider positioning between their price points",
                        "Prepare for potential price wars",
                    ),
                    InsightImpact(0.05, 0.1, 0.7),
                )

    if as_of.month in HIGH_DEMAND_MONTHS:
        add(
            InsightType.TREND,
            InsightSeverity.MEDIUM,
            "Seasonal Demand Increase Expected",
            "Holiday season typically increases demand by 20-40%. "
            "Consider adjusting pricing strategy.",
            0.70,
            (as_of.month,),
            (
                "Consider premium pricing during peak demand",
                "Monitor competitor holiday pricing strategies",
                "Prepare inventory for increased demand",
            ),
            InsightImpact(0.2, 0.1, 0.8),
        )

    if prices:
        conc = concentration(prices)
        if conc > CONCENTRATION_THRESHOLD:
            add(
                InsightType.THREAT,
                InsightSeverity.MEDIUM,
                "High Market Concentration",
                "Market is highly concentrated with similar pricing, "
                "limiting differentiation opportunities.",
                0.75,
                (conc,),
                (
                    "Focus on non-price differentiation",
                    "Consider value-added services",
                    "Monitor for price leadership opportunities",
                ),
                InsightImpact(-0.1, -0.05, 0.6),
            )

        if your_price is not None:
            if your_price > mean * OVERPRICED_MARGIN:
                target = mean * 0.95
                add(
                    InsightType.RECOMMENDATION,
                    InsightSeverity.HIGH,
                    "Price Adjustment Recommended",
                    f"Consider lowering price to ${target:.2f} to be more competitive",
                    0.80,
                    (your_price, mean, target),
                    (f"Consider lowering price to ${target:.2f} to be more competitive",),
                )
            if your_price < low * UNDERPRICED_MARGIN:
                target = low * 1.05
                add(
                    InsightType.RECOMMENDATION,
                    InsightSeverity.MEDIUM,
                    "Price Increase Opportunity",
                    f"You can increase price to ${target:.2f} and still be competitive",
                    0.75,
                    (your_price, low, target),
                    (f"You can increase price to ${target:.2f} and still be competitive",),
                )

    return insights


def risk_level(insights: Iterable[MarketInsight]) -> RiskLevel:
    threats = [i for i in insights if i.type == InsightType.THREAT]
    critical = sum(1 for i in threats if i.severity == InsightSeverity.CRITICAL)
    high = sum(1 for i in threats if i.severity == InsightSeverity.HIGH)
    medium = sum(1 for i in threats if i.severity == InsightSeverity.MEDIUM)

    if critical > 0:
        return RiskLevel.CRITICAL
    if high > 2:
        return RiskLevel.HIGH
    if high > 0 or medium > 3:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


def daily_closes(observations: Iterable[Observation]) -> List[Tuple[date, float]]:
    """Last price of each UTC day, oldest day first."""
    closes: Dict[date, Observation] = {}
    for obs in observations:
        if obs.current_price <= 0:
            continue
        day = obs.captured_at.date()
        current = closes.get(day)
        if current is None or obs.captured_at >= current.captured_at:
            closes[day] = obs
    return [(day, closes[day].price) for day in sorted(closes)]


def ols_slope(values: Sequence[float]) -> float:
    """Least squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    x_mean = (n - 1) / 2
    y_mean = statistics.fmean(values)
    numerator = sum((i - x_mean) * (y - y_mean) for i, y in enumerate(values))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    return numerator / denominator


def volatility(values: Sequence[float]) -> float:
    """Population standard deviation of period-over-period returns."""
    returns = [
        (curr - prev) / prev
        for prev, curr in zip(values, values[1:])
        if prev > 0
    ]
    if len(returns) < 2:
        return 0.0
    return statistics.pstdev(returns)


def trend_direction(slope: float) -> TrendDirection:
    if slope > TREND_THRESHOLD:
        return TrendDirection.UP
    if slope < -TREND_THRESHOLD:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def analyze_trend(values: Sequence[float]) -> TrendAnalysis:
    """Relative trend and volatility of a time-ordered price series.

    The OLS slope is divided by the series mean, so 0.02 means prices move
    about 2% of their average level per period.
    """
    values = [float(v) for v in values]
    mean = statistics.fmean(values) if values else 0.0
    slope = ols_slope(values) / mean if mean > 0 else 0.0
    return TrendAnalysis(
        slope=round(slope, 6),
        direction=trend_direction(slope),
        volatility=round(volatility(values), 6),
        sample_size=len(values),
    )


def prediction_confidence(sample_size: int, vol: float, slope: float) -> float:
    confidence = 0.5
    confidence += min(0.3, sample_size * 0.05)
    confidence += max(0.0, 0.2 * (1 - vol))
    confidence += 0.1 if abs(slope) > TREND_THRESHOLD else 0.2
    return round(_clamp(confidence, 0.1, 0.95), 4)


def _prediction_factors(trend: TrendAnalysis) -> Tuple[str, ...]:
    factors = []
    if trend.direction == TrendDirection.UP:
        factors.append("Upward price trend")
    elif trend.direction == TrendDirection.DOWN:
        factors.append("Downward price trend")
    else:
        factors.append("Stable pricing")
    if trend.volatility > HIGH_VOLATILITY:
        factors.append("High market volatility")
    if trend.sample_size > 10:
        factors.append("Strong historical data")
    return tuple(factors)


def predict_prices(
    history: Iterable[Observation],
    as_of: datetime,
    timeframes: Sequence[Timeframe] = tuple(Timeframe),
) -> List[PricePrediction]:
    """Per-source predictions from daily closing prices.

    Sources with fewer than three days of history get no prediction.
    """
    by_source: Dict[str, List[Observation]] = defaultdict(list)
    for obs in history:
        by_source[obs.source_id].append(obs)

    predictions: List[PricePrediction] = []
    for source_id in sorted(by_source):
        closes = [price for _, price in daily_closes(by_source[source_id])]
        if len(closes) < MIN_PREDICTION_POINTS:
            continue

        trend = analyze_trend(closes)
        current = closes[-1]
        confidence = prediction_confidence(trend.sample_size, trend.volatility, trend.slope)
        factors = _prediction_factors(trend)
        for timeframe in timeframes:
            predicted = max(0.0, current * (1 + trend.slope * timeframe.days))
            predictions.append(
                PricePrediction(
                    source_id=source_id,
                    timeframe=timeframe,
                    current_price=current,
                    predicted_price=round(predicted, 2),
                    confidence=confidence,
                    direction=trend.direction,
                    volatility=trend.volatility,
                    factors=factors,
                    timestamp=as_of,
                )
            )
    return predictions


def analyze_market_trends(
    current: Mapping[str, Observation],
    history: Iterable[Observation],
    as_of: datetime,
) -> List[MarketTrend]:
    """Market-wide price, demand, competition and seasonal trends.

    Needs at least three sources with a current price.
    """
    if len(current) < MIN_TREND_SOURCES:
        return []

    sources = tuple(sorted(current))
    prices = [obs.price for obs in current.values()]
    trends: List[MarketTrend] = []

    # Daily mean across sources
    daily: Dict[date, List[float]] = defaultdict(list)
    by_source: Dict[str, List[Observation]] = defaultdict(list)
    for obs in history:
        by_source[obs.source_id].append(obs)
    for observations in by_source.values():
        for day, price in daily_closes(observations):
            daily[day].append(price)
    series = [statistics.fmean(daily[day]) for day in sorted(daily)]

    if len(series) >= 2:
        slope = analyze_trend(series).slope
        if abs(slope) >= MARKET_TREND_FLOOR:
            word = "upward" if slope > 0 else "downward"
            trends.append(
                MarketTrend(
                    type=TrendType.PRICE,
                    direction=TrendDirection.UP if slope > 0 else TrendDirection.DOWN,
                    strength=round(min(1.0, abs(slope) * 100), 4),
                    duration_days=len(series),
                    confidence=0.7,
                    description=f"Prices are trending {word} with {abs(slope) * 100:.1f}% daily change",
                    affected_sources=sources,
                )
            )

    availability = sum(1 for obs in current.values() if obs.available) / len(current)
    if availability < LOW_AVAILABILITY_RATE:
        trends.append(
            MarketTrend(
                type=TrendType.DEMAND,
                direction=TrendDirection.UP,
                strength=0.8,
                duration_days=14,
                confidence=0.6,
                description="Low availability across competitors suggests high demand",
                affected_sources=sources,
            )
        )

    if dispersion(prices) > DISPERSION_THRESHOLD:
        trends.append(
            MarketTrend(
                type=TrendType.COMPETITION,
                direction=TrendDirection.UP,
                strength=0.7,
                duration_days=30,
                confidence=0.65,
                description="High price dispersion indicates increasing competition",
                affected_sources=sources,
            )
        )

    if as_of.month in HIGH_DEMAND_MONTHS:
        trends.append(
            MarketTrend(
                type=TrendType.SEASONAL,
                direction=TrendDirection.UP,
                strength=0.6,
                duration_days=90,
                confidence=0.5,
                description="Holiday season typically increases demand and prices",
                affected_sources=sources,
            )
        )

    return trends


def _summary(
    position: Optional[MarketPosition],
    insights: Sequence[MarketInsight],
    predictions: Sequence[PricePrediction],
    source_count: int,
) -> str:
    threats = sum(1 for i in insights if i.type == InsightType.THREAT)
    opportunities = sum(1 for i in insights if i.type == InsightType.OPPORTUNITY)

    if position is not None:
        text = (
            f"Market analysis shows you are in {position.category.value} position "
            f"({position.percentile:.1f}th percentile)."
        )
    else:
        text = f"Market analysis covers {source_count} competitor sources."
    text += f" {threats} threats and {opportunities} opportunities detected."

    if predictions:
        avg = statistics.fmean(p.confidence for p in predictions)
        text += f" {len(predictions)} price predictions generated with {avg * 100:.0f}% average confidence."
    else:
        text += " Not enough history for price predictions."
    return text


def _recommendations(
    position: Optional[MarketPosition], insights: Sequence[MarketInsight]
) -> Tuple[str, ...]:
    recommendations: List[str] = []
    if position is not None and position.competitor_count:
        if position.category == PositionCategory.PREMIUM:
            recommendations.append("Focus on value-add strategies to justify premium pricing")
        elif position.category == PositionCategory.LEADER:
            recommendations.append(
                "Consider gradual price increases to maximize profit while maintaining leadership"
            )
        elif position.category == PositionCategory.BUDGET:
            recommendations.append(
                "Monitor quality perception and consider value proposition improvements"
            )

    high_priority = [
        i for i in insights
        if i.severity in (InsightSeverity.HIGH, InsightSeverity.CRITICAL)
    ]
    for insight in high_priority[:3]:
        recommendations.extend(insight.recommendations[:1])
    return tuple(recommendations[:5])


def competitive_intelligence(
    product_id: str,
    history: Sequence[Observation],
    your_price: Optional[float] = None,
    as_of: Optional[datetime] = None,
) -> CompetitiveIntelligence:
    """Full analysis of one product from its observation history.

    The current cross-section is the newest observation per source. as_of
    defaults to the newest observation time, so the same history always
    yields the same result.
    """
    if as_of is None:
        as_of = max((obs.captured_at for obs in history), default=datetime(1970, 1, 1, tzinfo=timezone.utc))

    current = latest_by_source(history)
    current_prices = {source_id: obs.price for source_id, obs in current.items()}

    position = (
        market_position(list(current_prices.values()), your_price)
        if your_price is not None
        else None
    )
    insights = generate_insights(current_prices, your_price, as_of)
    predictions = predict_prices(history, as_of)
    trends = analyze_market_trends(current, history, as_of)

    return CompetitiveIntelligence(
        product_id=product_id,
        as_of=as_of,
        summary=_summary(position, insights, predictions, len(current)),
        key_insights=tuple(
            i.title for i in insights
            if i.severity in (InsightSeverity.HIGH, InsightSeverity.CRITICAL)
        ),
        recommendations=_recommendations(position, insights),
        risk_level=risk_level(insights),
        position=position,
        insights=tuple(insights),
        predictions=tuple(predictions),
        trends=tuple(trends),
    )


# ---------------------------------------------------------------------------
# Stateful wrapper
# ---------------------------------------------------------------------------


class HistoryBuffer:
    """Trailing window of observations per product.

    Appends evict observations older than the window, measured from the
    newest observation of that product rather than the wall clock.
    """

    def __init__(self, retention_days: Optional[int] = None):
        self.retention = timedelta(days=retention_days or settings.HISTORY_RETENTION_DAYS)
        self._buffers: Dict[str, List[Observation]] = {}

    def append(self, observation: Observation) -> None:
        buffer = self._buffers.setdefault(observation.product_id, [])
        buffer.append(observation)
        buffer.sort(key=lambda o: (o.captured_at, o.source_id))
        cutoff = buffer[-1].captured_at - self.retention
        if buffer[0].captured_at < cutoff:
            self._buffers[observation.product_id] = [o for o in buffer if o.captured_at >= cutoff]

    def extend(self, observations: Iterable[Observation]) -> None:
        for observation in observations:
            self.append(observation)

    def history(self, product_id: str) -> List[Observation]:
        return list(self._buffers.get(product_id, ()))

    def clear(self, product_id: str, source_ids: Optional[Iterable[str]] = None) -> None:
        """Drop a product's history, or only the given sources of it."""
        if source_ids is None:
            self._buffers.pop(product_id, None)
            return
        dropped = set(source_ids)
        remaining = [o for o in self._buffers.get(product_id, ()) if o.source_id not in dropped]
        if remaining:
            self._buffers[product_id] = remaining
        else:
            self._buffers.pop(product_id, None)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._buffers


class MarketIntelligenceEngine:
    """Keeps per-product history and own prices and runs the analysis."""

    def __init__(self, buffer: Optional[HistoryBuffer] = None):
        self.buffer = buffer or HistoryBuffer()
        self.own_prices: Dict[str, float] = {}
        self.logger = logger.bind(service="market_intelligence")

    def record(self, observation: Observation) -> None:
        self.buffer.append(observation)

    def set_own_price(self, product_id: str, price: Optional[float]) -> None:
        if price is None:
            self.own_prices.pop(product_id, None)
        else:
            if price <= 0:
                raise ValueError("own price must be positive")
            self.own_prices[product_id] = float(price)

    def forget(self, product_id: str, source_ids: Optional[Iterable[str]] = None) -> None:
        """Release state for a product that is no longer tracked."""
        self.buffer.clear(product_id, source_ids)
        if source_ids is None:
            self.own_prices.pop(product_id, None)

    def analyze(self, product_id: str, as_of: Optional[datetime] = None) -> CompetitiveIntelligence:
        history = self.buffer.history(product_id)
        result = competitive_intelligence(
            product_id,
            history,
            your_price=self.own_prices.get(product_id),
            as_of=as_of,
        )
        self.logger.debug(
            "intelligence_computed",
            product_id=product_id,
            observations=len(history),
            insights=len(result.insights),
            predictions=len(result.predictions),
            risk_level=result.risk_level.value,
        )
        return result
