"""Plan tier configuration supplied by the billing collaborator.

The scheduler treats these values as read-only configuration keyed by
organization. Tiers below mirror the commercial plans; organizations can
also be given a fully custom PlanTierConfig.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Union

import structlog

from pricewatch.config import settings
from pricewatch.core.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PlanTierConfig:
    """Tracking limits granted by a plan tier."""

    name: str
    max_concurrent_jobs: int
    update_interval_minutes: int
    retry_attempts: int
    timeout_seconds: float
    allowed_source_ids: FrozenSet[str]
    retry_base_minutes: float = 5.0  # backoff(n) = retry_base_minutes * n

    def __post_init__(self):
        if self.max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if self.update_interval_minutes <= 0:
            raise ValueError("update_interval_minutes must be positive")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.retry_base_minutes <= 0:
            raise ValueError("retry_base_minutes must be positive")
        if not isinstance(self.allowed_source_ids, frozenset):
            object.__setattr__(self, "allowed_source_ids", frozenset(self.allowed_source_ids))

    def allows(self, source_id: str) -> bool:
        return source_id in self.allowed_source_ids

    def backoff_minutes(self, retry_count: int) -> float:
        """Delay before retry number `retry_count` (1-based)."""
        return self.retry_base_minutes * max(1, retry_count)


_RETAIL_SOURCES = frozenset({"amazon", "bestbuy", "walmart", "target"})
_ELECTRONICS_SOURCES = _RETAIL_SOURCES | {"newegg", "bhphotovideo", "microcenter"}

PLAN_TIERS: Dict[str, PlanTierConfig] = {
    "starter": PlanTierConfig(
        name="starter",
        max_concurrent_jobs=3,
        update_interval_minutes=60,
        retry_attempts=2,
        timeout_seconds=30,
        allowed_source_ids=_RETAIL_SOURCES,
        retry_base_minutes=10,
    ),
    "professional": PlanTierConfig(
        name="professional",
        max_concurrent_jobs=10,
        update_interval_minutes=15,
        retry_attempts=3,
        timeout_seconds=45,
        allowed_source_ids=_ELECTRONICS_SOURCES,
        retry_base_minutes=5,
    ),
    "enterprise": PlanTierConfig(
        name="enterprise",
        max_concurrent_jobs=50,
        update_interval_minutes=5,
        retry_attempts=5,
        timeout_seconds=60,
        allowed_source_ids=_ELECTRONICS_SOURCES | {"shopify"},
        retry_base_minutes=2,
    ),
}


class PlanRegistry:
    """Maps organizations to their PlanTierConfig."""

    def __init__(
        self,
        tiers: Optional[Dict[str, PlanTierConfig]] = None,
        default_tier: Optional[str] = None,
    ):
        self.tiers = dict(tiers if tiers is not None else PLAN_TIERS)
        self.default_tier = default_tier or settings.DEFAULT_PLAN_TIER
        if self.default_tier not in self.tiers:
            raise NotFoundError("PlanTier", self.default_tier)
        self._assignments: Dict[str, PlanTierConfig] = {}

    def assign(self, organization_id: str, plan: Union[str, PlanTierConfig]) -> PlanTierConfig:
        """Set an organization's plan by tier name or explicit config."""
        if isinstance(plan, str):
            config = self.tiers.get(plan)
            if config is None:
                raise NotFoundError("PlanTier", plan)
        else:
            config = plan
        self._assignments[organization_id] = config
        logger.info(
            "plan_assigned",
            organization_id=organization_id,
            plan=config.name,
            max_concurrent_jobs=config.max_concurrent_jobs,
        )
        return config

    def get(self, organization_id: str) -> PlanTierConfig:
        return self._assignments.get(organization_id, self.tiers[self.default_tier])
