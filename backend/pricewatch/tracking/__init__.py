"""Price tracking: sources, adapters, rate limiting and job scheduling."""

from .base import (
    BaseHTTPAdapter,
    FetchError,
    FetchErrorKind,
    Observation,
    SourceAdapter,
    TrackingTarget,
)
from .factory import AdapterFactory
from .jobs import JobStatus, JobTable, TrackingJob
from .plans import PLAN_TIERS, PlanRegistry, PlanTierConfig
from .scheduler import TrackingScheduler
from .sources import DEFAULT_SOURCES, CompetitorSource, SourceCatalog

__all__ = [
    "AdapterFactory",
    "BaseHTTPAdapter",
    "CompetitorSource",
    "DEFAULT_SOURCES",
    "FetchError",
    "FetchErrorKind",
    "JobStatus",
    "JobTable",
    "Observation",
    "PLAN_TIERS",
    "PlanRegistry",
    "PlanTierConfig",
    "SourceAdapter",
    "SourceCatalog",
    "TrackingJob",
    "TrackingScheduler",
    "TrackingTarget",
]
