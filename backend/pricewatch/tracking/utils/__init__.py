"""Tracking utilities for rate limiting, user agents and price parsing."""

from .rate_limiter import DomainLimit, DomainRateLimiter, SlidingWindow
from .user_agents import USER_AGENTS, get_random_user_agent
from .normalizer import PriceNormalizer, normalize_url


__all__ = [
    # Rate limiting
    "DomainLimit",
    "DomainRateLimiter",
    "SlidingWindow",
    # User agents
    "USER_AGENTS",
    "get_random_user_agent",
    # Normalization
    "PriceNormalizer",
    "normalize_url",
]
