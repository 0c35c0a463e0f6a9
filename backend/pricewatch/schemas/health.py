"""Health check schemas."""

from typing import Dict

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    scheduler: str
    database: str
    jobs: Dict[str, int] = {}
