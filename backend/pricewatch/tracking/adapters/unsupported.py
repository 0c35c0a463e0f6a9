"""Placeholder adapter for catalogued sources nobody can fetch yet."""

from pricewatch.tracking.base import (
    FetchError,
    FetchErrorKind,
    Observation,
    SourceAdapter,
    TrackingTarget,
)


class UnsupportedAdapter(SourceAdapter):
    """Rejects every target."""

    adapter_type = "unsupported"

    def supports(self, target: TrackingTarget) -> bool:
        return False

    async def fetch(self, target: TrackingTarget, timeout: float) -> Observation:
        raise FetchError(
            FetchErrorKind.UNSUPPORTED,
            f"source {self.source_id} has no working adapter",
        )
