"""Persisted price observations."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.models.base import Base, UUIDPrimaryKeyMixin
from pricewatch.tracking.base import Observation


class ObservationRecord(UUIDPrimaryKeyMixin, Base):
    """One observation row; the table doubles as the price history."""

    __tablename__ = "observations"

    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_id: Mapped[str] = mapped_column(String(50), nullable=False)

    price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="USD")
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    review_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[float] = mapped_column(
        Float, nullable=False, default=1.0, comment="Extraction confidence 0..1"
    )
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Stored as UTC
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_observations_pair_captured", "product_id", "source_id", "captured_at"),
        Index("idx_observations_product_captured", "product_id", "captured_at"),
    )

    @classmethod
    def from_observation(cls, observation: Observation) -> "ObservationRecord":
        return cls(
            product_id=observation.product_id,
            source_id=observation.source_id,
            price=observation.current_price,
            currency=observation.currency,
            available=observation.available,
            rating=observation.rating,
            review_count=observation.review_count,
            confidence=observation.confidence,
            title=observation.title,
            url=observation.url,
            captured_at=observation.captured_at.astimezone(timezone.utc),
        )

    def to_observation(self) -> Observation:
        return Observation(
            source_id=self.source_id,
            product_id=self.product_id,
            current_price=Decimal(str(self.price)),
            captured_at=self.captured_at,
            currency=self.currency,
            available=self.available,
            rating=self.rating,
            review_count=self.review_count,
            confidence=self.confidence,
            title=self.title,
            url=self.url,
        )

    def __repr__(self) -> str:
        return (
            f"<ObservationRecord(product_id={self.product_id}, source_id={self.source_id}, "
            f"price={self.price}, captured_at={self.captured_at})>"
        )
