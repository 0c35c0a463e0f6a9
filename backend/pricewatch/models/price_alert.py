"""Persisted price-change alerts."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Float, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from pricewatch.services.alert_engine import PriceAlert, Severity


class PriceAlertRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Alert emitted by the delta engine for a (product, source) pair."""

    __tablename__ = "price_alerts"

    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_id: Mapped[str] = mapped_column(String(50), nullable=False)
    old_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    new_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    change_percent: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="'low', 'medium' or 'high'"
    )
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_price_alerts_product_triggered", "product_id", "triggered_at"),
    )

    @classmethod
    def from_alert(cls, alert: PriceAlert) -> "PriceAlertRecord":
        return cls(
            product_id=alert.product_id,
            source_id=alert.source_id,
            old_price=alert.old_price,
            new_price=alert.new_price,
            change_percent=alert.change_percent,
            severity=alert.severity.value,
            triggered_at=alert.timestamp.astimezone(timezone.utc),
        )

    def to_alert(self) -> PriceAlert:
        triggered_at = self.triggered_at
        if triggered_at.tzinfo is None:
            triggered_at = triggered_at.replace(tzinfo=timezone.utc)
        return PriceAlert(
            product_id=self.product_id,
            source_id=self.source_id,
            old_price=Decimal(str(self.old_price)),
            new_price=Decimal(str(self.new_price)),
            change_percent=self.change_percent,
            severity=Severity(self.severity),
            timestamp=triggered_at,
        )

    def __repr__(self) -> str:
        return (
            f"<PriceAlertRecord(product_id={self.product_id}, source_id={self.source_id}, "
            f"change_percent={self.change_percent}, severity={self.severity})>"
        )
