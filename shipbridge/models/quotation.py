"""
Quotation model

One provider's priced offer for one order. Quotations are written as a
batch: the whole previous batch for the order is deleted before the new
one is inserted, so only the latest batch is ever stored.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    Numeric, JSON, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from shipbridge.core.database import Base
from shipbridge.models.order import new_id


class Quotation(Base):
    __tablename__ = "quotations"
    __table_args__ = (
        Index("ix_quotations_order_id", "order_id"),
        Index("ix_quotations_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(String(36), nullable=False)

    # Provider
    provider_id = Column(Integer, nullable=False)
    provider_name = Column(String(100), nullable=False)
    service_type = Column(String(100), nullable=True)

    # Pricing as reported by the provider (total is not recomputed)
    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    rural_surcharge = Column(Numeric(12, 2), nullable=False, default=0)
    gst = Column(Numeric(12, 2), nullable=False, default=0)
    total_price = Column(Numeric(12, 2), nullable=False)
    estimated_days = Column(Integer, nullable=True)

    response_data = Column(JSON, nullable=True)

    # Validity
    is_selected = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="quotations")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the quotation can no longer be used to ship."""
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at

    @classmethod
    def create_expiry(cls, now: datetime, ttl_hours: int = 24) -> datetime:
        """Calculate expiry timestamp from the aggregation time."""
        return now + timedelta(hours=ttl_hours)

    def __repr__(self):
        return f"<Quotation(id={self.id}, provider={self.provider_name}, total={self.total_price})>"
