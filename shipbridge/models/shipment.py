"""
Shipment model

The booked courier job for an order. order_id is unique: an order has at
most one shipment and it is never replaced. The only later mutation is
attaching the label document once it has been downloaded.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    Numeric, JSON, LargeBinary, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from shipbridge.core.database import Base
from shipbridge.models.order import new_id


def label_file_name(consignment_number: str) -> str:
    return f"label-{consignment_number}.pdf"


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_shipments_order_id"),  # one shipment per order
        Index("ix_shipments_tracking_number", "tracking_number"),
        Index("ix_shipments_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(
        String(36),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # Provider
    provider_id = Column(Integer, nullable=False)
    provider_name = Column(String(100), nullable=False)

    # Tracking
    tracking_number = Column(String(100), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    consignment_number = Column(String(100), nullable=True)

    # Price copied from the selected quotation
    final_price = Column(Numeric(12, 2), nullable=False)

    # Label document
    label_url = Column(String(500), nullable=True)
    label_data = Column(LargeBinary, nullable=True)
    label_file_name = Column(String(255), nullable=True)
    label_downloaded = Column(Boolean, nullable=False, default=False)

    provider_response = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    order = relationship("Order", back_populates="shipment")

    def attach_label(self, content: bytes) -> None:
        """Store downloaded label bytes; consignment number is required."""
        self.label_data = content
        self.label_file_name = label_file_name(self.consignment_number)
        self.label_downloaded = True

    def __repr__(self):
        return f"<Shipment(id={self.id}, order={self.order_id}, consignment={self.consignment_number})>"
