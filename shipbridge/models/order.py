"""
Order model

One warehouse fulfillment request, mirrored locally from the warehouse
source. external_id is the source identifier: unique and never rewritten.
Status is changed only by the order lifecycle controller.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Boolean, DateTime, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from shipbridge.core.database import Base


class OrderStatus(str, enum.Enum):
    """Order fulfillment lifecycle status"""
    PENDING_DATA = "PENDING_DATA"  # Address or items incomplete
    READY_TO_QUOTE = "READY_TO_QUOTE"
    QUOTED = "QUOTED"  # Current quotation batch stored
    LABEL_CREATED = "LABEL_CREATED"  # Shipment booked (terminal)
    ERROR = "ERROR"  # Last shipment attempt failed


def new_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    external_id = Column(String(100), unique=True, nullable=False, index=True)

    # Order details
    order_number = Column(String(100), nullable=False, default="")
    customer_name = Column(String(255), nullable=False, default="Unknown")
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # Delivery address
    delivery_street = Column(String(255), nullable=True)
    delivery_street2 = Column(String(255), nullable=True)
    delivery_suburb = Column(String(100), nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_postcode = Column(String(20), nullable=True)
    delivery_country = Column(String(2), nullable=False, default="NZ")
    is_rural = Column(Boolean, nullable=False, default=False)

    # Line-item snapshot as fetched from the source
    items = Column(JSON, nullable=False, default=list)
    source_data = Column(JSON, nullable=True)

    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING_DATA)

    # Timestamps
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    quotations = relationship(
        "Quotation",
        back_populates="order",
        order_by="Quotation.total_price",
        cascade="all, delete-orphan",
    )
    shipment = relationship("Shipment", back_populates="order", uselist=False)
    error_logs = relationship("ErrorLogEntry", back_populates="order")

    @property
    def delivery_address(self) -> dict:
        return {
            "street": self.delivery_street,
            "street2": self.delivery_street2,
            "suburb": self.delivery_suburb,
            "city": self.delivery_city,
            "postcode": self.delivery_postcode,
            "country": self.delivery_country,
        }

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status})>"
