"""
Error log model

Append-only record of terminal failures against an order (quote, ship).
Full history is retained; the API shows the most recent few.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship

from shipbridge.core.database import Base


class ErrorLogEntry(Base):
    __tablename__ = "error_logs"
    __table_args__ = (
        Index("ix_error_logs_order_id", "order_id"),
        Index("ix_error_logs_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(50), nullable=False)  # "quote", "ship"
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="error_logs")

    def __repr__(self):
        return f"<ErrorLogEntry(id={self.id}, order={self.order_id}, action={self.action})>"
