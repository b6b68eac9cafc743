"""Payment model: one row per provider payment id."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from billing_reconciler.db.base import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(255), unique=True, nullable=False)

    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user = relationship("User", back_populates="payments")
    customer_id = Column(String(255), nullable=False)
    subscription_id = Column(String(255), nullable=True)  # None for one-time purchases

    product_id = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units (cents)
    currency = Column(String(10), nullable=False, default="usd")
    status = Column(String(50), nullable=False)
    payment_type = Column(String(50), nullable=False)  # "subscription" | "one_time"

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
