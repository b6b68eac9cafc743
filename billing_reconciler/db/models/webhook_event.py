"""WebhookEventRecord model for idempotency tracking."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from billing_reconciler.db.base import Base


class WebhookEventRecord(Base):
    """One row per applied event identity. Never updated.

    The row is written in the same transaction as the domain mutation it
    guards, so a rolled-back delivery leaves no trace and can be retried.
    """

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False, default="creem", index=True)
    payload = Column(Text, nullable=True)  # raw signed body, kept for debugging
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
