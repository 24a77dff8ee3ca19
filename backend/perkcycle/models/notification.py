"""Notification model for perk expiry reminders."""
import uuid
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from perkcycle.database import Base


class Notification(Base):
    """Scheduled reminder waiting for the external delivery sink."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_pending", "user_id", "delivered"),
        Index("ix_notifications_scheduled", "user_id", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Notification type: perk_expiring
    type = Column(String(50), nullable=False)
    period_months = Column(Integer)

    # Content
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Scheduling
    scheduled_for = Column(String(26), nullable=False)  # When the sink should fire it
    expires_at = Column(String(26))  # Cycle end; irrelevant afterwards

    # Status
    delivered = Column(Integer, default=0)  # SQLite boolean
    delivered_at = Column(String(26))

    # Timestamps
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
