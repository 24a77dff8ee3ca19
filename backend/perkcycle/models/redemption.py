"""Redemption ledger model."""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from perkcycle.database import Base

STATUS_PARTIALLY_REDEEMED = "partially_redeemed"
STATUS_REDEEMED = "redeemed"


class RedemptionRecord(Base):
    """One redemption event. Active while cycle_reset_instant is in the future."""

    __tablename__ = "redemption_records"
    __table_args__ = (
        Index("ix_redemption_records_active", "user_id", "perk_definition_id", "cycle_reset_instant"),
        Index("ix_redemption_records_card", "card_enrollment_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    perk_definition_id = Column(String(36), ForeignKey("perk_definitions.id"), nullable=False)
    card_enrollment_id = Column(String(36), ForeignKey("card_enrollments.id"), nullable=False)

    # Cycle placement
    redemption_instant = Column(DateTime, nullable=False)
    cycle_reset_instant = Column(DateTime, nullable=False)  # Inclusive end of the cycle

    # Value tracking
    status = Column(String(20), nullable=False)  # partially_redeemed, redeemed
    value_redeemed = Column(Float, nullable=False)
    total_value = Column(Float, nullable=False)
    remaining_value = Column(Float, nullable=False)

    # Partial top-up chain
    parent_record_id = Column(String(36))

    is_auto_redemption = Column(Integer, default=0)  # SQLite boolean
    provider = Column(String(50))  # Which provider was opened for multi-choice perks

    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())

    # Relationships
    card_enrollment = relationship("CardEnrollment", back_populates="redemptions")
    perk_definition = relationship("PerkDefinition")
