"""Card enrollment models."""
import uuid
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from perkcycle.database import Base


class CardEnrollment(Base):
    """A user's card. Removal is a soft delete so historical savings survive."""

    __tablename__ = "card_enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "card_product_id", name="uq_card_enrollment"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    card_product_id = Column(String(36), ForeignKey("card_products.id"), nullable=False)
    nickname = Column(String(100))
    anniversary = Column(String(10))  # YYYY-MM-DD, anchors anniversary-reset perks
    active = Column(Integer, default=1)  # SQLite boolean
    added_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    removed_at = Column(String(26))

    # Relationships
    user = relationship("User", back_populates="card_enrollments")
    card_product = relationship("CardProduct", back_populates="enrollments")
    redemptions = relationship("RedemptionRecord", back_populates="card_enrollment")
    auto_redemptions = relationship("AutoRedemption", back_populates="card_enrollment", cascade="all, delete-orphan")


class AutoRedemption(Base):
    """Perk the user has flagged as redeemed automatically every cycle."""

    __tablename__ = "auto_redemptions"
    __table_args__ = (
        UniqueConstraint("card_enrollment_id", "perk_definition_id", name="uq_auto_redemption"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    card_enrollment_id = Column(String(36), ForeignKey("card_enrollments.id", ondelete="CASCADE"), nullable=False)
    perk_definition_id = Column(String(36), ForeignKey("perk_definitions.id", ondelete="CASCADE"), nullable=False)
    is_enabled = Column(Integer, default=1)  # SQLite boolean
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    card_enrollment = relationship("CardEnrollment", back_populates="auto_redemptions")
    perk_definition = relationship("PerkDefinition")
