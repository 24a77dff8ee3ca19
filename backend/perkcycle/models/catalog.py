"""Card and perk catalog models (seeded from YAML files)."""
import uuid
from datetime import datetime

from sqlalchemy import Column, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from perkcycle.database import Base

RESET_CALENDAR = "calendar"
RESET_ANNIVERSARY = "anniversary"
RESET_POLICIES = (RESET_CALENDAR, RESET_ANNIVERSARY)


class CardProduct(Base):
    """A card product that perks are attached to."""

    __tablename__ = "card_products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    issuer = Column(String(50), nullable=False)
    annual_fee = Column(Integer, default=0)
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    perks = relationship("PerkDefinition", back_populates="card_product", order_by="PerkDefinition.slug")
    enrollments = relationship("CardEnrollment", back_populates="card_product")


class PerkDefinition(Base):
    """A recurring, capped-value perk. Read-only outside the catalog loader."""

    __tablename__ = "perk_definitions"
    __table_args__ = (
        UniqueConstraint("card_product_id", "slug", name="uq_perk_definition"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_product_id = Column(String(36), ForeignKey("card_products.id", ondelete="CASCADE"), nullable=False, index=True)
    slug = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    value = Column(Float, nullable=False)
    period_months = Column(Integer, nullable=False, default=1)  # 1, 3, 6, 12, ...
    reset_policy = Column(String(20), nullable=False, default=RESET_CALENDAR)  # calendar, anniversary
    description = Column(Text)

    # Relationships
    card_product = relationship("CardProduct", back_populates="perks")
