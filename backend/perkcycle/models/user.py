"""User model."""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from perkcycle.database import Base


class User(Base):
    """User account. Identity itself is managed by the outer auth layer."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(50), unique=True, nullable=False, index=True)
    settings = Column(Text, default="{}")  # JSON for reminder preferences
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    card_enrollments = relationship("CardEnrollment", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", backref="user", cascade="all, delete-orphan")
