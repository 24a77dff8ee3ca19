"""SQLAlchemy models package."""
from perkcycle.models.user import User
from perkcycle.models.catalog import CardProduct, PerkDefinition
from perkcycle.models.enrollment import AutoRedemption, CardEnrollment
from perkcycle.models.redemption import RedemptionRecord
from perkcycle.models.notification import Notification

__all__ = [
    "User",
    "CardProduct",
    "PerkDefinition",
    "CardEnrollment",
    "AutoRedemption",
    "RedemptionRecord",
    "Notification",
]
