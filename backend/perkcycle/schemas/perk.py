"""Perk status and redemption schemas."""
from datetime import datetime

from pydantic import BaseModel, Field

STATUS_AVAILABLE = "available"


class PerkStatusView(BaseModel):
    """Derived status of one perk in its current cycle."""

    perk_definition_id: str
    card_enrollment_id: str | None = None
    name: str | None = None
    value: float = 0.0
    period_months: int = 1
    status: str = STATUS_AVAILABLE  # available, partially_redeemed, redeemed
    remaining_value: float = 0.0
    streak_count: int = 0
    cold_streak_count: int = 0
    streak_visible: bool = False
    cycle_end: datetime | None = None


class AggregateTotals(BaseModel):
    """Savings totals for one group of perks."""

    redeemed_value: float = 0.0
    possible_value: float = 0.0
    redeemed_count: int = 0
    partially_redeemed_count: int = 0
    total_count: int = 0


class RedemptionValues(BaseModel):
    """Current-cycle value split by status, plus value missed last cycle."""

    redeemed_value: float = 0.0
    partial_value: float = 0.0
    total_redeemed_value: float = 0.0
    available_value: float = 0.0
    missed_value: float = 0.0
    potential_value: float = 0.0


class CardRoi(BaseModel):
    """Value redeemed through one card against its annual fee."""

    card_enrollment_id: str
    card_name: str
    annual_fee: float = 0.0
    total_redeemed: float = 0.0
    roi_percentage: float | None = None
    fee_covered: bool = False


class RedeemRequest(BaseModel):
    """Request to redeem all or part of a perk."""

    amount: float | None = Field(None, gt=0)
    card_enrollment_id: str | None = None
    parent_record_id: str | None = None
    provider: str | None = None


class MarkAvailableRequest(BaseModel):
    """Request to clear a perk's redemption for the current cycle."""

    card_enrollment_id: str | None = None


class MutationResponse(BaseModel):
    """Result of a redemption or undo."""

    view: PerkStatusView
    undo_token: str | None = None
    undo_expires_at: datetime | None = None


class RedemptionRecordResponse(BaseModel):
    """Ledger record."""

    id: str
    perk_definition_id: str
    card_enrollment_id: str
    redemption_instant: datetime
    cycle_reset_instant: datetime
    status: str
    value_redeemed: float
    total_value: float
    remaining_value: float
    parent_record_id: str | None = None
    is_auto_redemption: bool = False
    provider: str | None = None

    class Config:
        from_attributes = True


class SavingsResponse(BaseModel):
    """Lifetime value captured per card enrollment."""

    per_card: dict[str, float]
    total: float


class InsightsResponse(BaseModel):
    year: int
    values: RedemptionValues
    card_roi: list[CardRoi]
