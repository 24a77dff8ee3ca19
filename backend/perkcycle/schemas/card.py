"""Card catalog and enrollment schemas."""
import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

ANNIVERSARY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _validate_anniversary(value: str | None) -> str | None:
    if value is not None and not ANNIVERSARY_PATTERN.match(value):
        raise ValueError("anniversary must be formatted YYYY-MM-DD")
    return value


class PerkDefinitionResponse(BaseModel):
    """Perk as listed in the catalog."""

    id: str
    slug: str
    name: str
    value: float
    period_months: int
    reset_policy: str
    description: str | None = None

    class Config:
        from_attributes = True


class CardProductResponse(BaseModel):
    """Card product response (available cards)."""

    id: str
    slug: str
    name: str
    issuer: str
    annual_fee: int
    perks: list[PerkDefinitionResponse]

    class Config:
        from_attributes = True


class CardEnrollmentCreate(BaseModel):
    """Request to add a card to user's portfolio."""

    card_product_id: str
    nickname: str | None = None
    anniversary: str | None = Field(
        None,
        description="Card anniversary date (YYYY-MM-DD) for anniversary-reset perks"
    )

    _check_anniversary = field_validator("anniversary")(_validate_anniversary)


class CardEnrollmentUpdate(BaseModel):
    """Request to update a user's card."""

    nickname: str | None = None
    anniversary: str | None = None

    _check_anniversary = field_validator("anniversary")(_validate_anniversary)


class CardEnrollmentResponse(BaseModel):
    """User's card in their portfolio."""

    id: str
    card_product_id: str
    card_slug: str
    card_name: str
    card_issuer: str
    nickname: str | None
    anniversary: str | None
    active: bool
    added_at: str

    @field_validator("active", mode="before")
    @classmethod
    def int_to_bool(cls, v: Any) -> bool:
        if isinstance(v, int):
            return bool(v)
        return v


class AutoRedemptionUpdate(BaseModel):
    """Turn auto-redemption on or off for a perk on a card."""

    enabled: bool


class AutoRedemptionResponse(BaseModel):
    id: str
    card_enrollment_id: str
    perk_definition_id: str
    enabled: bool = Field(validation_alias="is_enabled")

    @field_validator("enabled", mode="before")
    @classmethod
    def int_to_bool(cls, v: Any) -> bool:
        if isinstance(v, int):
            return bool(v)
        return v

    class Config:
        from_attributes = True
        populate_by_name = True


class AutoRedemptionRunResponse(BaseModel):
    applied: int
    skipped: int
    failed: int
