"""Cards API endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from perkcycle.api.deps import get_current_user, get_db, get_tracker
from perkcycle.models.catalog import CardProduct, PerkDefinition
from perkcycle.models.enrollment import CardEnrollment
from perkcycle.models.user import User
from perkcycle.schemas.card import (
    AutoRedemptionResponse,
    AutoRedemptionRunResponse,
    AutoRedemptionUpdate,
    CardEnrollmentCreate,
    CardEnrollmentResponse,
    CardEnrollmentUpdate,
    CardProductResponse,
)
from perkcycle.services.auto_redemptions import (
    apply_auto_redemptions,
    get_auto_redemptions,
    set_auto_redemption,
)
from perkcycle.services.catalog_loader import get_card_products
from perkcycle.services.tracker import PerkTracker

router = APIRouter(prefix="/cards", tags=["cards"])


def _enrollment_response(enrollment: CardEnrollment) -> CardEnrollmentResponse:
    return CardEnrollmentResponse(
        id=enrollment.id,
        card_product_id=enrollment.card_product_id,
        card_slug=enrollment.card_product.slug,
        card_name=enrollment.card_product.name,
        card_issuer=enrollment.card_product.issuer,
        nickname=enrollment.nickname,
        anniversary=enrollment.anniversary,
        active=enrollment.active,
        added_at=enrollment.added_at,
    )


def _get_enrollment(db: Session, user: User, enrollment_id: str) -> CardEnrollment:
    enrollment = db.query(CardEnrollment).filter(
        CardEnrollment.id == enrollment_id,
        CardEnrollment.user_id == user.id,
        CardEnrollment.active == 1,
    ).first()

    if not enrollment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card not found in your portfolio",
        )
    return enrollment


@router.get("/available", response_model=list[CardProductResponse])
def get_available_cards(db: Session = Depends(get_db)):
    """Get all card products and their perks."""
    return get_card_products(db)


@router.get("/my", response_model=list[CardEnrollmentResponse])
def get_my_cards(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get current user's active cards."""
    enrollments = db.query(CardEnrollment).filter(
        CardEnrollment.user_id == current_user.id,
        CardEnrollment.active == 1,
    ).all()
    return [_enrollment_response(e) for e in enrollments]


@router.post("/my", response_model=CardEnrollmentResponse, status_code=status.HTTP_201_CREATED)
def add_card_to_portfolio(
    card_data: CardEnrollmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Add a card to user's portfolio, reactivating it if it was removed."""
    card_product = db.get(CardProduct, card_data.card_product_id)
    if not card_product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card product not found",
        )

    existing = db.query(CardEnrollment).filter(
        CardEnrollment.user_id == current_user.id,
        CardEnrollment.card_product_id == card_data.card_product_id,
    ).first()
    if existing and existing.active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Card already in portfolio",
        )

    if existing:
        # Removed cards come back with their redemption history intact
        enrollment = existing
        enrollment.active = 1
        enrollment.removed_at = None
        enrollment.nickname = card_data.nickname or enrollment.nickname
        enrollment.anniversary = card_data.anniversary or enrollment.anniversary
    else:
        enrollment = CardEnrollment(
            user_id=current_user.id,
            card_product_id=card_data.card_product_id,
            nickname=card_data.nickname,
            anniversary=card_data.anniversary,
        )
        db.add(enrollment)

    db.commit()
    db.refresh(enrollment)
    return _enrollment_response(enrollment)


@router.patch("/my/{enrollment_id}", response_model=CardEnrollmentResponse)
def update_card_enrollment(
    enrollment_id: str,
    card_data: CardEnrollmentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Update a card in user's portfolio."""
    enrollment = _get_enrollment(db, current_user, enrollment_id)

    if card_data.nickname is not None:
        enrollment.nickname = card_data.nickname
    if card_data.anniversary is not None:
        enrollment.anniversary = card_data.anniversary

    db.commit()
    db.refresh(enrollment)
    return _enrollment_response(enrollment)


@router.delete("/my/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_card_from_portfolio(
    enrollment_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Remove a card from user's portfolio. Its redemption history is kept."""
    enrollment = _get_enrollment(db, current_user, enrollment_id)
    enrollment.active = 0
    enrollment.removed_at = datetime.utcnow().isoformat()
    db.commit()


# Auto-redemption endpoints

@router.get("/my/auto-redemptions", response_model=list[AutoRedemptionResponse])
def list_auto_redemptions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get the auto-redemption settings on the user's active cards."""
    return get_auto_redemptions(db, current_user.id, enabled_only=False)


@router.post("/my/auto-redemptions/apply", response_model=AutoRedemptionRunResponse)
async def run_auto_redemptions(tracker: PerkTracker = Depends(get_tracker)):
    """Record this cycle's redemption for every auto-redeemed perk."""
    return AutoRedemptionRunResponse(**await apply_auto_redemptions(tracker))


@router.put("/my/{enrollment_id}/auto-redemptions/{perk_id}", response_model=AutoRedemptionResponse)
def update_auto_redemption(
    enrollment_id: str,
    perk_id: str,
    setting_data: AutoRedemptionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Turn auto-redemption on or off for one perk on a card."""
    enrollment = _get_enrollment(db, current_user, enrollment_id)

    perk = db.get(PerkDefinition, perk_id)
    if not perk or perk.card_product_id != enrollment.card_product_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Perk not found on this card",
        )

    return set_auto_redemption(db, current_user.id, enrollment.id, perk.id, setting_data.enabled)
