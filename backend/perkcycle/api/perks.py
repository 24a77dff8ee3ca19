"""Perks API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status

from perkcycle.api.deps import get_tracker
from perkcycle.schemas.perk import (
    AggregateTotals,
    InsightsResponse,
    MarkAvailableRequest,
    MutationResponse,
    PerkStatusView,
    RedeemRequest,
    RedemptionRecordResponse,
    SavingsResponse,
)
from perkcycle.services import errors
from perkcycle.services.coordinator import MutationOutcome
from perkcycle.services.status import GROUP_BY_PERIOD
from perkcycle.services.tracker import PerkTracker

router = APIRouter(prefix="/perks", tags=["perks"])

ERROR_STATUS = {
    errors.AlreadyRedeemedError: status.HTTP_409_CONFLICT,
    errors.ParentAlreadyRedeemedError: status.HTTP_409_CONFLICT,
    errors.DuplicateActiveRecordError: status.HTTP_409_CONFLICT,
    errors.InsufficientRemainingValueError: 422,
    errors.InvalidAmountError: 422,
    errors.PerkNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ParentRecordNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.CardLinkageNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.UndoExpiredError: status.HTTP_410_GONE,
    errors.StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: errors.RedemptionError) -> HTTPException:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            status_code = ERROR_STATUS[error_type]
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": str(exc)},
    )


def _mutation_response(outcome: MutationOutcome) -> MutationResponse:
    if not outcome.ok:
        raise _http_error(outcome.error)
    return MutationResponse(
        view=outcome.view,
        undo_token=outcome.undo.token if outcome.undo else None,
        undo_expires_at=outcome.undo.expires_at if outcome.undo else None,
    )


@router.get("/status", response_model=list[PerkStatusView])
def get_perk_statuses(tracker: PerkTracker = Depends(get_tracker)):
    """Current status of every perk on the user's active cards."""
    return tracker.list_statuses()


@router.get("/aggregates", response_model=dict[str, AggregateTotals])
def get_aggregates(
    group_by: str = GROUP_BY_PERIOD,
    tracker: PerkTracker = Depends(get_tracker),
):
    """Redeemed vs possible value per period length or per card."""
    try:
        totals = tracker.get_aggregates(group_by)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {str(key): value for key, value in totals.items()}


@router.get("/savings", response_model=SavingsResponse)
def get_savings(tracker: PerkTracker = Depends(get_tracker)):
    """Lifetime value captured per card enrollment."""
    per_card = tracker.get_savings()
    return SavingsResponse(per_card=per_card, total=sum(per_card.values()))


@router.get("/activity-streak")
def get_activity_streak(tracker: PerkTracker = Depends(get_tracker)):
    """Consecutive months with at least one redemption."""
    return {"months": tracker.get_activity_streak()}


@router.get("/insights", response_model=InsightsResponse)
def get_insights(year: int | None = None, tracker: PerkTracker = Depends(get_tracker)):
    """Missed-value breakdown for the current cycles and card ROI for ``year``."""
    year = year or tracker.clock().year
    return InsightsResponse(
        year=year,
        values=tracker.get_redemption_values(),
        card_roi=tracker.get_card_roi(year),
    )


@router.post("/undo/{token}", response_model=MutationResponse)
async def undo_mutation(token: str, tracker: PerkTracker = Depends(get_tracker)):
    """Reverse the most recent redemption change while its undo window is open."""
    return _mutation_response(await tracker.undo(token))


@router.get("/{perk_id}/status", response_model=PerkStatusView)
def get_perk_status(
    perk_id: str,
    card_enrollment_id: str | None = None,
    tracker: PerkTracker = Depends(get_tracker),
):
    try:
        return tracker.get_status(perk_id, card_enrollment_id)
    except errors.RedemptionError as e:
        raise _http_error(e)


@router.get("/{perk_id}/history", response_model=list[RedemptionRecordResponse])
def get_perk_history(perk_id: str, tracker: PerkTracker = Depends(get_tracker)):
    """Every ledger record for the perk, newest first."""
    try:
        return tracker.history(perk_id)
    except errors.RedemptionError as e:
        raise _http_error(e)


@router.post("/{perk_id}/redeem", response_model=MutationResponse)
async def redeem_perk(
    perk_id: str,
    request: RedeemRequest,
    tracker: PerkTracker = Depends(get_tracker),
):
    """Redeem a perk in full, or part of it when ``amount`` is given."""
    outcome = await tracker.redeem(
        perk_id,
        amount=request.amount,
        card_enrollment_id=request.card_enrollment_id,
        parent_record_id=request.parent_record_id,
        provider=request.provider,
    )
    return _mutation_response(outcome)


@router.post("/{perk_id}/mark-available", response_model=MutationResponse)
async def mark_perk_available(
    perk_id: str,
    request: MarkAvailableRequest | None = None,
    tracker: PerkTracker = Depends(get_tracker),
):
    """Clear this cycle's redemption so the perk shows as available again."""
    card_enrollment_id = request.card_enrollment_id if request else None
    return _mutation_response(await tracker.mark_available(perk_id, card_enrollment_id))
