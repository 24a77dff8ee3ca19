"""Notification API endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from perkcycle.api.deps import get_current_user, get_db, get_tracker
from perkcycle.models.user import User
from perkcycle.schemas.notification import (
    OutboxSyncResponse,
    ReminderPreferences,
    ScheduledReminderResponse,
)
from perkcycle.services.notifications import get_preferences, save_preferences, sync_reminder_outbox
from perkcycle.services.tracker import PerkTracker

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/reminders", response_model=list[ScheduledReminderResponse])
def get_reminders(
    current_user: User = Depends(get_current_user),
    tracker: PerkTracker = Depends(get_tracker),
):
    """Preview the expiry reminders that would be scheduled right now."""
    return tracker.get_reminders(preferences=get_preferences(current_user))


@router.post("/reminders/sync", response_model=OutboxSyncResponse)
def sync_reminders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    tracker: PerkTracker = Depends(get_tracker),
):
    """Rebuild the user's pending reminders for the delivery sink."""
    reminders = tracker.get_reminders(preferences=get_preferences(current_user))
    return OutboxSyncResponse(**sync_reminder_outbox(db, current_user.id, reminders))


@router.get("/preferences", response_model=ReminderPreferences)
def get_reminder_preferences(current_user: User = Depends(get_current_user)):
    return get_preferences(current_user)


@router.put("/preferences", response_model=ReminderPreferences)
def update_reminder_preferences(
    preferences: ReminderPreferences,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Save reminder preferences."""
    return save_preferences(db, current_user, preferences)
