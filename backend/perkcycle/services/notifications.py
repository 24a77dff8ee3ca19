"""Reminder preferences and the reminder outbox for the delivery sink."""
import json
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from perkcycle.models.notification import Notification
from perkcycle.models.user import User
from perkcycle.schemas.notification import ReminderPreferences
from perkcycle.services.reminders import ScheduledReminder

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_PERK_EXPIRING = "perk_expiring"
PREFERENCES_KEY = "reminders"


def get_preferences(user: User) -> ReminderPreferences:
    """Read reminder preferences from the user's settings JSON."""
    try:
        settings = json.loads(user.settings or "{}")
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed settings for user {user.id}")
        settings = {}
    return ReminderPreferences(**settings.get(PREFERENCES_KEY, {}))


def save_preferences(db: Session, user: User, preferences: ReminderPreferences) -> ReminderPreferences:
    """Persist reminder preferences, keeping unrelated settings intact."""
    try:
        settings = json.loads(user.settings or "{}")
    except json.JSONDecodeError:
        settings = {}
    settings[PREFERENCES_KEY] = preferences.model_dump(mode="json", exclude_none=True)
    user.settings = json.dumps(settings)
    db.commit()
    db.refresh(user)
    return preferences


def sync_reminder_outbox(
    db: Session,
    user_id: str,
    reminders: list[ScheduledReminder],
) -> dict:
    """Replace the user's undelivered expiry reminders with ``reminders``.

    The outbox is rebuilt rather than patched so it never drifts from the
    ledger. Returns counts of queued and replaced rows.
    """
    pending = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.type == NOTIFICATION_TYPE_PERK_EXPIRING,
        Notification.delivered == 0,
    ).all()
    for notification in pending:
        db.delete(notification)

    for reminder in reminders:
        db.add(Notification(
            user_id=user_id,
            type=NOTIFICATION_TYPE_PERK_EXPIRING,
            period_months=reminder.period_months,
            title=reminder.title,
            message=reminder.body,
            scheduled_for=reminder.fire_at.isoformat(),
            expires_at=reminder.cycle_end.isoformat(),
        ))
    db.commit()

    logger.info(f"Queued {len(reminders)} reminders for user {user_id} (replaced {len(pending)})")
    return {"queued": len(reminders), "replaced": len(pending)}


def due_notifications(db: Session, now: datetime | None = None) -> list[Notification]:
    """Undelivered reminders whose fire time has arrived, for the delivery sink."""
    now = now or datetime.now()
    return db.query(Notification).filter(
        Notification.delivered == 0,
        Notification.scheduled_for <= now.isoformat(),
        Notification.expires_at > now.isoformat(),
    ).order_by(Notification.scheduled_for).all()


def mark_delivered(db: Session, notification: Notification) -> Notification:
    notification.delivered = 1
    notification.delivered_at = datetime.utcnow().isoformat()
    db.commit()
    db.refresh(notification)
    return notification
