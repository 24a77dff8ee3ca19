from datetime import datetime

from factories import make_user
from perkcycle.models.notification import Notification
from perkcycle.schemas.notification import ReminderPreferences
from perkcycle.services.notifications import (
    due_notifications,
    get_preferences,
    mark_delivered,
    save_preferences,
    sync_reminder_outbox,
)
from perkcycle.services.reminders import ScheduledReminder

JUNE_END = datetime(2026, 6, 30, 23, 59, 59)


def _reminder(fire_at, days_before):
    return ScheduledReminder(
        title="Dining Credit expires soon",
        body="Use it",
        fire_at=fire_at,
        period_months=1,
        days_before=days_before,
        cycle_end=JUNE_END,
    )


def test_preferences_keep_other_settings(db):
    user = make_user(db)
    user.settings = '{"theme": "dark"}'
    db.commit()

    save_preferences(db, user, ReminderPreferences(quarterly_enabled=False))

    assert '"theme": "dark"' in user.settings
    assert get_preferences(user).quarterly_enabled is False
    assert get_preferences(user).monthly_enabled is True


def test_malformed_settings_fall_back_to_defaults(db):
    user = make_user(db)
    user.settings = "{not json"

    assert get_preferences(user) == ReminderPreferences()


def test_outbox_sync_and_delivery(db):
    user = make_user(db)
    reminders = [_reminder(datetime(2026, 6, 24, 10), 7), _reminder(datetime(2026, 6, 30, 10), 1)]

    assert sync_reminder_outbox(db, user.id, reminders) == {"queued": 2, "replaced": 0}

    due = due_notifications(db, datetime(2026, 6, 25))
    assert len(due) == 1
    mark_delivered(db, due[0])

    # Delivered rows survive a resync
    assert sync_reminder_outbox(db, user.id, reminders[1:]) == {"queued": 1, "replaced": 1}
    assert db.query(Notification).count() == 2
    assert due_notifications(db, datetime(2026, 7, 1)) == []
