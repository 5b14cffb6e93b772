from datetime import datetime, timezone

from stablehub.models.models import Notification, NotificationPreference
from stablehub.services import notifications
from stablehub.services.notifications import enabled_channels, is_quiet_hours, list_notifications


def _utc(hour, minute=0):
    return datetime(2026, 1, 1, hour, minute, tzinfo=timezone.utc)


class TestQuietHours:
    def test_window_spanning_midnight(self):
        quiet = {"start": "22:00", "end": "06:00", "timezone": "UTC"}
        assert is_quiet_hours(quiet, now=_utc(23))
        assert is_quiet_hours(quiet, now=_utc(5, 30))
        assert not is_quiet_hours(quiet, now=_utc(12))

    def test_local_timezone(self):
        # 17:00 UTC is 22:30 in Kolkata
        quiet = {"start": "22:00", "end": "23:00", "timezone": "Asia/Kolkata"}
        assert is_quiet_hours(quiet, now=_utc(17))
        assert not is_quiet_hours(quiet, now=_utc(22))

    def test_missing_or_invalid(self):
        assert not is_quiet_hours(None)
        assert not is_quiet_hours({"start": "22:00"})
        assert not is_quiet_hours({"start": "22:00", "end": "06:00", "timezone": "Mars/Olympus"}, now=_utc(23))


class TestChannels:
    def test_defaults_follow_settings(self, db, stable):
        # Email is switched off for the test run
        assert enabled_channels(db, stable["groom"].id) == ["push"]

    def test_employee_opt_out(self, db, stable):
        db.add(NotificationPreference(employee_id=stable["groom"].id, push=False, email=True))
        db.commit()
        assert enabled_channels(db, stable["groom"].id) == []

    def test_quiet_hours_silence_channels(self, db, stable):
        quiet = {"start": "00:00", "end": "23:59:59", "timezone": "UTC"}
        db.add(NotificationPreference(employee_id=stable["groom"].id, quiet_hours=quiet))
        db.commit()
        assert enabled_channels(db, stable["groom"].id) == []


def test_notify_persists_even_when_silenced(db, stable):
    db.add(NotificationPreference(employee_id=stable["groom"].id, push=False, email=False))
    db.commit()
    notifications.notify(db, stable["groom"].id, notifications.TASK_ASSIGNMENT, title="t", message="m")
    db.commit()
    row = db.query(Notification).filter(Notification.recipient_id == stable["groom"].id).one()
    assert row.urgency == "Normal"
    assert row.is_read is False


def test_list_unread_only(db, stable):
    for title in ("one", "two"):
        notifications.notify(db, stable["groom"].id, notifications.ESCALATION, title=title, message="m")
    db.commit()
    first = db.query(Notification).filter(Notification.title == "one").one()
    first.is_read = True
    db.commit()

    rows, total = list_notifications(db, stable["groom"].id, unread_only=True)
    assert total == 1
    assert rows[0].title == "two"
    assert list_notifications(db, stable["manager"].id) == ([], 0)
