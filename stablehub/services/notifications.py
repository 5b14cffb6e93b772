"""
Notification stub.
Persists in-app notifications and logs channel dispatch; no real push or
email delivery happens here. Respects employee preferences and quiet hours.
"""
from datetime import datetime, time
from typing import Optional, Dict, List
from sqlalchemy.orm import Session
import pytz
import structlog

from ..models.models import Notification, NotificationPreference
from ..config import settings


log = structlog.get_logger(__name__)

# Notification types
TASK_ASSIGNMENT = "Task Assignment"
MISSED_TASK = "Missed Task"
APPROVAL_REQUEST = "Approval Request"
APPROVAL_DECISION = "Approval Decision"
ESCALATION = "Escalation"
TASK_CANCELLED = "Task Cancelled"

CHANNELS = ("push", "email")


def is_quiet_hours(quiet_hours: Optional[Dict], timezone_str: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """
    Check if the given moment falls within quiet hours.

    Args:
        quiet_hours: {start: "HH:MM", end: "HH:MM", timezone: "..."}
        timezone_str: Fallback timezone (facility default)
        now: Moment to check, defaults to the current time

    Returns:
        True if within quiet hours
    """
    if not quiet_hours or not quiet_hours.get("start") or not quiet_hours.get("end"):
        return False

    try:
        tz = pytz.timezone(quiet_hours.get("timezone") or timezone_str or settings.tz_default)
        start_time = time.fromisoformat(quiet_hours["start"])
        end_time = time.fromisoformat(quiet_hours["end"])
    except (pytz.UnknownTimeZoneError, ValueError):
        log.warning("quiet_hours_invalid", quiet_hours=quiet_hours)
        return False

    local_now = now.astimezone(tz) if now else datetime.now(tz)
    current_time = local_now.time()

    # Handle quiet hours that span midnight
    if start_time <= end_time:
        return start_time <= current_time <= end_time
    return current_time >= start_time or current_time <= end_time


def enabled_channels(db: Session, recipient_id) -> List[str]:
    """Channels that should receive a dispatch for this recipient right now."""
    pref = db.query(NotificationPreference).filter(
        NotificationPreference.employee_id == recipient_id
    ).first()

    channels = []
    for channel in CHANNELS:
        if channel == "push" and not settings.enable_push:
            continue
        if channel == "email" and not settings.enable_email:
            continue
        if pref is not None and not getattr(pref, channel):
            continue
        channels.append(channel)

    if pref is not None and is_quiet_hours(pref.quiet_hours):
        return []
    return channels


def notify(
    db: Session,
    recipient_id,
    type: str,
    title: str,
    message: str,
    related_entity_id=None,
    related_entity_type: Optional[str] = None,
    urgency: str = "Normal",
) -> Notification:
    """
    Record a notification for an employee and announce it on the enabled channels.

    The row joins the caller's transaction; the caller commits.
    """
    notification = Notification(
        recipient_id=recipient_id,
        type=type,
        title=title,
        message=message,
        related_entity_id=related_entity_id,
        related_entity_type=related_entity_type,
        urgency=urgency,
    )
    db.add(notification)

    for channel in enabled_channels(db, recipient_id):
        log.info(
            "notification_dispatched",
            channel=channel,
            recipient_id=str(recipient_id),
            type=type,
            title=title,
            related_entity_id=str(related_entity_id) if related_entity_id else None,
            urgency=urgency,
        )
    return notification


def list_notifications(db: Session, recipient_id, *, unread_only: bool = False, skip: int = 0, take: int = 10):
    query = db.query(Notification).filter(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    total = query.count()
    rows = query.order_by(Notification.created_at.desc()).offset(skip).limit(take).all()
    return rows, total
