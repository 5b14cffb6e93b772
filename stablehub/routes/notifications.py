import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint
from ..db import get_db
from ..errors import Forbidden, NotFound
from ..models.models import Employee, Notification, utcnow
from ..services.notifications import list_notifications
from .tasks import paginated


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": str(n.id),
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "relatedEntityId": str(n.related_entity_id) if n.related_entity_id else None,
        "relatedEntityType": n.related_entity_type,
        "urgency": n.urgency,
        "isRead": bool(n.is_read),
        "readAt": n.read_at.isoformat() if n.read_at else None,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("")
def my_notifications(
    unread: bool = False,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    rows, total = list_notifications(db, me.id, unread_only=unread, skip=skip, take=take)
    return paginated(rows, total, skip, take, serialize_notification)


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    if notification.recipient_id != me.id:
        raise Forbidden("You can only update your own notifications")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return serialize_notification(notification)
