import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint
from ..db import get_db
from ..models.models import AuditLog
from ..services.audit import get_audit_logs
from .tasks import paginated


router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


def serialize_audit_log(entry: AuditLog):
    return {
        "id": str(entry.id),
        "entityType": entry.entity_type,
        "entityId": str(entry.entity_id),
        "action": entry.action,
        "actorId": str(entry.actor_id) if entry.actor_id else None,
        "actorRole": entry.actor_role,
        "source": entry.source,
        "changes": entry.changes_json,
        "context": entry.context,
        "timestampUtc": entry.timestamp_utc.isoformat() if entry.timestamp_utc else None,
        "integrityHash": entry.integrity_hash,
    }


@router.get("")
def list_audit_logs(
    entity_type: Optional[str] = Query(default=None, alias="entityType"),
    entity_id: Optional[uuid.UUID] = Query(default=None, alias="entityId"),
    actor_id: Optional[uuid.UUID] = Query(default=None, alias="actorId"),
    action: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(authorize_endpoint),
):
    rows, total = get_audit_logs(
        db, entity_type=entity_type, entity_id=entity_id, actor_id=actor_id, action=action, limit=take, offset=skip
    )
    return paginated(rows, total, skip, take, serialize_audit_log)
