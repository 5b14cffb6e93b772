import uuid
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint
from ..db import get_db
from ..errors import Conflict, NotFound
from ..models.models import Employee, Horse
from ..schemas.employees import HorseCreate
from ..services.audit import create_audit_log
from .tasks import paginated


router = APIRouter(prefix="/api/horses", tags=["horses"])
log = structlog.get_logger(__name__)


def serialize_horse(horse: Horse) -> Dict[str, Any]:
    return {
        "id": str(horse.id),
        "name": horse.name,
        "gender": horse.gender,
        "dateOfBirth": horse.date_of_birth.isoformat() if horse.date_of_birth else None,
        "breed": horse.breed,
        "color": horse.color,
        "stableNumber": horse.stable_number,
        "supervisorId": str(horse.supervisor_id) if horse.supervisor_id else None,
        "status": horse.status,
        "createdAt": horse.created_at.isoformat() if horse.created_at else None,
    }


@router.get("")
def list_horses(
    status: Optional[str] = None,
    q: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(authorize_endpoint),
):
    query = db.query(Horse)
    if status:
        query = query.filter(Horse.status == status)
    if q:
        query = query.filter(Horse.name.ilike(f"%{q}%"))
    total = query.count()
    rows = query.order_by(Horse.name.asc()).offset(skip).limit(take).all()
    return paginated(rows, total, skip, take, serialize_horse)


@router.post("", status_code=201)
def create_horse(body: HorseCreate, db: Session = Depends(get_db), me: Employee = Depends(authorize_endpoint)):
    if body.stable_number and db.query(Horse.id).filter(Horse.stable_number == body.stable_number).first():
        raise Conflict(f"Stable number {body.stable_number} is already taken")
    if body.supervisor_id and db.get(Employee, body.supervisor_id) is None:
        raise NotFound("Supervisor not found")
    horse = Horse(
        name=body.name.strip(),
        gender=body.gender,
        date_of_birth=body.date_of_birth,
        breed=body.breed,
        color=body.color,
        stable_number=body.stable_number,
        supervisor_id=body.supervisor_id,
        status=body.status,
    )
    db.add(horse)
    db.flush()
    create_audit_log(
        db,
        entity_type="horse",
        entity_id=horse.id,
        action="CREATE",
        actor_id=me.id,
        actor_role=me.designation,
        source="api",
        context={"name": horse.name, "stable_number": horse.stable_number},
    )
    db.commit()
    db.refresh(horse)
    log.info("horse_created", horse_id=str(horse.id))
    return serialize_horse(horse)


@router.get("/{horse_id}")
def get_horse(horse_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(authorize_endpoint)):
    horse = db.get(Horse, horse_id)
    if horse is None:
        raise NotFound("Horse not found")
    return serialize_horse(horse)
