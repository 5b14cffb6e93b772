import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint, get_permission_checker
from ..db import get_db
from ..models.models import Employee, GroomWorksheet, GroomWorksheetEntry
from ..schemas.grooming import WorksheetCreate
from ..services import worksheets
from ..services.permissions import PermissionChecker
from .tasks import _iso, _person, paginated


router = APIRouter(prefix="/api/grooming", tags=["grooming"])


def serialize_entry(entry: GroomWorksheetEntry) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "horseId": str(entry.horse_id),
        "horse": {"id": str(entry.horse.id), "name": entry.horse.name} if entry.horse else None,
        "amHours": entry.am_hours,
        "pmHours": entry.pm_hours,
        "wholeDayHours": entry.whole_day_hours,
        "woodchipsUsed": entry.woodchips_used,
        "bichaliUsed": entry.bichali_used,
        "booSaUsed": entry.boo_sa_used,
        "remarks": entry.remarks,
    }


def serialize_worksheet(worksheet: GroomWorksheet) -> Dict[str, Any]:
    return {
        "id": str(worksheet.id),
        "groomId": str(worksheet.groom_id),
        "groom": _person(worksheet.groom),
        "date": worksheet.work_date.isoformat(),
        "totalAM": worksheet.total_am_hours,
        "totalPM": worksheet.total_pm_hours,
        "wholeDayHours": worksheet.whole_day_hours,
        "woodchipsUsed": worksheet.woodchips_used,
        "bichaliUsed": worksheet.bichali_used,
        "booSaUsed": worksheet.boo_sa_used,
        "remarks": worksheet.remarks,
        "createdAt": _iso(worksheet.created_at),
        "entries": [serialize_entry(e) for e in worksheet.entries],
    }


@router.post("/worksheets", status_code=201)
def create_worksheet(
    body: WorksheetCreate,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    entries = None if body.entries is None else [e.model_dump() for e in body.entries]
    worksheet = worksheets.create_worksheet(
        db,
        me,
        groom_id=body.groom_id,
        work_date=body.work_date,
        entries=entries,
        remarks=body.remarks,
        checker=checker,
    )
    return serialize_worksheet(worksheet)


@router.get("/worksheets")
def list_worksheets(
    groom_id: Optional[uuid.UUID] = Query(default=None, alias="groomId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    rows, total = worksheets.list_worksheets(
        db, me, groom_id=groom_id, start_date=start_date, end_date=end_date, skip=skip, take=take, checker=checker
    )
    return paginated(rows, total, skip, take, serialize_worksheet)


@router.get("/worksheets/{worksheet_id}")
def get_worksheet(
    worksheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    return serialize_worksheet(worksheets.get_worksheet(db, me, worksheet_id, checker))
