import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint, get_permission_checker
from ..db import get_db
from ..models.models import Attendance, Employee
from ..schemas.attendance import AttendanceCreate
from ..services import attendance as attendance_service
from ..services.permissions import PermissionChecker
from .tasks import _iso, _person, paginated


router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def serialize_attendance(record: Attendance) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "employeeId": str(record.employee_id),
        "employee": _person(record.employee),
        "date": record.work_date.isoformat(),
        "status": record.status,
        "remarks": record.remarks,
        "markedById": str(record.marked_by_id) if record.marked_by_id else None,
        "markedAt": _iso(record.marked_at),
    }


@router.get("")
def list_attendance(
    employee_id: Optional[uuid.UUID] = Query(default=None, alias="employeeId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    status: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(authorize_endpoint),
):
    rows, total = attendance_service.list_attendance(
        db, employee_id=employee_id, start_date=start_date, end_date=end_date, status=status, skip=skip, take=take
    )
    return paginated(rows, total, skip, take, serialize_attendance)


@router.post("", status_code=201)
def mark_attendance(
    body: AttendanceCreate,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    record = attendance_service.mark_attendance(
        db,
        me,
        employee_id=body.employee_id,
        work_date=body.work_date,
        status=body.status,
        remarks=body.remarks,
        checker=checker,
    )
    return serialize_attendance(record)


@router.get("/me")
def my_attendance(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    rows, total = attendance_service.my_attendance(
        db, me, start_date=start_date, end_date=end_date, skip=skip, take=take
    )
    return paginated(rows, total, skip, take, serialize_attendance)
