"""
Daily attendance marking.

Supervisors mark the staff they are responsible for, once per employee per
day. Mondays are the weekly off day and are always recorded as WOFF.
"""
import uuid
from datetime import date
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import Conflict, Forbidden, NotFound, ValidationError
from ..models.models import ATTENDANCE_STATUSES, Attendance, Employee, utcnow
from .audit import create_audit_log
from .permissions import PermissionChecker
from .roles import GROUND_OPERATIONS, STABLE_OPERATIONS


log = structlog.get_logger(__name__)

WEEKLY_OFF = "WOFF"
MONDAY = 0


def ensure_can_mark(marker: Employee, employee: Employee, checker: PermissionChecker) -> None:
    registry = checker.registry
    if checker.is_admin(marker.designation):
        if checker.is_admin(employee.designation):
            raise Forbidden("You cannot mark attendance for other administrators")
        return

    department = registry.get_department(employee.designation)
    if marker.designation == "Stable Manager":
        allowed = department == STABLE_OPERATIONS and employee.designation != "Stable Manager"
    elif marker.designation == "Ground Supervisor":
        allowed = department == GROUND_OPERATIONS and employee.designation != "Ground Supervisor"
    else:
        raise Forbidden("Only supervisors can mark attendance")
    if not allowed:
        raise Forbidden("You can only mark attendance for non-supervisor staff in your department")


def mark_attendance(
    db: Session,
    marker: Employee,
    *,
    employee_id: Optional[uuid.UUID],
    work_date: Optional[date],
    status: Optional[str],
    remarks: Optional[str] = None,
    checker: PermissionChecker,
) -> Attendance:
    if work_date is not None and work_date.weekday() == MONDAY:
        status = WEEKLY_OFF
    if not employee_id or not work_date or not status:
        raise ValidationError("Employee ID, date, and status are required")
    if status not in ATTENDANCE_STATUSES:
        raise ValidationError(f"Invalid attendance status: {status}")

    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFound("Employee not found")
    ensure_can_mark(marker, employee, checker)

    already_marked = (
        db.query(Attendance.id)
        .filter(Attendance.employee_id == employee.id, Attendance.work_date == work_date)
        .first()
    )
    if already_marked is not None:
        raise Conflict(f"Attendance for {work_date.isoformat()} is already marked")

    now = utcnow()
    record = Attendance(
        employee_id=employee.id,
        work_date=work_date,
        status=status,
        remarks=(remarks or "").strip() or None,
        marked_by_id=marker.id,
        marked_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(f"Attendance for {work_date.isoformat()} is already marked") from exc

    create_audit_log(
        db,
        entity_type="attendance",
        entity_id=record.id,
        action="CREATE",
        actor_id=marker.id,
        actor_role=marker.designation,
        source="api",
        context={"employee_id": str(employee.id), "date": work_date.isoformat(), "status": status},
    )
    db.commit()
    db.refresh(record)
    log.info(
        "attendance_marked",
        attendance_id=str(record.id),
        employee_id=str(employee.id),
        marked_by=str(marker.id),
        status=status,
    )
    return record


def list_attendance(
    db: Session,
    *,
    employee_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
    skip: int = 0,
    take: int = 50,
) -> Tuple[List[Attendance], int]:
    if status and status not in ATTENDANCE_STATUSES:
        raise ValidationError(f"Invalid attendance status: {status}")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("startDate must not be after endDate")
    query = db.query(Attendance)
    if employee_id:
        query = query.filter(Attendance.employee_id == employee_id)
    if start_date:
        query = query.filter(Attendance.work_date >= start_date)
    if end_date:
        query = query.filter(Attendance.work_date <= end_date)
    if status:
        query = query.filter(Attendance.status == status)
    total = query.count()
    rows = query.order_by(Attendance.work_date.desc(), Attendance.marked_at.desc()).offset(skip).limit(take).all()
    return rows, total


def my_attendance(
    db: Session,
    employee: Employee,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    take: int = 50,
) -> Tuple[List[Attendance], int]:
    return list_attendance(db, employee_id=employee.id, start_date=start_date, end_date=end_date, skip=skip, take=take)
