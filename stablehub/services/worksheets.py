"""
Groom worksheets: one sheet per groom per day, listing the hours spent on
each horse and the bedding used. The sheet and its entries are written in a
single transaction.
"""
import uuid
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..errors import Conflict, Forbidden, NotFound, ValidationError
from ..models.models import Employee, GroomWorksheet, GroomWorksheetEntry, Horse, utcnow
from .audit import create_audit_log
from .permissions import PermissionChecker


log = structlog.get_logger(__name__)

MEASURES = ("am_hours", "pm_hours", "whole_day_hours", "woodchips_used", "bichali_used", "boo_sa_used")


def sees_all_worksheets(actor: Employee, checker: PermissionChecker) -> bool:
    return checker.can_assign_tasks(actor.designation) or checker.has_permission(
        actor.designation, "review_groom_activity"
    )


def _measure(entry: Mapping[str, Any], field: str) -> float:
    value = entry.get(field) or 0
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    return float(value)


def create_worksheet(
    db: Session,
    actor: Employee,
    *,
    groom_id: Optional[uuid.UUID],
    work_date: Optional[date],
    entries: Optional[Iterable[Mapping[str, Any]]],
    remarks: Optional[str] = None,
    checker: PermissionChecker,
) -> GroomWorksheet:
    if not groom_id or not work_date or entries is None:
        raise ValidationError("Missing required fields: groomId, date, entries")
    entries = list(entries)
    if not entries:
        raise ValidationError("A worksheet needs at least one entry")
    if actor.id != groom_id and not checker.can_assign_tasks(actor.designation):
        raise Forbidden("You can only file your own worksheet")

    groom = db.get(Employee, groom_id)
    if groom is None:
        raise NotFound("Groom not found")

    horse_ids = {entry.get("horse_id") for entry in entries}
    if None in horse_ids:
        raise ValidationError("Every entry needs a horseId")
    found = {row.id for row in db.query(Horse.id).filter(Horse.id.in_(horse_ids)).all()}
    missing = horse_ids - found
    if missing:
        raise NotFound(f"Horse not found: {', '.join(sorted(str(h) for h in missing))}")

    if (
        db.query(GroomWorksheet.id)
        .filter(GroomWorksheet.groom_id == groom.id, GroomWorksheet.work_date == work_date)
        .first()
        is not None
    ):
        raise Conflict(f"A worksheet for {work_date.isoformat()} already exists")

    worksheet = GroomWorksheet(
        groom_id=groom.id,
        work_date=work_date,
        remarks=(remarks or "").strip() or None,
        created_by_id=actor.id,
        created_at=utcnow(),
    )
    totals = dict.fromkeys(MEASURES, 0.0)
    for position, entry in enumerate(entries):
        values = {field: _measure(entry, field) for field in MEASURES}
        for field, value in values.items():
            totals[field] += value
        worksheet.entries.append(
            GroomWorksheetEntry(horse_id=entry["horse_id"], position=position, remarks=entry.get("remarks"), **values)
        )
    worksheet.total_am_hours = totals["am_hours"]
    worksheet.total_pm_hours = totals["pm_hours"]
    worksheet.whole_day_hours = totals["whole_day_hours"]
    worksheet.woodchips_used = totals["woodchips_used"]
    worksheet.bichali_used = totals["bichali_used"]
    worksheet.boo_sa_used = totals["boo_sa_used"]

    db.add(worksheet)
    try:
        db.flush()
    except IntegrityError as exc:
        # The sheet and its entries go together or not at all
        db.rollback()
        raise Conflict(f"A worksheet for {work_date.isoformat()} already exists") from exc

    create_audit_log(
        db,
        entity_type="worksheet",
        entity_id=worksheet.id,
        action="CREATE",
        actor_id=actor.id,
        actor_role=actor.designation,
        source="api",
        context={"groom_id": str(groom.id), "date": work_date.isoformat(), "entries": len(entries)},
    )
    db.commit()
    db.refresh(worksheet)
    log.info("worksheet_created", worksheet_id=str(worksheet.id), groom_id=str(groom.id), entries=len(entries))
    return worksheet


def list_worksheets(
    db: Session,
    actor: Employee,
    *,
    groom_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    take: int = 50,
    checker: PermissionChecker,
) -> Tuple[List[GroomWorksheet], int]:
    """Grooms see their own sheets; supervisors and instructors see every groom's."""
    if not sees_all_worksheets(actor, checker):
        groom_id = actor.id
    query = db.query(GroomWorksheet)
    if groom_id:
        query = query.filter(GroomWorksheet.groom_id == groom_id)
    if start_date:
        query = query.filter(GroomWorksheet.work_date >= start_date)
    if end_date:
        query = query.filter(GroomWorksheet.work_date <= end_date)
    total = query.count()
    rows = (
        query.options(selectinload(GroomWorksheet.entries))
        .order_by(GroomWorksheet.work_date.desc())
        .offset(skip)
        .limit(take)
        .all()
    )
    return rows, total


def get_worksheet(
    db: Session, actor: Employee, worksheet_id: uuid.UUID, checker: PermissionChecker
) -> GroomWorksheet:
    worksheet = db.get(GroomWorksheet, worksheet_id)
    if worksheet is None:
        raise NotFound("Worksheet not found")
    if worksheet.groom_id != actor.id and not sees_all_worksheets(actor, checker):
        raise Forbidden("You do not have access to this worksheet")
    return worksheet
