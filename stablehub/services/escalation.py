"""
Time-driven workflow upkeep.

Approvals left Pending past their SLA are marked NO_RESPONSE and handed to
the next approver up the chain. Pending tasks with an auto-expiry window that
has elapsed are marked Missed.
"""
import threading
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..errors import Conflict, InvalidTransition
from ..models.models import (
    APPROVAL_NO_RESPONSE,
    APPROVAL_PENDING,
    TASK_MISSED,
    TASK_PENDING,
    TASK_PENDING_REVIEW,
    Approval,
    Employee,
    Task,
    to_naive_utc,
    utcnow,
)
from . import notifications
from .approval_workflow import open_approval, transition
from .audit import create_audit_log
from .hierarchy import get_manager_chain
from .permissions import PermissionChecker
from .roles import LEADERSHIP


log = structlog.get_logger(__name__)


def _eligible_approvers(db: Session, roles, checker: PermissionChecker) -> List[Employee]:
    roles = [r for r in roles if checker.can_approve(r)]
    if not roles:
        return []
    return (
        db.query(Employee)
        .filter(
            Employee.designation.in_(roles),
            Employee.is_approved.is_(True),
            Employee.employment_status == "Active",
        )
        .all()
    )


def _lowest_above(candidates: List[Employee], level: int, checker: PermissionChecker) -> Optional[Employee]:
    registry = checker.registry
    above = [e for e in candidates if registry.get_hierarchy_level(e.designation) > level]
    if not above:
        return None
    above.sort(key=lambda e: (registry.get_hierarchy_level(e.designation), e.full_name or "", str(e.id)))
    return above[0]


def find_next_approver(db: Session, approval: Approval, checker: PermissionChecker) -> Optional[Employee]:
    """Next link of the chain after ``approval``.

    Walks the current approver's supervisors first, then the lowest higher
    level in the same department, then Leadership.
    """
    registry = checker.registry
    level = registry.get_hierarchy_level(approval.approver_level)

    if approval.approver_id:
        for supervisor_id in get_manager_chain(approval.approver_id, db):
            supervisor = db.get(Employee, supervisor_id)
            if supervisor is None or not checker.can_approve(supervisor.designation):
                continue
            if registry.get_hierarchy_level(supervisor.designation) > level:
                return supervisor

    department = registry.get_department(approval.approver_level)
    if department and department != LEADERSHIP:
        candidate = _lowest_above(
            _eligible_approvers(db, registry.get_department_roles(department), checker), level, checker
        )
        if candidate is not None:
            return candidate

    return _lowest_above(_eligible_approvers(db, registry.get_department_roles(LEADERSHIP), checker), level, checker)


def _expire_approval(db: Session, approval_id: uuid.UUID, now: datetime) -> bool:
    updated = (
        db.query(Approval)
        .filter(Approval.id == approval_id, Approval.status == APPROVAL_PENDING)
        .update({"status": APPROVAL_NO_RESPONSE, "escalated_at": now, "updated_at": now}, synchronize_session=False)
    )
    return updated == 1


def escalate_overdue_approvals(
    db: Session, now: Optional[datetime] = None, *, checker: PermissionChecker
) -> int:
    """Escalate every Pending approval whose SLA has passed. Returns how many moved up a level."""
    now = to_naive_utc(now) or utcnow()
    overdue = (
        db.query(Approval)
        .join(Task, Task.id == Approval.task_id)
        .filter(
            Approval.status == APPROVAL_PENDING,
            Approval.sla_due_date.isnot(None),
            Approval.sla_due_date <= now,
            Task.status == TASK_PENDING_REVIEW,
        )
        .order_by(Approval.sla_due_date.asc())
        .all()
    )

    escalated = 0
    for approval in overdue:
        if not _expire_approval(db, approval.id, now):
            # Decided or escalated by someone else since the query
            continue
        db.refresh(approval)
        task = db.get(Task, approval.task_id)

        next_approver = find_next_approver(db, approval, checker)
        if next_approver is None:
            log.warning(
                "approval_chain_exhausted",
                task_id=str(approval.task_id),
                approval_id=str(approval.id),
                approver_level=approval.approver_level,
            )
            db.commit()
            continue

        try:
            new_approval = open_approval(
                db,
                task,
                next_approver,
                now,
                notification_type=notifications.ESCALATION,
                urgency="Urgent",
            )
        except Conflict:
            # A failed insert rolls the whole transaction back, expiry included
            _expire_approval(db, approval.id, now)
            db.commit()
            log.info("approval_already_escalated", task_id=str(task.id), approver_level=next_approver.designation)
            continue

        create_audit_log(
            db,
            entity_type="approval",
            entity_id=new_approval.id,
            action="ESCALATE",
            actor_role="system",
            source="system",
            changes_json={"approver_level": {"before": approval.approver_level, "after": next_approver.designation}},
            context={"task_id": str(task.id), "expired_approval_id": str(approval.id)},
        )
        db.commit()
        escalated += 1
        log.info(
            "approval_escalated",
            task_id=str(task.id),
            from_level=approval.approver_level,
            to_level=next_approver.designation,
            approver_id=str(next_approver.id),
        )
    return escalated


def mark_missed_tasks(db: Session, now: Optional[datetime] = None) -> int:
    """Move Pending tasks past their auto-expiry window to Missed."""
    now = to_naive_utc(now) or utcnow()
    candidates = (
        db.query(Task)
        .filter(
            Task.status == TASK_PENDING,
            Task.auto_expiry_minutes.isnot(None),
            Task.scheduled_time <= now,
        )
        .all()
    )

    missed = 0
    for task in candidates:
        deadline = to_naive_utc(task.scheduled_time) + timedelta(minutes=task.auto_expiry_minutes)
        if deadline > now:
            continue
        try:
            task = transition(db, task.id, TASK_PENDING, TASK_MISSED)
        except InvalidTransition:
            # Started after we loaded it
            db.rollback()
            continue

        if task.created_by_id:
            notifications.notify(
                db,
                task.created_by_id,
                notifications.MISSED_TASK,
                title=f"Task missed: {task.name}",
                message=f"'{task.name}' was not started within {task.auto_expiry_minutes} minutes.",
                related_entity_id=task.id,
                related_entity_type="Task",
                urgency="Urgent",
            )
        create_audit_log(
            db,
            entity_type="task",
            entity_id=task.id,
            action="MISS",
            actor_role="system",
            source="system",
            changes_json={"status": {"before": TASK_PENDING, "after": TASK_MISSED}},
        )
        db.commit()
        missed += 1
        log.info("task_missed", task_id=str(task.id), assignee_id=str(task.assigned_employee_id))
    return missed


def run_sweep(checker: PermissionChecker, now: Optional[datetime] = None) -> dict:
    db = SessionLocal()
    try:
        result = {
            "escalated": escalate_overdue_approvals(db, now, checker=checker),
            "missed": mark_missed_tasks(db, now),
        }
    finally:
        db.close()
    if result["escalated"] or result["missed"]:
        log.info("workflow_sweep_completed", **result)
    return result


def start_sweeper(interval_seconds: int, checker: PermissionChecker) -> Optional[threading.Event]:
    """Run ``run_sweep`` every ``interval_seconds`` on a daemon thread.

    Returns the event that stops the loop, or None when disabled.
    """
    if interval_seconds <= 0:
        return None
    stop = threading.Event()

    def _loop():
        while not stop.wait(interval_seconds):
            try:
                run_sweep(checker)
            except Exception:
                log.exception("workflow_sweep_failed")

    threading.Thread(target=_loop, name="workflow-sweeper", daemon=True).start()
    log.info("workflow_sweeper_started", interval_seconds=interval_seconds)
    return stop
