"""
Task approval workflow.

Drives tasks through the status table below and keeps each task's chain of
Approval records. Every status change is a conditional UPDATE on the
expected current status, so of two concurrent requests against the same
task only one can win; the loser gets InvalidTransition.

    Pending         -> In Progress, Missed, Cancelled
    In Progress     -> Pending Review, Cancelled
    Pending Review  -> Approved, Rejected, Cancelled
    Approved, Rejected, Missed, Cancelled are terminal
"""
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from ..models.models import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    TASK_APPROVED,
    TASK_CANCELLED,
    TASK_IN_PROGRESS,
    TASK_MISSED,
    TASK_PENDING,
    TASK_PENDING_REVIEW,
    TASK_REJECTED,
    TASK_STATUSES,
    Approval,
    Employee,
    Task,
    utcnow,
)
from . import notifications
from .audit import create_audit_log
from .permissions import PermissionChecker


log = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    TASK_PENDING: frozenset({TASK_IN_PROGRESS, TASK_MISSED, TASK_CANCELLED}),
    TASK_IN_PROGRESS: frozenset({TASK_PENDING_REVIEW, TASK_CANCELLED}),
    TASK_PENDING_REVIEW: frozenset({TASK_APPROVED, TASK_REJECTED, TASK_CANCELLED}),
    TASK_APPROVED: frozenset(),
    TASK_REJECTED: frozenset(),
    TASK_MISSED: frozenset(),
    TASK_CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

DECISION_TO_APPROVAL_STATUS = {
    TASK_APPROVED: APPROVAL_APPROVED,
    TASK_REJECTED: APPROVAL_REJECTED,
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _apply_status(db: Session, task_id: uuid.UUID, expected: str, target: str, values: dict) -> Task:
    now = utcnow()
    changes = {"status": target, "updated_at": now}
    changes.update(values)
    updated = (
        db.query(Task)
        .filter(Task.id == task_id, Task.status == expected)
        .update(changes, synchronize_session=False)
    )
    if updated != 1:
        current = db.query(Task.status).filter(Task.id == task_id).scalar()
        if current is None:
            raise NotFound("Task not found")
        raise InvalidTransition(f"Task is {current}; expected {expected}")
    task = db.get(Task, task_id)
    db.refresh(task)
    return task


def transition(db: Session, task_id: uuid.UUID, expected: str, target: str, **values) -> Task:
    """Move a task from ``expected`` to ``target`` atomically.

    Raises InvalidTransition when the edge is not in the table or when the
    stored status no longer equals ``expected``.
    """
    if not can_transition(expected, target):
        raise InvalidTransition(f"Cannot move task from {expected} to {target}")
    return _apply_status(db, task_id, expected, target, values)


def get_open_approval(db: Session, task_id: uuid.UUID) -> Optional[Approval]:
    return (
        db.query(Approval)
        .filter(Approval.task_id == task_id, Approval.status == APPROVAL_PENDING)
        .order_by(Approval.created_at.desc())
        .first()
    )


def get_task_approvals(db: Session, task_id: uuid.UUID) -> List[Approval]:
    return (
        db.query(Approval)
        .filter(Approval.task_id == task_id)
        .order_by(Approval.created_at.asc())
        .all()
    )


def open_approval(
    db: Session,
    task: Task,
    approver: Employee,
    now: Optional[datetime] = None,
    *,
    notification_type: str = notifications.APPROVAL_REQUEST,
    urgency: str = "Normal",
) -> Approval:
    """Open the next link of the task's approval chain, routed to ``approver``."""
    now = now or utcnow()
    already_open = (
        db.query(Approval.id)
        .filter(
            Approval.task_id == task.id,
            Approval.approver_level == approver.designation,
            Approval.status == APPROVAL_PENDING,
        )
        .first()
    )
    if already_open is not None:
        raise Conflict(f"An approval at level {approver.designation} is already open for this task")

    approval = Approval(
        task_id=task.id,
        approver_id=approver.id,
        approver_level=approver.designation,
        status=APPROVAL_PENDING,
        sla_due_date=now + timedelta(minutes=settings.approval_sla_minutes),
        created_at=now,
        updated_at=now,
    )
    db.add(approval)
    try:
        db.flush()
    except IntegrityError as exc:
        # Lost a race against another request opening the same level
        db.rollback()
        raise Conflict(f"An approval at level {approver.designation} is already open for this task") from exc

    notifications.notify(
        db,
        approver.id,
        notification_type,
        title=f"Approval needed: {task.name}",
        message=f"Task '{task.name}' is awaiting your review.",
        related_entity_id=task.id,
        related_entity_type="Task",
        urgency=urgency,
    )
    log.info(
        "approval_opened",
        task_id=str(task.id),
        approval_id=str(approval.id),
        approver_id=str(approver.id),
        approver_level=approver.designation,
    )
    return approval


def resolve_first_approver(db: Session, task: Task, checker: PermissionChecker) -> Optional[Employee]:
    """The assignee's direct supervisor when they can approve, otherwise the task creator."""
    assignee = db.get(Employee, task.assigned_employee_id)
    if assignee is not None and assignee.supervisor_id:
        supervisor = db.get(Employee, assignee.supervisor_id)
        if supervisor is not None and checker.can_approve(supervisor.designation):
            return supervisor
    if task.created_by_id:
        return db.get(Employee, task.created_by_id)
    return None


def route_for_review(
    db: Session, task: Task, now: Optional[datetime], checker: PermissionChecker
) -> Optional[Approval]:
    approver = resolve_first_approver(db, task, checker)
    if approver is None:
        log.warning("approval_unrouted", task_id=str(task.id))
        return None
    return open_approval(db, task, approver, now)


def close_open_approvals(
    db: Session,
    task_id: uuid.UUID,
    status: str,
    actor: Optional[Employee],
    notes: Optional[str],
    now: Optional[datetime] = None,
) -> List[Approval]:
    now = now or utcnow()
    closed = (
        db.query(Approval)
        .filter(Approval.task_id == task_id, Approval.status == APPROVAL_PENDING)
        .all()
    )
    for approval in closed:
        approval.status = status
        approval.notes = notes
        approval.approved_at = now
        approval.updated_at = now
        if actor is not None:
            approval.approver_id = actor.id
    db.flush()
    return closed


def _record_decision(
    db: Session, task: Task, approver: Employee, decision: str, notes: Optional[str], now: datetime
) -> Approval:
    approval_status = DECISION_TO_APPROVAL_STATUS[decision]
    closed = close_open_approvals(db, task.id, approval_status, approver, notes, now)
    if closed:
        return closed[-1]
    # No chain link was open (unrouted task or override): record the decision on its own
    approval = Approval(
        task_id=task.id,
        approver_id=approver.id,
        approver_level=approver.designation,
        status=approval_status,
        notes=notes,
        approved_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(approval)
    return approval


def required_review_level(db: Session, task_id: uuid.UUID, checker: PermissionChecker) -> Optional[str]:
    """Designation a reviewer must match or outrank.

    The open approval sets the bar. With none open, as after an exhausted
    escalation, the highest level the chain reached still applies.
    """
    pending = get_open_approval(db, task_id)
    if pending is not None:
        return pending.approver_level
    levels = [a.approver_level for a in get_task_approvals(db, task_id) if a.approver_level]
    if not levels:
        return None
    return max(levels, key=checker.registry.get_hierarchy_level)


def _decide(
    db: Session,
    approver: Employee,
    task_id: uuid.UUID,
    decision: str,
    notes: Optional[str],
    checker: PermissionChecker,
) -> Tuple[Task, Approval]:
    if not checker.can_approve(approver.designation):
        raise Forbidden("Your role cannot approve or reject tasks")
    task = db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    if task.assigned_employee_id == approver.id:
        raise Forbidden("You cannot review your own task")

    required_level = required_review_level(db, task.id, checker)
    registry = checker.registry
    if required_level and (
        registry.get_hierarchy_level(approver.designation) < registry.get_hierarchy_level(required_level)
    ):
        raise Forbidden(f"This approval requires {required_level} or above")

    now = utcnow()
    task = transition(db, task.id, TASK_PENDING_REVIEW, decision)
    approval = _record_decision(db, task, approver, decision, notes, now)

    notifications.notify(
        db,
        task.assigned_employee_id,
        notifications.APPROVAL_DECISION,
        title=f"Task {decision.lower()}: {task.name}",
        message=notes or f"Your submission for '{task.name}' was {decision.lower()}.",
        related_entity_id=task.id,
        related_entity_type="Task",
    )
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="APPROVE" if decision == TASK_APPROVED else "REJECT",
        actor_id=approver.id,
        actor_role=approver.designation,
        source="api",
        changes_json={"status": {"before": TASK_PENDING_REVIEW, "after": decision}},
        context={"notes": notes} if notes else None,
    )
    db.commit()
    db.refresh(task)
    db.refresh(approval)
    log.info(
        "task_reviewed",
        task_id=str(task.id),
        decision=decision,
        approver_id=str(approver.id),
        approver_role=approver.designation,
    )
    return task, approval


def approve_task(
    db: Session,
    approver: Employee,
    task_id: uuid.UUID,
    notes: Optional[str] = None,
    *,
    checker: PermissionChecker,
) -> Tuple[Task, Approval]:
    return _decide(db, approver, task_id, TASK_APPROVED, (notes or "").strip() or None, checker)


def reject_task(
    db: Session,
    approver: Employee,
    task_id: uuid.UUID,
    notes: Optional[str],
    *,
    checker: PermissionChecker,
) -> Tuple[Task, Approval]:
    if not checker.can_approve(approver.designation):
        raise Forbidden("Your role cannot approve or reject tasks")
    notes = (notes or "").strip()
    if not notes:
        raise ValidationError("Rejection notes are required")
    return _decide(db, approver, task_id, TASK_REJECTED, notes, checker)


def override_status(
    db: Session,
    actor: Employee,
    task_id: uuid.UUID,
    status: str,
    notes: Optional[str] = None,
    *,
    checker: PermissionChecker,
) -> Task:
    """Privileged move to any status, including out of a terminal one."""
    if not checker.can_override(actor.designation):
        raise Forbidden("Your role cannot override task decisions")
    if status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status: {status}")
    task = db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    previous = task.status
    if previous == status:
        raise InvalidTransition(f"Task is already {status}")

    now = utcnow()
    notes = (notes or "").strip() or None
    task = _apply_status(db, task.id, previous, status, {})
    if status in DECISION_TO_APPROVAL_STATUS:
        _record_decision(db, task, actor, status, notes, now)
    else:
        close_open_approvals(db, task.id, APPROVAL_REJECTED, actor, notes or f"Overridden to {status}", now)
        if status == TASK_PENDING_REVIEW:
            route_for_review(db, task, now, checker)

    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="OVERRIDE",
        actor_id=actor.id,
        actor_role=actor.designation,
        source="api",
        changes_json={"status": {"before": previous, "after": status}},
        context={"notes": notes} if notes else None,
    )
    db.commit()
    db.refresh(task)
    log.info("task_status_overridden", task_id=str(task.id), before=previous, after=status, actor_id=str(actor.id))
    return task


def list_approvals(
    db: Session,
    actor: Employee,
    *,
    status: Optional[str] = None,
    task_id: Optional[uuid.UUID] = None,
    skip: int = 0,
    take: int = 10,
    checker: PermissionChecker,
) -> Tuple[List[Approval], int]:
    """Admins see every approval; other approvers see the ones routed to them."""
    query = db.query(Approval)
    if not checker.is_admin(actor.designation):
        query = query.filter(Approval.approver_id == actor.id)
    if status:
        query = query.filter(Approval.status == status)
    if task_id:
        query = query.filter(Approval.task_id == task_id)
    total = query.count()
    rows = query.order_by(Approval.created_at.desc()).offset(skip).limit(take).all()
    return rows, total
