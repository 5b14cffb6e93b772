import uuid
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..errors import Forbidden, InvalidTransition, NotFound, ValidationError
from ..models.models import (
    APPROVAL_REJECTED,
    TASK_CANCELLED,
    TASK_IN_PROGRESS,
    TASK_PENDING,
    TASK_PENDING_REVIEW,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TASK_TYPES,
    Employee,
    Horse,
    Task,
    to_naive_utc,
    utcnow,
)
from . import notifications
from .approval_workflow import TERMINAL_STATUSES, close_open_approvals, route_for_review, transition
from .audit import create_audit_log
from .permissions import PermissionChecker


log = structlog.get_logger(__name__)

DEFAULT_PRIORITY = "Medium"


def get_task_or_404(db: Session, task_id: uuid.UUID) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


def create_task(
    db: Session,
    creator: Employee,
    *,
    name: Optional[str],
    type: Optional[str],
    horse_id: Optional[uuid.UUID],
    assignee_id: Optional[uuid.UUID],
    scheduled_time: Optional[datetime],
    priority: Optional[str] = None,
    required_proof: bool = False,
    description: Optional[str] = None,
    auto_expiry_minutes: Optional[int] = None,
    checker: PermissionChecker,
) -> Task:
    if not checker.can_assign_tasks(creator.designation):
        raise Forbidden("Your role cannot assign tasks")

    name = (name or "").strip()
    required = (
        ("name", name),
        ("type", type),
        ("horseId", horse_id),
        ("assignedEmployeeId", assignee_id),
        ("scheduledTime", scheduled_time),
    )
    missing = [label for label, value in required if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if type not in TASK_TYPES:
        raise ValidationError(f"Invalid task type: {type}")
    priority = priority or DEFAULT_PRIORITY
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}")

    if db.get(Horse, horse_id) is None:
        raise NotFound("Horse not found")
    assignee = db.get(Employee, assignee_id)
    if assignee is None:
        raise NotFound("Assigned employee not found")

    now = utcnow()
    task = Task(
        name=name,
        type=type,
        description=description,
        horse_id=horse_id,
        assigned_employee_id=assignee.id,
        created_by_id=creator.id,
        scheduled_time=to_naive_utc(scheduled_time),
        priority=priority,
        status=TASK_PENDING,
        required_proof=bool(required_proof),
        auto_expiry_minutes=auto_expiry_minutes,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    db.flush()

    notifications.notify(
        db,
        assignee.id,
        notifications.TASK_ASSIGNMENT,
        title=f"New task: {task.name}",
        message=f"{creator.full_name} assigned you '{task.name}'.",
        related_entity_id=task.id,
        related_entity_type="Task",
        urgency="Urgent" if priority == "Urgent" else "Normal",
    )
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="CREATE",
        actor_id=creator.id,
        actor_role=creator.designation,
        source="api",
        context={"horse_id": str(horse_id), "assigned_employee_id": str(assignee.id)},
    )
    db.commit()
    db.refresh(task)
    log.info("task_created", task_id=str(task.id), creator_id=str(creator.id), assignee_id=str(assignee.id))
    return task


def _validate_status_filter(status: Optional[str]) -> None:
    if status and status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status: {status}")


def list_tasks(
    db: Session,
    actor: Employee,
    *,
    status: Optional[str] = None,
    horse_id: Optional[uuid.UUID] = None,
    skip: int = 0,
    take: int = 10,
    checker: PermissionChecker,
) -> Tuple[List[Task], int]:
    """Role-scoped task list.

    Supervisory roles see the tasks they created, except that asking for
    Pending Review shows every task awaiting approval. Everyone else sees
    the tasks assigned to them.
    """
    _validate_status_filter(status)
    query = db.query(Task)
    if status:
        query = query.filter(Task.status == status)
    if horse_id:
        query = query.filter(Task.horse_id == horse_id)

    if checker.sees_created_tasks(actor.designation):
        if status != TASK_PENDING_REVIEW:
            query = query.filter(Task.created_by_id == actor.id)
    else:
        query = query.filter(Task.assigned_employee_id == actor.id)

    total = query.count()
    tasks = query.order_by(Task.scheduled_time.desc()).offset(skip).limit(take).all()
    return tasks, total


def list_my_tasks(
    db: Session, actor: Employee, *, status: Optional[str] = None, skip: int = 0, take: int = 1000
) -> Tuple[List[Task], int]:
    _validate_status_filter(status)
    query = db.query(Task).filter(Task.assigned_employee_id == actor.id)
    if status:
        query = query.filter(Task.status == status)
    total = query.count()
    tasks = query.order_by(Task.scheduled_time.desc()).offset(skip).limit(take).all()
    return tasks, total


def ensure_can_view(task: Task, actor: Employee, checker: PermissionChecker) -> None:
    if actor.id in (task.assigned_employee_id, task.created_by_id):
        return
    if checker.can_approve(actor.designation) or checker.is_admin(actor.designation):
        return
    raise Forbidden("You do not have access to this task")


def get_task(db: Session, actor: Employee, task_id: uuid.UUID, checker: PermissionChecker) -> Task:
    task = get_task_or_404(db, task_id)
    ensure_can_view(task, actor, checker)
    return task


def _ensure_assignee(task: Task, actor: Employee) -> None:
    if task.assigned_employee_id != actor.id:
        raise Forbidden("You are not assigned to this task")


def start_task(db: Session, assignee: Employee, task_id: uuid.UUID) -> Task:
    task = get_task_or_404(db, task_id)
    _ensure_assignee(task, assignee)

    now = utcnow()
    task = transition(db, task.id, TASK_PENDING, TASK_IN_PROGRESS, started_at=now)
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="START",
        actor_id=assignee.id,
        actor_role=assignee.designation,
        source="api",
        changes_json={"status": {"before": TASK_PENDING, "after": TASK_IN_PROGRESS}},
    )
    db.commit()
    db.refresh(task)
    log.info("task_started", task_id=str(task.id), assignee_id=str(assignee.id))
    return task


def submit_completion(
    db: Session,
    assignee: Employee,
    task_id: uuid.UUID,
    proof_image: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    checker: PermissionChecker,
) -> Task:
    task = get_task_or_404(db, task_id)
    _ensure_assignee(task, assignee)
    if task.status != TASK_IN_PROGRESS:
        raise InvalidTransition("Task must be in progress before submission")

    proof_image = (proof_image or "").strip() or None
    if task.required_proof and not proof_image:
        raise ValidationError("Proof image is required")

    now = utcnow()
    task = transition(
        db,
        task.id,
        TASK_IN_PROGRESS,
        TASK_PENDING_REVIEW,
        proof_image=proof_image,
        completion_notes=notes,
        submitted_at=now,
        completed_time=now,
    )
    route_for_review(db, task, now, checker)
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="SUBMIT",
        actor_id=assignee.id,
        actor_role=assignee.designation,
        source="api",
        changes_json={"status": {"before": TASK_IN_PROGRESS, "after": TASK_PENDING_REVIEW}},
        context={"proof_image": proof_image} if proof_image else None,
    )
    db.commit()
    db.refresh(task)
    log.info("task_submitted", task_id=str(task.id), assignee_id=str(assignee.id), has_proof=bool(proof_image))
    return task


def _ensure_owner_or_admin(task: Task, actor: Employee, checker: PermissionChecker, action: str) -> None:
    if task.created_by_id == actor.id or checker.is_admin(actor.designation):
        return
    raise Forbidden(f"Only the task creator or an administrator can {action} this task")


def cancel_task(
    db: Session,
    actor: Employee,
    task_id: uuid.UUID,
    reason: Optional[str] = None,
    *,
    checker: PermissionChecker,
) -> Task:
    task = get_task_or_404(db, task_id)
    _ensure_owner_or_admin(task, actor, checker, "cancel")
    if task.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"Task is already {task.status}")

    previous = task.status
    reason = (reason or "").strip() or None
    now = utcnow()
    task = transition(db, task.id, previous, TASK_CANCELLED)
    close_open_approvals(db, task.id, APPROVAL_REJECTED, actor, reason or "Task cancelled", now)

    notifications.notify(
        db,
        task.assigned_employee_id,
        notifications.TASK_CANCELLED,
        title=f"Task cancelled: {task.name}",
        message=reason or f"'{task.name}' was cancelled.",
        related_entity_id=task.id,
        related_entity_type="Task",
    )
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="CANCEL",
        actor_id=actor.id,
        actor_role=actor.designation,
        source="api",
        changes_json={"status": {"before": previous, "after": TASK_CANCELLED}},
        context={"reason": reason} if reason else None,
    )
    db.commit()
    db.refresh(task)
    log.info("task_cancelled", task_id=str(task.id), actor_id=str(actor.id), previous_status=previous)
    return task


def delete_task(
    db: Session, actor: Employee, task_id: uuid.UUID, checker: PermissionChecker
) -> None:
    task = get_task_or_404(db, task_id)
    _ensure_owner_or_admin(task, actor, checker, "delete")
    create_audit_log(
        db,
        entity_type="task",
        entity_id=task.id,
        action="DELETE",
        actor_id=actor.id,
        actor_role=actor.designation,
        source="api",
        context={"name": task.name, "status": task.status},
    )
    db.delete(task)
    db.commit()
    log.info("task_deleted", task_id=str(task_id), actor_id=str(actor.id))
