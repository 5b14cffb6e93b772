import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint, get_permission_checker
from ..db import get_db
from ..models.models import Approval, Employee, Task
from ..schemas.tasks import TaskCancel, TaskCreate, TaskDecision, TaskOverride, TaskSubmission
from ..services import approval_workflow, task_service
from ..services.permissions import PermissionChecker


router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _iso(value):
    return value.isoformat() if value else None


def _person(employee: Optional[Employee]) -> Optional[Dict[str, Any]]:
    if employee is None:
        return None
    return {"id": str(employee.id), "fullName": employee.full_name, "designation": employee.designation}


def serialize_task(task: Task) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "name": task.name,
        "type": task.type,
        "description": task.description,
        "horseId": str(task.horse_id),
        "horse": {"id": str(task.horse.id), "name": task.horse.name, "stableNumber": task.horse.stable_number} if task.horse else None,
        "assignedEmployeeId": str(task.assigned_employee_id),
        "assignedEmployee": _person(task.assigned_employee),
        "createdById": str(task.created_by_id) if task.created_by_id else None,
        "createdBy": _person(task.created_by),
        "scheduledTime": _iso(task.scheduled_time),
        "priority": task.priority,
        "status": task.status,
        "requiredProof": bool(task.required_proof),
        "proofImage": task.proof_image,
        "completionNotes": task.completion_notes,
        "autoExpiryMinutes": task.auto_expiry_minutes,
        "startedAt": _iso(task.started_at),
        "submittedAt": _iso(task.submitted_at),
        "completedTime": _iso(task.completed_time),
        "createdAt": _iso(task.created_at),
        "updatedAt": _iso(task.updated_at),
    }


def serialize_approval(approval: Approval) -> Dict[str, Any]:
    return {
        "id": str(approval.id),
        "taskId": str(approval.task_id),
        "approverId": str(approval.approver_id) if approval.approver_id else None,
        "approver": _person(approval.approver),
        "approverLevel": approval.approver_level,
        "status": approval.status,
        "notes": approval.notes,
        "approvedAt": _iso(approval.approved_at),
        "slaDueDate": _iso(approval.sla_due_date),
        "escalatedAt": _iso(approval.escalated_at),
        "createdAt": _iso(approval.created_at),
    }


def paginated(rows, total: int, skip: int, take: int, serializer) -> Dict[str, Any]:
    return {
        "data": [serializer(r) for r in rows],
        "pagination": {"total": total, "skip": skip, "take": take},
    }


@router.get("")
def list_tasks(
    status: Optional[str] = None,
    horse_id: Optional[uuid.UUID] = Query(default=None, alias="horseId"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    rows, total = task_service.list_tasks(
        db, me, status=status, horse_id=horse_id, skip=skip, take=take, checker=checker
    )
    return paginated(rows, total, skip, take, serialize_task)


@router.post("", status_code=201)
def create_task(
    body: TaskCreate,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = task_service.create_task(
        db,
        me,
        name=body.name,
        type=body.type,
        horse_id=body.horse_id,
        assignee_id=body.assigned_employee_id,
        scheduled_time=body.scheduled_time,
        priority=body.priority,
        required_proof=body.required_proof,
        description=body.description,
        auto_expiry_minutes=body.auto_expiry_minutes,
        checker=checker,
    )
    return serialize_task(task)


# Registered before /{task_id} so "my-tasks" is not parsed as an id
@router.get("/my-tasks")
def my_tasks(
    status: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    rows, total = task_service.list_my_tasks(db, me, status=status, skip=skip, take=take)
    return paginated(rows, total, skip, take, serialize_task)


@router.get("/{task_id}")
def get_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = task_service.get_task(db, me, task_id, checker)
    data = serialize_task(task)
    data["approvals"] = [serialize_approval(a) for a in approval_workflow.get_task_approvals(db, task.id)]
    return data


@router.delete("/{task_id}")
def delete_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task_service.delete_task(db, me, task_id, checker)
    return {"ok": True}


@router.patch("/{task_id}/start")
def start_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    return serialize_task(task_service.start_task(db, me, task_id))


@router.patch("/{task_id}/submit-completion")
def submit_completion(
    task_id: uuid.UUID,
    body: TaskSubmission,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = task_service.submit_completion(
        db, me, task_id, proof_image=body.proof_image, notes=body.completion_notes, checker=checker
    )
    return serialize_task(task)


@router.post("/{task_id}/approve")
def approve_task(
    task_id: uuid.UUID,
    body: Optional[TaskDecision] = None,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task, approval = approval_workflow.approve_task(
        db, me, task_id, notes=body.notes if body else None, checker=checker
    )
    return {"task": serialize_task(task), "approval": serialize_approval(approval)}


@router.post("/{task_id}/reject")
def reject_task(
    task_id: uuid.UUID,
    body: Optional[TaskDecision] = None,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task, approval = approval_workflow.reject_task(
        db, me, task_id, notes=body.notes if body else None, checker=checker
    )
    return {"task": serialize_task(task), "approval": serialize_approval(approval)}


@router.post("/{task_id}/cancel")
def cancel_task(
    task_id: uuid.UUID,
    body: Optional[TaskCancel] = None,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = task_service.cancel_task(db, me, task_id, reason=body.reason if body else None, checker=checker)
    return serialize_task(task)


@router.post("/{task_id}/override")
def override_task(
    task_id: uuid.UUID,
    body: TaskOverride,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = approval_workflow.override_status(db, me, task_id, body.status, notes=body.notes, checker=checker)
    return serialize_task(task)


@router.get("/{task_id}/approvals")
def task_approvals(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    task = task_service.get_task(db, me, task_id, checker)
    return [serialize_approval(a) for a in approval_workflow.get_task_approvals(db, task.id)]
