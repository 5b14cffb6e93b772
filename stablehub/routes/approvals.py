import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import authorize_endpoint, get_permission_checker
from ..db import get_db
from ..models.models import Employee
from ..services import approval_workflow, escalation
from ..services.permissions import PermissionChecker
from .tasks import paginated, serialize_approval


router = APIRouter(prefix="/api/approvals", tags=["approvals"])
log = structlog.get_logger(__name__)


@router.get("")
def list_approvals(
    status: Optional[str] = None,
    task_id: Optional[uuid.UUID] = Query(default=None, alias="taskId"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    rows, total = approval_workflow.list_approvals(
        db, me, status=status, task_id=task_id, skip=skip, take=take, checker=checker
    )
    return paginated(rows, total, skip, take, serialize_approval)


@router.post("/escalate")
def escalate_now(
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    result = {
        "escalated": escalation.escalate_overdue_approvals(db, checker=checker),
        "missed": escalation.mark_missed_tasks(db),
    }
    log.info("workflow_sweep_requested", actor_id=str(me.id), **result)
    return result
