import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.router import serialize_employee
from ..auth.security import authorize_endpoint, get_password_hash, get_permission_checker
from ..db import get_db
from ..errors import Conflict, NotFound, ValidationError
from ..models.models import EMPLOYMENT_STATUSES, Employee
from ..schemas.employees import EmployeeCreate, SupervisorAssignment
from ..services.audit import create_audit_log
from ..services.hierarchy import assign_supervisor, get_direct_reports, get_manager_chain
from ..services.permissions import PermissionChecker
from .tasks import paginated


router = APIRouter(prefix="/api/employees", tags=["employees"])
log = structlog.get_logger(__name__)


def _get_employee_or_404(db: Session, employee_id: uuid.UUID) -> Employee:
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if employee is None:
        raise NotFound("Employee not found")
    return employee


@router.get("")
def list_employees(
    q: Optional[str] = None,
    designation: Optional[str] = None,
    department: Optional[str] = None,
    is_approved: Optional[bool] = Query(default=None, alias="isApproved"),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(authorize_endpoint),
):
    query = db.query(Employee)
    if q:
        like = f"%{q}%"
        query = query.filter((Employee.full_name.ilike(like)) | (Employee.email.ilike(like)))
    if designation:
        query = query.filter(Employee.designation == designation)
    if department:
        query = query.filter(Employee.department == department)
    if is_approved is not None:
        query = query.filter(Employee.is_approved.is_(is_approved))
    total = query.count()
    rows = query.order_by(Employee.full_name.asc()).offset(skip).limit(take).all()
    return paginated(rows, total, skip, take, serialize_employee)


@router.post("", status_code=201)
def create_employee(
    body: EmployeeCreate,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    registry = checker.registry
    if not registry.is_known_role(body.designation):
        raise ValidationError(f"Unknown designation: {body.designation}")
    if body.employment_status not in EMPLOYMENT_STATUSES:
        raise ValidationError(f"Invalid employment status: {body.employment_status}")
    email = body.email.strip().lower()
    if db.query(Employee.id).filter(Employee.email == email).first():
        raise Conflict("An employee with this email already exists")

    employee = Employee(
        email=email,
        password_hash=get_password_hash(body.password),
        full_name=body.full_name.strip(),
        designation=body.designation,
        department=body.department or registry.get_department(body.designation),
        phone_number=body.phone_number,
        employment_status=body.employment_status,
        is_approved=body.is_approved,
    )
    db.add(employee)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("An employee with this email already exists") from exc
    if body.supervisor_id:
        assign_supervisor(db, employee, body.supervisor_id)

    create_audit_log(
        db,
        entity_type="employee",
        entity_id=employee.id,
        action="CREATE",
        actor_id=me.id,
        actor_role=me.designation,
        source="api",
        context={"designation": employee.designation, "email": employee.email},
    )
    db.commit()
    db.refresh(employee)
    log.info("employee_created", employee_id=str(employee.id), designation=employee.designation)
    return serialize_employee(employee)


@router.get("/{employee_id}")
def get_employee(
    employee_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(authorize_endpoint),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    employee = _get_employee_or_404(db, employee_id)
    data = serialize_employee(employee)
    data["hierarchyLevel"] = checker.registry.get_hierarchy_level(employee.designation)
    return data


@router.patch("/{employee_id}/approve")
def approve_employee(
    employee_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    employee = _get_employee_or_404(db, employee_id)
    was_approved = bool(employee.is_approved)
    employee.is_approved = True
    create_audit_log(
        db,
        entity_type="employee",
        entity_id=employee.id,
        action="APPROVE",
        actor_id=me.id,
        actor_role=me.designation,
        source="api",
        changes_json={"is_approved": {"before": was_approved, "after": True}},
    )
    db.commit()
    db.refresh(employee)
    log.info("employee_approved", employee_id=str(employee.id), actor_id=str(me.id))
    return serialize_employee(employee)


@router.put("/{employee_id}/supervisor")
def set_supervisor(
    employee_id: uuid.UUID,
    body: SupervisorAssignment,
    db: Session = Depends(get_db),
    me: Employee = Depends(authorize_endpoint),
):
    employee = _get_employee_or_404(db, employee_id)
    before = employee.supervisor_id
    assign_supervisor(db, employee, body.supervisor_id)
    create_audit_log(
        db,
        entity_type="employee",
        entity_id=employee.id,
        action="UPDATE",
        actor_id=me.id,
        actor_role=me.designation,
        source="api",
        changes_json={
            "supervisor_id": {
                "before": str(before) if before else None,
                "after": str(employee.supervisor_id) if employee.supervisor_id else None,
            }
        },
    )
    db.commit()
    db.refresh(employee)
    return serialize_employee(employee)


@router.get("/{employee_id}/hierarchy")
def employee_hierarchy(employee_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(authorize_endpoint)):
    _get_employee_or_404(db, employee_id)
    chain: List[uuid.UUID] = get_manager_chain(employee_id, db)
    return {
        "managerChain": [str(i) for i in chain],
        "directReports": [str(i) for i in get_direct_reports(employee_id, db)],
    }
