from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import Unauthorized, ValidationError
from ..models.models import Employee, utcnow
from ..schemas.auth import LoginRequest
from ..services.permissions import PermissionChecker
from .security import (
    create_access_token,
    get_current_user,
    get_permission_checker,
    verify_password,
)


router = APIRouter(prefix="/api/auth", tags=["auth"])
log = structlog.get_logger(__name__)


def serialize_employee(employee: Employee) -> Dict[str, Any]:
    return {
        "id": str(employee.id),
        "email": employee.email,
        "fullName": employee.full_name,
        "designation": employee.designation,
        "department": employee.department,
        "phoneNumber": employee.phone_number,
        "supervisorId": str(employee.supervisor_id) if employee.supervisor_id else None,
        "employmentStatus": employee.employment_status,
        "isApproved": bool(employee.is_approved),
        "profileImage": employee.profile_image,
        "createdAt": employee.created_at.isoformat() if employee.created_at else None,
    }


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    email = (req.email or "").strip().lower()
    if not email or not req.password:
        raise ValidationError("Email and password are required")
    employee = db.query(Employee).filter(Employee.email == email).first()
    if not employee or not verify_password(req.password, employee.password_hash):
        log.info("login_failed", email=email)
        raise Unauthorized("Invalid email or password")
    employee.last_login_at = utcnow()
    db.commit()
    db.refresh(employee)
    log.info("login_succeeded", employee_id=str(employee.id), designation=employee.designation)
    return {"token": create_access_token(employee), "user": serialize_employee(employee)}


@router.get("/me")
def me(
    user: Employee = Depends(get_current_user),
    checker: PermissionChecker = Depends(get_permission_checker),
):
    data = serialize_employee(user)
    data["hierarchyLevel"] = checker.registry.get_hierarchy_level(user.designation)
    data["permissions"] = sorted(checker.registry.get_permissions(user.designation))
    return data
