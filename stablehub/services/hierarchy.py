from __future__ import annotations

import uuid
from typing import List, Optional, Set
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..models.models import Employee


def get_manager_chain(employee_id, db: Session, max_depth: int = 16) -> List[uuid.UUID]:
    """Return supervisor ids from the direct supervisor up to the top for the given employee."""
    chain: List[uuid.UUID] = []
    visited: Set[uuid.UUID] = set()
    current = db.query(Employee).filter(Employee.id == employee_id).first()
    depth = 0
    while current and current.supervisor_id and depth < max_depth:
        sid = current.supervisor_id
        if sid in visited:
            break
        chain.append(sid)
        visited.add(sid)
        depth += 1
        current = db.query(Employee).filter(Employee.id == sid).first()
    return chain


def get_direct_reports(manager_id, db: Session, limit: int = 500) -> List[uuid.UUID]:
    rows = db.query(Employee.id).filter(Employee.supervisor_id == manager_id).limit(limit).all()
    return [r[0] for r in rows]


def is_in_chain(manager_id, employee_id, db: Session) -> bool:
    return manager_id in set(get_manager_chain(employee_id, db))


def assign_supervisor(db: Session, employee: Employee, supervisor_id: Optional[uuid.UUID]) -> Employee:
    """Point an employee at a new supervisor, refusing missing ids and cycles."""
    if supervisor_id is None:
        employee.supervisor_id = None
        return employee
    if supervisor_id == employee.id:
        raise ValidationError("An employee cannot supervise themselves")
    supervisor = db.query(Employee).filter(Employee.id == supervisor_id).first()
    if supervisor is None:
        raise NotFound("Supervisor not found")
    # The new supervisor must not already report to this employee
    if employee.id in set(get_manager_chain(supervisor.id, db, max_depth=10_000)):
        raise ValidationError("Supervisor assignment would create a reporting cycle")
    employee.supervisor_id = supervisor.id
    return employee
