"""
Demo data for local and staging databases.

Idempotent: employees are matched on email and horses on name, so running it
again refreshes the same rows instead of duplicating them.
"""
from datetime import datetime
from typing import Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..models.models import Employee, Horse
from .roles import default_registry


log = structlog.get_logger(__name__)

DEMO_PASSWORD = "password123"

# (email, full name, designation, supervisor email)
DEMO_EMPLOYEES = (
    ("admin@test.com", "Admin User", "Super Admin", None),
    ("director@test.com", "Dr. Director", "Director", None),
    ("manager@test.com", "Emma Manager", "Stable Manager", "director@test.com"),
    ("supervisor@test.com", "Mike Supervisor", "Ground Supervisor", "director@test.com"),
    ("instructor@test.com", "Alex Instructor", "Instructor", "manager@test.com"),
    ("groom@test.com", "Sarah Groom", "Groom", "manager@test.com"),
    ("jamedar@test.com", "Raj Jamedar", "Jamedar", "manager@test.com"),
    ("rider@test.com", "John Rider", "Rider", "manager@test.com"),
    ("riding-boy@test.com", "Tommy Riding Boy", "Riding Boy", "manager@test.com"),
    ("guard@test.com", "John Guard", "Guard", "supervisor@test.com"),
)

DEMO_HORSES = (
    "Alta Strada", "Vallee", "Dejavu", "Tara", "Smile Stone", "Perseus", "Prada", "Rodrigo",
    "Zara", "Fabia", "Claudia", "Cadillac", "Maximus", "Pluto", "Sheeba", "Starlight",
)


def ensure_employee(
    db: Session, email: str, full_name: str, designation: str, password: str = DEMO_PASSWORD
) -> Employee:
    employee = db.query(Employee).filter(Employee.email == email).first()
    if employee is None:
        employee = Employee(email=email)
        db.add(employee)
    employee.password_hash = get_password_hash(password)
    employee.full_name = full_name
    employee.designation = designation
    employee.department = default_registry.get_department(designation)
    employee.employment_status = "Active"
    employee.is_approved = True
    db.flush()
    return employee


def ensure_horse(db: Session, name: str, stable_number: Optional[str] = None) -> Horse:
    horse = db.query(Horse).filter(Horse.name == name).first()
    if horse is not None:
        return horse
    horse = Horse(
        name=name,
        gender="Mare",
        date_of_birth=datetime(2015, 1, 1),
        breed="Thoroughbred",
        color="Bay",
        stable_number=stable_number,
    )
    db.add(horse)
    db.flush()
    return horse


def seed_demo_data(db: Session) -> Dict[str, int]:
    by_email: Dict[str, Employee] = {}
    for email, full_name, designation, _ in DEMO_EMPLOYEES:
        by_email[email] = ensure_employee(db, email, full_name, designation)
    for email, _, _, supervisor_email in DEMO_EMPLOYEES:
        supervisor = by_email.get(supervisor_email) if supervisor_email else None
        by_email[email].supervisor_id = supervisor.id if supervisor else None

    manager = by_email["manager@test.com"]
    for index, name in enumerate(DEMO_HORSES, start=1):
        horse = ensure_horse(db, name, stable_number=f"S-{index:03d}")
        if horse.supervisor_id is None:
            horse.supervisor_id = manager.id

    db.commit()
    result = {"employees": len(DEMO_EMPLOYEES), "horses": len(DEMO_HORSES)}
    log.info("demo_data_seeded", **result)
    return result
