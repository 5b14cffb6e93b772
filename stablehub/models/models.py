import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    Date,
    DateTime,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime is UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Task statuses
TASK_PENDING = "Pending"
TASK_IN_PROGRESS = "In Progress"
TASK_PENDING_REVIEW = "Pending Review"
TASK_APPROVED = "Approved"
TASK_REJECTED = "Rejected"
TASK_MISSED = "Missed"
TASK_CANCELLED = "Cancelled"

TASK_STATUSES = (
    TASK_PENDING,
    TASK_IN_PROGRESS,
    TASK_PENDING_REVIEW,
    TASK_APPROVED,
    TASK_REJECTED,
    TASK_MISSED,
    TASK_CANCELLED,
)
TASK_TYPES = ("Daily", "Weekly", "Event-based")
TASK_PRIORITIES = ("Low", "Medium", "High", "Urgent")

# Approval statuses
APPROVAL_PENDING = "Pending"
APPROVAL_APPROVED = "Approved"
APPROVAL_REJECTED = "Rejected"
APPROVAL_NO_RESPONSE = "NO_RESPONSE"

EMPLOYMENT_STATUSES = ("Active", "Inactive", "On Leave")

# Attendance statuses; WOFF is the weekly off day
ATTENDANCE_STATUSES = ("Present", "Absent", "Leave", "WOFF", "Half Day")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    designation: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(100))
    phone_number: Mapped[Optional[str]] = mapped_column(String(50))
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    employment_status: Mapped[str] = mapped_column(String(20), default="Active")  # Active|Inactive|On Leave
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    profile_image: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    supervisor = relationship("Employee", remote_side="Employee.id")


class Horse(Base):
    __tablename__ = "horses"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20))  # Male|Female|Gelding
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    breed: Mapped[Optional[str]] = mapped_column(String(100))
    color: Mapped[Optional[str]] = mapped_column(String(100))
    stable_number: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    status: Mapped[str] = mapped_column(String(50), default="Active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # Daily|Weekly|Event-based
    description: Mapped[Optional[str]] = mapped_column(Text)
    horse_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("horses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), default="Medium")
    status: Mapped[str] = mapped_column(String(20), default=TASK_PENDING, nullable=False, index=True)
    required_proof: Mapped[bool] = mapped_column(Boolean, default=False)
    proof_image: Mapped[Optional[str]] = mapped_column(String(500))
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    auto_expiry_minutes: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    horse = relationship("Horse")
    assigned_employee = relationship("Employee", foreign_keys=[assigned_employee_id])
    created_by = relationship("Employee", foreign_keys=[created_by_id])
    approvals = relationship(
        "Approval",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Approval.created_at",
    )

    __table_args__ = (
        Index("idx_tasks_assignee_status", "assigned_employee_id", "status"),
        Index("idx_tasks_creator_status", "created_by_id", "status"),
    )


class Approval(Base):
    """One link of a task's sequential approval chain"""
    __tablename__ = "approvals"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    approver_level: Mapped[str] = mapped_column(String(100), nullable=False)  # designation snapshot at routing time
    status: Mapped[str] = mapped_column(String(20), default=APPROVAL_PENDING, nullable=False)  # Pending|Approved|Rejected|NO_RESPONSE
    notes: Mapped[Optional[str]] = mapped_column(Text)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sla_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="approvals")
    approver = relationship("Employee")

    __table_args__ = (
        # At most one open approval per (task, level)
        Index(
            "uq_approvals_open_per_level",
            "task_id",
            "approver_level",
            unique=True,
            sqlite_where=text("status = 'Pending'"),
            postgresql_where=text("status = 'Pending'"),
        ),
        Index("idx_approvals_status_sla", "status", "sla_due_date"),
    )


class AuditLog(Base):
    """Append-only audit log for task and employee actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # task|approval|employee|horse|attendance|worksheet
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|START|SUBMIT|APPROVE|REJECT|CANCEL|OVERRIDE|DELETE|ESCALATE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(100))
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_actor", "actor_id", "timestamp_utc"),
    )


class Notification(Base):
    """In-app notifications; delivery channels are stubbed"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # Task Assignment|Approval Request|Escalation|Missed Task|...
    title: Mapped[Optional[str]] = mapped_column(String(255))
    message: Mapped[Optional[str]] = mapped_column(Text)
    related_entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    related_entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    urgency: Mapped[str] = mapped_column(String(20), default="Normal")  # Normal|Urgent
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_notifications_recipient_read", "recipient_id", "is_read"),
        Index("idx_notifications_created", "created_at"),
    )


class NotificationPreference(Base):
    """Per-employee channel preferences and quiet hours"""
    __tablename__ = "notification_preferences"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    push: Mapped[bool] = mapped_column(Boolean, default=True)
    email: Mapped[bool] = mapped_column(Boolean, default=True)
    quiet_hours: Mapped[Optional[dict]] = mapped_column(JSON)  # {start: "HH:MM", end: "HH:MM", timezone: "Asia/Kolkata"}
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Attendance(Base):
    """Daily attendance mark, one per employee per date"""
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # Present|Absent|Leave|WOFF|Half Day
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    marked_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL")
    )
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    employee = relationship("Employee", foreign_keys=[employee_id])
    marked_by = relationship("Employee", foreign_keys=[marked_by_id])

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_employee_date"),
        Index("idx_attendance_date_status", "work_date", "status"),
    )


class GroomWorksheet(Base):
    """A groom's daily care sheet; totals are summed from its entries"""
    __tablename__ = "groom_worksheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    groom_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    total_am_hours: Mapped[float] = mapped_column(Float, default=0)
    total_pm_hours: Mapped[float] = mapped_column(Float, default=0)
    whole_day_hours: Mapped[float] = mapped_column(Float, default=0)
    woodchips_used: Mapped[float] = mapped_column(Float, default=0)
    bichali_used: Mapped[float] = mapped_column(Float, default=0)  # bedding straw
    boo_sa_used: Mapped[float] = mapped_column(Float, default=0)  # husk bedding
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    groom = relationship("Employee", foreign_keys=[groom_id])
    entries = relationship(
        "GroomWorksheetEntry",
        back_populates="worksheet",
        cascade="all, delete-orphan",
        order_by="GroomWorksheetEntry.position",
    )

    __table_args__ = (UniqueConstraint("groom_id", "work_date", name="uq_groom_worksheet_day"),)


class GroomWorksheetEntry(Base):
    __tablename__ = "groom_worksheet_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    worksheet_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("groom_worksheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    horse_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("horses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    am_hours: Mapped[float] = mapped_column(Float, default=0)
    pm_hours: Mapped[float] = mapped_column(Float, default=0)
    whole_day_hours: Mapped[float] = mapped_column(Float, default=0)
    woodchips_used: Mapped[float] = mapped_column(Float, default=0)
    bichali_used: Mapped[float] = mapped_column(Float, default=0)
    boo_sa_used: Mapped[float] = mapped_column(Float, default=0)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    worksheet = relationship("GroomWorksheet", back_populates="entries")
    horse = relationship("Horse")
