from datetime import datetime, timedelta, timezone

import pytest

from stablehub.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from stablehub.models.models import AuditLog, Notification, Task
from stablehub.services import task_service


class TestCreateTask:
    def test_creates_pending_task(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"], required_proof=True)
        assert task.status == "Pending"
        assert task.created_by_id == stable["manager"].id
        assert task.assigned_employee_id == stable["groom"].id
        assert task.required_proof is True

    def test_round_trip_preserves_fields(self, db, checker, stable, make_task):
        scheduled = datetime(2026, 4, 2, 7, 15)
        created = make_task(
            stable["manager"],
            stable["groom"],
            stable["horse"],
            name="Hoof check",
            type="Weekly",
            priority="Urgent",
            required_proof=True,
            description="Front left shoe",
            auto_expiry_minutes=90,
            scheduled_time=scheduled,
        )
        db.expire_all()
        loaded = task_service.get_task(db, stable["groom"], created.id, checker)
        assert (loaded.name, loaded.type, loaded.priority, loaded.description) == (
            "Hoof check",
            "Weekly",
            "Urgent",
            "Front left shoe",
        )
        assert loaded.horse_id == stable["horse"].id
        assert loaded.assigned_employee_id == stable["groom"].id
        assert loaded.required_proof is True
        assert loaded.auto_expiry_minutes == 90
        assert loaded.scheduled_time == scheduled

    def test_aware_schedule_stored_as_utc(self, db, stable, make_task):
        ist = timezone(timedelta(hours=5, minutes=30))
        task = make_task(stable["manager"], stable["groom"], stable["horse"], scheduled_time=datetime(2026, 4, 2, 12, 0, tzinfo=ist))
        assert task.scheduled_time.replace(tzinfo=None) == datetime(2026, 4, 2, 6, 30)

    def test_groom_cannot_create(self, db, stable, make_task):
        with pytest.raises(Forbidden):
            make_task(stable["groom"], stable["groom"], stable["horse"])

    def test_missing_fields_reported_together(self, db, checker, stable):
        with pytest.raises(ValidationError) as exc:
            task_service.create_task(
                db,
                stable["manager"],
                name="  ",
                type="Daily",
                horse_id=None,
                assignee_id=stable["groom"].id,
                scheduled_time=None,
                checker=checker,
            )
        assert exc.value.message == "Missing required fields: name, horseId, scheduledTime"

    @pytest.mark.parametrize("field,value", [("type", "Monthly"), ("priority", "Critical")])
    def test_unrecognized_values(self, db, stable, make_task, field, value):
        with pytest.raises(ValidationError):
            make_task(stable["manager"], stable["groom"], stable["horse"], **{field: value})

    def test_unknown_horse_or_assignee(self, db, checker, stable, make_task, make_horse):
        import uuid

        with pytest.raises(NotFound):
            task_service.create_task(
                db,
                stable["manager"],
                name="x",
                type="Daily",
                horse_id=uuid.uuid4(),
                assignee_id=stable["groom"].id,
                scheduled_time=datetime(2026, 1, 1),
                checker=checker,
            )
        with pytest.raises(NotFound):
            task_service.create_task(
                db,
                stable["manager"],
                name="x",
                type="Daily",
                horse_id=stable["horse"].id,
                assignee_id=uuid.uuid4(),
                scheduled_time=datetime(2026, 1, 1),
                checker=checker,
            )

    def test_assignee_notified_and_audited(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        note = db.query(Notification).filter(Notification.recipient_id == stable["groom"].id).one()
        assert note.type == "Task Assignment"
        assert note.related_entity_id == task.id
        entry = db.query(AuditLog).filter(AuditLog.entity_id == task.id).one()
        assert entry.action == "CREATE"
        assert entry.integrity_hash


class TestListing:
    def test_supervisors_see_created_tasks(self, db, checker, stable, make_employee, make_task):
        other_manager = make_employee("Stable Manager")
        mine = make_task(stable["manager"], stable["groom"], stable["horse"])
        make_task(other_manager, stable["groom"], stable["horse"])
        rows, total = task_service.list_tasks(db, stable["manager"], checker=checker)
        assert total == 1
        assert [t.id for t in rows] == [mine.id]

    def test_staff_see_assigned_tasks(self, db, checker, stable, make_employee, make_task):
        other_groom = make_employee("Groom")
        make_task(stable["manager"], stable["groom"], stable["horse"])
        make_task(stable["manager"], other_groom, stable["horse"])
        rows, total = task_service.list_tasks(db, other_groom, checker=checker)
        assert total == 1
        assert rows[0].assigned_employee_id == other_groom.id

    def test_pending_review_shows_every_creator(self, db, checker, stable, make_employee, make_task):
        other_manager = make_employee("Stable Manager")
        task = make_task(other_manager, stable["groom"], stable["horse"])
        task_service.start_task(db, stable["groom"], task.id)
        task_service.submit_completion(db, stable["groom"], task.id, checker=checker)
        rows, total = task_service.list_tasks(db, stable["manager"], status="Pending Review", checker=checker)
        assert total == 1
        assert rows[0].id == task.id

    def test_ordered_by_schedule_desc_and_paginated(self, db, checker, stable, make_task):
        for day in (1, 3, 2):
            make_task(stable["manager"], stable["groom"], stable["horse"], scheduled_time=datetime(2026, 5, day))
        rows, total = task_service.list_tasks(db, stable["manager"], take=2, checker=checker)
        assert total == 3
        assert [t.scheduled_time.day for t in rows] == [3, 2]

    def test_my_tasks_for_supervisors(self, db, stable, make_task):
        mine = make_task(stable["director"], stable["manager"], stable["horse"])
        make_task(stable["manager"], stable["groom"], stable["horse"])
        rows, total = task_service.list_my_tasks(db, stable["manager"])
        assert total == 1
        assert rows[0].id == mine.id

    def test_unknown_status_filter(self, db, checker, stable):
        with pytest.raises(ValidationError):
            task_service.list_tasks(db, stable["manager"], status="Done", checker=checker)


class TestVisibility:
    def test_unrelated_staff_forbidden(self, db, checker, stable, make_employee, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(Forbidden):
            task_service.get_task(db, make_employee("Rider"), task.id, checker)

    def test_approvers_can_view(self, db, checker, stable, make_employee, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        assert task_service.get_task(db, make_employee("Ground Supervisor"), task.id, checker).id == task.id

    def test_missing_task(self, db, checker, stable):
        import uuid

        with pytest.raises(NotFound):
            task_service.get_task(db, stable["manager"], uuid.uuid4(), checker)


class TestLifecycle:
    def test_only_assignee_can_start(self, db, stable, make_employee, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(Forbidden):
            task_service.start_task(db, stable["manager"], task.id)
        with pytest.raises(Forbidden):
            task_service.start_task(db, make_employee("Groom"), task.id)

    def test_start_sets_timestamp(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        started = task_service.start_task(db, stable["groom"], task.id)
        assert started.status == "In Progress"
        assert started.started_at is not None

    def test_start_twice_is_invalid(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        task_service.start_task(db, stable["groom"], task.id)
        with pytest.raises(InvalidTransition):
            task_service.start_task(db, stable["groom"], task.id)

    def test_submit_before_start_is_invalid(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(InvalidTransition):
            task_service.submit_completion(db, stable["groom"], task.id, proof_image="https://img/1.jpg", checker=checker)

    def test_required_proof(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"], required_proof=True)
        task_service.start_task(db, stable["groom"], task.id)
        with pytest.raises(ValidationError):
            task_service.submit_completion(db, stable["groom"], task.id, proof_image="   ", checker=checker)
        assert db.get(Task, task.id).status == "In Progress"

        submitted = task_service.submit_completion(
            db, stable["groom"], task.id, proof_image="https://img/1.jpg", notes="All clean", checker=checker
        )
        assert submitted.status == "Pending Review"
        assert submitted.proof_image == "https://img/1.jpg"
        assert submitted.completion_notes == "All clean"
        assert submitted.submitted_at is not None

    def test_submit_by_someone_else(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        task_service.start_task(db, stable["groom"], task.id)
        with pytest.raises(Forbidden):
            task_service.submit_completion(db, stable["manager"], task.id, checker=checker)

    def test_cancel_closes_open_approval(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        task_service.start_task(db, stable["groom"], task.id)
        task_service.submit_completion(db, stable["groom"], task.id, checker=checker)
        cancelled = task_service.cancel_task(db, stable["manager"], task.id, reason="Horse travelling", checker=checker)
        assert cancelled.status == "Cancelled"
        approval = cancelled.approvals[0]
        assert approval.status == "Rejected"
        assert approval.notes == "Horse travelling"

    def test_cancel_terminal_task(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        task_service.cancel_task(db, stable["manager"], task.id, checker=checker)
        with pytest.raises(InvalidTransition):
            task_service.cancel_task(db, stable["manager"], task.id, checker=checker)

    def test_cancel_requires_owner_or_admin(self, db, checker, stable, make_employee, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(Forbidden):
            task_service.cancel_task(db, stable["groom"], task.id, checker=checker)
        assert task_service.cancel_task(db, stable["director"], task.id, checker=checker).status == "Cancelled"

    def test_delete(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(Forbidden):
            task_service.delete_task(db, stable["groom"], task.id, checker=checker)
        task_service.delete_task(db, stable["manager"], task.id, checker=checker)
        assert db.get(Task, task.id) is None
        assert db.query(AuditLog).filter(AuditLog.entity_id == task.id, AuditLog.action == "DELETE").count() == 1
