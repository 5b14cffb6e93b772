import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stablehub.db import Base
from stablehub.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from stablehub.models.models import Approval, Employee, Horse, Notification, Task, utcnow
from stablehub.services import approval_workflow, task_service
from stablehub.services.approval_workflow import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, can_transition


@pytest.fixture
def submitted(db, checker, stable, make_task):
    """A proof-required task sitting in Pending Review."""
    task = make_task(stable["manager"], stable["groom"], stable["horse"], required_proof=True)
    task_service.start_task(db, stable["groom"], task.id)
    return task_service.submit_completion(db, stable["groom"], task.id, proof_image="https://img/proof.jpg", checker=checker)


class TestTransitionTable:
    def test_terminal_states(self):
        assert TERMINAL_STATUSES == {"Approved", "Rejected", "Missed", "Cancelled"}

    @pytest.mark.parametrize("target", ["Pending", "In Progress", "Pending Review", "Rejected", "Cancelled"])
    def test_nothing_leaves_approved(self, target):
        assert not can_transition("Approved", target)

    def test_table_edges(self):
        assert can_transition("Pending", "In Progress")
        assert can_transition("In Progress", "Pending Review")
        assert can_transition("Pending Review", "Approved")
        assert not can_transition("Pending", "Approved")
        assert not can_transition("In Progress", "Approved")
        assert not can_transition("Bogus", "Pending")

    def test_every_status_has_an_entry(self):
        from stablehub.models.models import TASK_STATUSES

        assert set(ALLOWED_TRANSITIONS) == set(TASK_STATUSES)

    def test_transition_rejects_edge_outside_table(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(InvalidTransition):
            approval_workflow.transition(db, task.id, "Pending", "Approved")

    def test_transition_rejects_stale_expected_status(self, db, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(InvalidTransition, match="Task is Pending"):
            approval_workflow.transition(db, task.id, "In Progress", "Pending Review")


class TestRouting:
    def test_first_approver_is_supervisor(self, db, stable, submitted):
        approval = approval_workflow.get_open_approval(db, submitted.id)
        assert approval.approver_id == stable["manager"].id
        assert approval.approver_level == "Stable Manager"
        assert approval.sla_due_date > approval.created_at
        note = (
            db.query(Notification)
            .filter(Notification.recipient_id == stable["manager"].id, Notification.type == "Approval Request")
            .one()
        )
        assert note.related_entity_id == submitted.id

    def test_falls_back_to_creator(self, db, checker, stable, make_employee, make_task):
        # Supervisor cannot approve: the task creator reviews instead
        instructor = make_employee("Instructor")
        rider = make_employee("Rider", supervisor=instructor)
        task = make_task(stable["director"], rider, stable["horse"])
        task_service.start_task(db, rider, task.id)
        task_service.submit_completion(db, rider, task.id, checker=checker)
        approval = approval_workflow.get_open_approval(db, task.id)
        assert approval.approver_id == stable["director"].id
        assert approval.approver_level == "Director"

    def test_one_open_approval_per_level(self, db, stable, submitted):
        with pytest.raises(Conflict):
            approval_workflow.open_approval(db, submitted, stable["manager"])


class TestDecisions:
    def test_approve(self, db, checker, stable, submitted):
        task, approval = approval_workflow.approve_task(db, stable["manager"], submitted.id, notes="Good work", checker=checker)
        assert task.status == "Approved"
        assert approval.status == "Approved"
        assert approval.approver_id == stable["manager"].id
        assert approval.approved_at is not None
        assert approval.notes == "Good work"
        assert db.query(Approval).filter(Approval.task_id == task.id).count() == 1

    def test_reject_requires_notes(self, db, checker, stable, submitted):
        with pytest.raises(ValidationError):
            approval_workflow.reject_task(db, stable["manager"], submitted.id, notes="  ", checker=checker)
        task, approval = approval_workflow.reject_task(db, stable["manager"], submitted.id, notes="Missed the tack", checker=checker)
        assert task.status == "Rejected"
        assert approval.status == "Rejected"

    @pytest.mark.parametrize("role", ["Groom", "Instructor", "Jamedar", "Senior Executive Accounts"])
    def test_non_approvers_forbidden(self, db, checker, stable, submitted, make_employee, role):
        with pytest.raises(Forbidden):
            approval_workflow.approve_task(db, make_employee(role), submitted.id, checker=checker)
        with pytest.raises(Forbidden):
            approval_workflow.reject_task(db, make_employee(role), submitted.id, notes="no", checker=checker)

    def test_lower_level_cannot_approve(self, db, checker, stable, submitted, make_employee):
        with pytest.raises(Forbidden):
            approval_workflow.approve_task(db, make_employee("Ground Supervisor"), submitted.id, checker=checker)

    def test_higher_level_can_approve(self, db, checker, stable, submitted):
        task, approval = approval_workflow.approve_task(db, stable["director"], submitted.id, checker=checker)
        assert task.status == "Approved"
        assert approval.approver_id == stable["director"].id

    def test_cannot_review_own_task(self, db, checker, stable, make_task):
        task = make_task(stable["director"], stable["manager"], stable["horse"])
        task_service.start_task(db, stable["manager"], task.id)
        task_service.submit_completion(db, stable["manager"], task.id, checker=checker)
        with pytest.raises(Forbidden):
            approval_workflow.approve_task(db, stable["manager"], task.id, checker=checker)

    def test_approve_before_submission(self, db, checker, stable, make_task):
        task = make_task(stable["manager"], stable["groom"], stable["horse"])
        with pytest.raises(InvalidTransition):
            approval_workflow.approve_task(db, stable["manager"], task.id, checker=checker)

    def test_approved_is_final(self, db, checker, stable, submitted):
        approval_workflow.approve_task(db, stable["manager"], submitted.id, checker=checker)
        with pytest.raises(InvalidTransition):
            approval_workflow.reject_task(db, stable["manager"], submitted.id, notes="changed my mind", checker=checker)
        with pytest.raises(InvalidTransition):
            task_service.start_task(db, stable["groom"], submitted.id)

    def test_missing_task(self, db, checker, stable):
        import uuid

        with pytest.raises(NotFound):
            approval_workflow.approve_task(db, stable["manager"], uuid.uuid4(), checker=checker)

    def test_assignee_notified(self, db, checker, stable, submitted):
        approval_workflow.approve_task(db, stable["manager"], submitted.id, checker=checker)
        kinds = [
            n.type for n in db.query(Notification).filter(Notification.recipient_id == stable["groom"].id).all()
        ]
        assert "Approval Decision" in kinds


class TestOverride:
    def test_admin_reopens_approved_task(self, db, checker, stable, submitted, make_employee):
        approval_workflow.approve_task(db, stable["manager"], submitted.id, checker=checker)
        admin = make_employee("School Administrator")
        task = approval_workflow.override_status(db, admin, submitted.id, "Pending Review", notes="Re-check", checker=checker)
        assert task.status == "Pending Review"
        assert approval_workflow.get_open_approval(db, task.id).approver_id == stable["manager"].id

    def test_override_to_rejected_records_decision(self, db, checker, stable, submitted):
        task = approval_workflow.override_status(db, stable["director"], submitted.id, "Rejected", notes="Redo", checker=checker)
        assert task.status == "Rejected"
        statuses = [a.status for a in approval_workflow.get_task_approvals(db, task.id)]
        assert statuses == ["Rejected"]

    def test_manager_cannot_override(self, db, checker, stable, submitted):
        with pytest.raises(Forbidden):
            approval_workflow.override_status(db, stable["manager"], submitted.id, "Approved", checker=checker)

    def test_unknown_status(self, db, checker, stable, submitted):
        with pytest.raises(ValidationError):
            approval_workflow.override_status(db, stable["director"], submitted.id, "Done", checker=checker)


class TestListing:
    def test_approvers_see_their_own(self, db, checker, stable, submitted, make_employee):
        rows, total = approval_workflow.list_approvals(db, stable["manager"], checker=checker)
        assert total == 1
        rows, total = approval_workflow.list_approvals(db, make_employee("Ground Supervisor"), checker=checker)
        assert total == 0

    def test_admins_see_all(self, db, checker, stable, submitted):
        rows, total = approval_workflow.list_approvals(db, stable["director"], status="Pending", checker=checker)
        assert total == 1
        assert rows[0].task_id == submitted.id


class TestConcurrentDecisions:
    def test_only_one_decision_wins(self, tmp_path, checker):
        # Two independent connections against one file database
        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}, future=True
        )
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
        setup, first, second = factory(), factory(), factory()
        try:
            def employee(designation, supervisor=None):
                row = Employee(
                    email=f"{designation.lower().replace(' ', '.')}@race.test",
                    password_hash="x",
                    full_name=designation,
                    designation=designation,
                    supervisor_id=supervisor.id if supervisor else None,
                    employment_status="Active",
                    is_approved=True,
                )
                setup.add(row)
                setup.flush()
                return row

            director = employee("Director")
            manager = employee("Stable Manager", director)
            groom = employee("Groom", manager)
            horse = Horse(name="Perseus")
            setup.add(horse)
            setup.commit()

            task = task_service.create_task(
                setup,
                manager,
                name="Evening feed",
                type="Daily",
                horse_id=horse.id,
                assignee_id=groom.id,
                scheduled_time=utcnow(),
                checker=checker,
            )
            task_service.start_task(setup, groom, task.id)
            task_service.submit_completion(setup, groom, task.id, checker=checker)

            # Both reviewers load the task while it is still Pending Review
            assert first.get(Task, task.id).status == "Pending Review"
            assert second.get(Task, task.id).status == "Pending Review"

            approved, _ = approval_workflow.approve_task(first, first.get(Employee, manager.id), task.id, checker=checker)
            assert approved.status == "Approved"

            with pytest.raises(InvalidTransition):
                approval_workflow.reject_task(second, second.get(Employee, director.id), task.id, notes="Late", checker=checker)
            second.rollback()

            check = factory()
            assert check.get(Task, task.id).status == "Approved"
            assert [a.status for a in approval_workflow.get_task_approvals(check, task.id)] == ["Approved"]
            check.close()
        finally:
            for session in (setup, first, second):
                session.close()
            engine.dispose()
