"""
Approval Workflow Tests
Submission, decisions, escalation, partial approval and rollback
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from datetime import date
from loguru import logger

from approval_engine.models import (
    ApprovalChain,
    ApprovalChainLevel,
    ApprovalRecord,
    ApprovalStatus,
    AuditLog,
    GradeChainAssignment,
    LevelType,
    Notification,
    NotificationType,
    PolicyViolationRecord,
    RequestStatus,
    SpendRequest,
    User,
    UserRole,
    UserRoleAssignment,
)
from approval_engine.services import RequestContext
from approval_engine.services.approval_workflow import (
    ApprovalWorkflowService,
    approval_workflow_service,
    can_transition,
)
from approval_engine.models.spend_request import RequestKind
from approval_engine.services.audit_service import audit_service
from approval_engine.services.chain_level_resolver import ChainLevelResolver
from approval_engine.services.request_service import request_service, trip_length
from approval_engine.utils.exceptions import (
    AlreadyDecided,
    EntityNotFound,
    InvalidAmount,
    InvalidTransition,
    MissingField,
    MissingViolationExplanation,
    NoManagerAssigned,
    NotAuthorizedApprover,
    SubmissionValidationError,
)
from tests.test_chains import TestingSessionLocal, org, test_db

TRIP = {
    "purpose": "Customer visit",
    "destination_city": "Haifa",
    "destination_country": "Israel",
    "start_date": date(2026, 3, 1),
    "end_date": date(2026, 3, 4),
}


@pytest.fixture
def db(test_db):
    session = TestingSessionLocal()
    yield session
    session.close()


def ctx(org, user_id):
    return RequestContext(organization_id=org.id, user_id=user_id)


def draft(db, org, user_id=None, kind=RequestKind.TRAVEL_REQUEST, **values):
    """Draft request: 3 nights / 4 days, flights 1000, 150/night, 50/day unless overridden"""
    data = dict(TRIP)
    data.update({"flights": 1000, "accommodation_per_night": 150, "meals_per_day": 50})
    data.update(values)
    request = request_service.create_request(db, ctx(org, user_id or org.employee), kind, data)
    return request.id


def pending_record(db, request_id):
    return db.query(ApprovalRecord).filter(
        ApprovalRecord.request_id == request_id,
        ApprovalRecord.status == ApprovalStatus.PENDING
    ).one()


def get_request(db, request_id):
    db.expire_all()
    return db.query(SpendRequest).filter(SpendRequest.id == request_id).one()


class TestTransitions:
    """Test the transition table"""

    def test_submit_transitions(self):
        for kind in RequestKind:
            assert can_transition(kind, RequestStatus.DRAFT, RequestStatus.PENDING_APPROVAL)
            assert can_transition(kind, RequestStatus.PENDING_APPROVAL, RequestStatus.REJECTED)
            assert not can_transition(kind, RequestStatus.APPROVED, RequestStatus.PENDING_APPROVAL)

    def test_report_only_transitions(self):
        report, travel = RequestKind.EXPENSE_REPORT, RequestKind.TRAVEL_REQUEST
        assert can_transition(report, RequestStatus.REJECTED, RequestStatus.OPEN)
        assert not can_transition(travel, RequestStatus.REJECTED, RequestStatus.OPEN)
        assert can_transition(report, RequestStatus.APPROVED, RequestStatus.CLOSED)
        assert not can_transition(travel, RequestStatus.APPROVED, RequestStatus.CLOSED)

    def test_trip_length(self):
        assert trip_length(date(2026, 3, 1), date(2026, 3, 4)) == (3, 4)
        assert trip_length(date(2026, 3, 1), date(2026, 3, 1)) == (0, 1)
        assert trip_length(None, date(2026, 3, 1)) == (0, 0)


class TestSubmission:
    """Test submit()"""

    def test_submit_routes_to_manager(self, db, org):
        request_id = draft(db, org)
        status = approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        assert status == RequestStatus.PENDING_APPROVAL
        request = get_request(db, request_id)
        assert request.total_amount == 1650
        assert request.chain_id == org.chain_a
        assert request.current_approval_level == 1
        assert request.submitted_at is not None

        record = pending_record(db, request_id)
        assert record.approver_id == org.manager
        assert record.approval_level == 1
        assert record.level_type == "direct_manager"

        notification = db.query(Notification).filter(Notification.user_id == org.manager).one()
        assert notification.type == NotificationType.LEVEL_PENDING
        assert notification.request_id == request_id

    def test_missing_fields_collected(self, db, org):
        request_id = draft(db, org, purpose=None, destination_city="")
        with pytest.raises(SubmissionValidationError) as exc_info:
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        errors = exc_info.value.errors
        assert all(isinstance(e, MissingField) for e in errors)
        assert {e.field for e in errors} == {"purpose", "destination_city"}
        assert get_request(db, request_id).status == RequestStatus.DRAFT

    def test_expense_report_requires_title(self, db, org):
        request_id = draft(db, org, kind=RequestKind.EXPENSE_REPORT)
        with pytest.raises(SubmissionValidationError) as exc_info:
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        assert [e.field for e in exc_info.value.errors] == ["title"]

    def test_violation_needs_explanation(self, db, org):
        """Test 250/night against the 200 limit blocks submission until explained"""
        request_id = draft(db, org, accommodation_per_night=250)
        with pytest.raises(SubmissionValidationError) as exc_info:
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        [error] = exc_info.value.errors
        assert isinstance(error, MissingViolationExplanation)
        assert error.field == "explanations.accommodation"
        assert error.details["overage_percentage"] == pytest.approx(25.0)

    def test_all_problems_reported_together(self, db, org):
        request_id = draft(db, org, purpose=None, accommodation_per_night=250)
        with pytest.raises(SubmissionValidationError) as exc_info:
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id, {"accommodation": "  "})
        assert {type(e) for e in exc_info.value.errors} == {MissingField, MissingViolationExplanation}

    def test_explained_violation_is_recorded(self, db, org):
        request_id = draft(db, org, accommodation_per_night=250)
        approval_workflow_service.submit(
            db, ctx(org, org.employee), request_id, {"accommodation": "Conference hotel"}
        )

        [violation] = db.query(PolicyViolationRecord).filter(PolicyViolationRecord.request_id == request_id).all()
        assert violation.overage_amount == 50
        assert violation.overage_percentage == pytest.approx(25.0)
        assert violation.employee_explanation == "Conference hotel"
        assert violation.requires_special_approval is True

    def test_no_manager_is_fatal(self, db, org):
        request_id = draft(db, org, user_id=org.loner)
        with pytest.raises(NoManagerAssigned):
            approval_workflow_service.submit(db, ctx(org, org.loner), request_id)
        request = get_request(db, request_id)
        assert request.status == RequestStatus.DRAFT
        assert request.approvals == []

    def test_cannot_submit_twice(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        with pytest.raises(InvalidTransition):
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

    def test_rollback_when_persistence_fails(self, db, org, monkeypatch):
        request_id = draft(db, org)

        def broken_record(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit_service, "record", broken_record)
        with pytest.raises(RuntimeError):
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        request = get_request(db, request_id)
        assert request.status == RequestStatus.DRAFT
        assert request.submission_count == 0
        assert db.query(ApprovalRecord).count() == 0


class TestDecisions:
    """Test decide()"""

    def test_approve_round_trip(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        status = approval_workflow_service.decide(db, ctx(org, org.manager), record_id, "approve", comments="OK")

        assert status == RequestStatus.APPROVED
        request = get_request(db, request_id)
        assert request.approved_total == 1650
        assert request.approved_budget["accommodation_total"] == 450
        assert request.approved_budget["meals_total"] == 200
        assert request.final_decision_at is not None

        notice = db.query(Notification).filter(Notification.user_id == org.employee).one()
        assert notice.type == NotificationType.REQUEST_APPROVED

    def test_second_decision_is_already_decided(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        approval_workflow_service.decide(db, ctx(org, org.manager), record_id, "approve")
        with pytest.raises(AlreadyDecided) as exc_info:
            approval_workflow_service.decide(db, ctx(org, org.manager), record_id, "reject", comments="late")

        assert exc_info.value.benign is True
        assert get_request(db, request_id).status == RequestStatus.APPROVED

    def test_concurrent_decisions_only_one_wins(self, db, org):
        """Test a decider holding a stale record loses to the committed decision"""
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        slow = TestingSessionLocal()
        try:
            stale = slow.query(ApprovalRecord).filter(ApprovalRecord.id == record_id).one()
            assert stale.request.status == RequestStatus.PENDING_APPROVAL

            approval_workflow_service.decide(db, ctx(org, org.manager), record_id, "approve")

            with pytest.raises(AlreadyDecided):
                approval_workflow_service.decide(slow, ctx(org, org.manager), record_id, "reject")
        finally:
            slow.close()

        request = get_request(db, request_id)
        assert request.status == RequestStatus.APPROVED
        assert db.query(ApprovalRecord).filter(ApprovalRecord.id == record_id).one().status == ApprovalStatus.APPROVED

    def test_only_assigned_approver_decides(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        with pytest.raises(NotAuthorizedApprover):
            approval_workflow_service.decide(db, ctx(org, org.accounting), record_id, "approve")

    def test_reject(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        status = approval_workflow_service.decide(
            db, ctx(org, org.manager), record_id, "reject", comments="Too expensive"
        )

        assert status == RequestStatus.REJECTED
        request = get_request(db, request_id)
        assert request.rejection_reason == "Too expensive"
        assert request.approved_total is None

    def test_partial_approval(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        status = approval_workflow_service.decide(
            db, ctx(org, org.manager), record_id, "approve_with_changes",
            modified_amounts={"accommodation_per_night": 120},
        )

        assert status == RequestStatus.PARTIALLY_APPROVED
        request = get_request(db, request_id)
        assert request.approved_accommodation_per_night == 120
        assert request.approved_flights == 1000
        assert request.approved_total == 1000 + 120 * 3 + 50 * 4
        assert request.approved_budget["accommodation_total"] == 360

    def test_modified_amount_cannot_exceed_request(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        with pytest.raises(InvalidAmount):
            approval_workflow_service.decide(
                db, ctx(org, org.manager), record_id, "approve_with_changes",
                modified_amounts={"flights": 1200},
            )
        assert pending_record(db, request_id).id == record_id

    def test_rollback_when_persistence_fails(self, db, org, monkeypatch):
        request_id = draft(db, org, flights=6000)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record_id = pending_record(db, request_id).id

        def broken_record(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit_service, "record", broken_record)
        with pytest.raises(RuntimeError):
            approval_workflow_service.decide(db, ctx(org, org.manager), record_id, "approve")
        monkeypatch.undo()

        request = get_request(db, request_id)
        assert request.status == RequestStatus.PENDING_APPROVAL
        assert request.current_approval_level == 1
        assert pending_record(db, request_id).id == record_id
        assert db.query(ApprovalRecord).filter(ApprovalRecord.request_id == request_id).count() == 1


class TestMultiLevelChains:
    """Test chains with several levels, skips and escalation"""

    def test_levels_run_in_order_and_skip_under_threshold(self, db, org):
        """Test 6650 uses chain B and skips its org-admin level (under 20,000)"""
        request_id = draft(db, org, flights=6000)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        assert get_request(db, request_id).chain_id == org.chain_b

        first = pending_record(db, request_id)
        assert first.approver_id == org.manager
        approval_workflow_service.decide(db, ctx(org, org.manager), first.id, "approve")

        second = pending_record(db, request_id)
        assert (second.approval_level, second.approver_id) == (2, org.accounting)
        status = approval_workflow_service.decide(db, ctx(org, org.accounting), second.id, "approve")

        assert status == RequestStatus.APPROVED
        skipped = db.query(Notification).filter(
            Notification.user_id == org.employee,
            Notification.type == NotificationType.APPROVAL_SKIPPED
        ).all()
        assert len(skipped) == 1

    def test_escalation_after_last_static_level(self, db, org):
        """Test a 50% overage on a one-level chain adds an org-admin level"""
        request_id = draft(db, org, accommodation_per_night=300)
        approval_workflow_service.submit(
            db, ctx(org, org.employee), request_id, {"accommodation": "Only hotel near the site"}
        )
        first = pending_record(db, request_id)

        status = approval_workflow_service.decide(db, ctx(org, org.manager), first.id, "approve")

        assert status == RequestStatus.PENDING_APPROVAL
        escalation = pending_record(db, request_id)
        assert escalation.is_escalation is True
        assert escalation.approval_level == 2
        assert escalation.approver_id == org.admin
        assert get_request(db, request_id).escalated is True

        status = approval_workflow_service.decide(db, ctx(org, org.admin), escalation.id, "approve")
        assert status == RequestStatus.APPROVED

    def test_no_escalation_at_level_cap(self, db, org):
        """Test a 50% overage decided at level 3 of 3 is final"""
        request_id = draft(db, org, flights=19000, accommodation_per_night=300)
        approval_workflow_service.submit(
            db, ctx(org, org.employee), request_id, {"accommodation": "Only hotel near the site"}
        )
        for approver in (org.manager, org.accounting):
            approval_workflow_service.decide(
                db, ctx(org, approver), pending_record(db, request_id).id, "approve"
            )

        last = pending_record(db, request_id)
        assert (last.approval_level, last.approver_id, last.is_escalation) == (3, org.admin, False)
        status = approval_workflow_service.decide(db, ctx(org, org.admin), last.id, "approve")

        assert status == RequestStatus.APPROVED
        assert get_request(db, request_id).escalated is False

    def test_escalation_respects_configured_cap(self, db, org):
        service = ApprovalWorkflowService(escalation_level_cap=1)
        request_id = draft(db, org, accommodation_per_night=300)
        service.submit(db, ctx(org, org.employee), request_id, {"accommodation": "Only hotel near the site"})

        status = service.decide(db, ctx(org, org.manager), pending_record(db, request_id).id, "approve")
        assert status == RequestStatus.APPROVED

    def test_pending_for(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        assert [r.request_id for r in approval_workflow_service.pending_for(db, ctx(org, org.manager))] == [request_id]
        assert approval_workflow_service.pending_for(db, ctx(org, org.accounting)) == []


class TestExpenseReportLifecycle:
    """Test reopen() and close()"""

    def test_reject_reopen_resubmit_close(self, db, org):
        request_id = draft(db, org, kind=RequestKind.EXPENSE_REPORT, title="March trip")
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        approval_workflow_service.decide(
            db, ctx(org, org.manager), pending_record(db, request_id).id, "reject", comments="Missing receipts"
        )

        assert approval_workflow_service.reopen(db, ctx(org, org.employee), request_id) == RequestStatus.OPEN

        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        record = pending_record(db, request_id)
        assert record.submission_round == 2
        assert get_request(db, request_id).rejection_reason is None

        approval_workflow_service.decide(db, ctx(org, org.manager), record.id, "approve")
        assert approval_workflow_service.close(db, ctx(org, org.employee), request_id) == RequestStatus.CLOSED

    def test_travel_request_cannot_reopen(self, db, org):
        request_id = draft(db, org)
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        approval_workflow_service.decide(db, ctx(org, org.manager), pending_record(db, request_id).id, "reject")

        with pytest.raises(InvalidTransition):
            approval_workflow_service.reopen(db, ctx(org, org.employee), request_id)

    def test_cannot_close_pending_report(self, db, org):
        request_id = draft(db, org, kind=RequestKind.EXPENSE_REPORT, title="March trip")
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)

        with pytest.raises(InvalidTransition):
            approval_workflow_service.close(db, ctx(org, org.employee), request_id)


class TestOwnership:
    """Test only the requester acts on their own request"""

    def test_other_user_cannot_submit(self, db, org):
        request_id = draft(db, org)
        with pytest.raises(EntityNotFound):
            approval_workflow_service.submit(db, ctx(org, org.loner), request_id)

        request = get_request(db, request_id)
        assert request.status == RequestStatus.DRAFT
        assert request.approvals == []

    def test_other_user_cannot_reopen(self, db, org):
        request_id = draft(db, org, kind=RequestKind.EXPENSE_REPORT, title="March trip")
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        approval_workflow_service.decide(
            db, ctx(org, org.manager), pending_record(db, request_id).id, "reject", comments="Missing receipts"
        )

        with pytest.raises(EntityNotFound):
            approval_workflow_service.reopen(db, ctx(org, org.loner), request_id)
        assert get_request(db, request_id).status == RequestStatus.REJECTED

    def test_other_user_cannot_close(self, db, org):
        request_id = draft(db, org, kind=RequestKind.EXPENSE_REPORT, title="March trip")
        approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        approval_workflow_service.decide(db, ctx(org, org.manager), pending_record(db, request_id).id, "approve")

        with pytest.raises(EntityNotFound):
            approval_workflow_service.close(db, ctx(org, org.loner), request_id)
        assert get_request(db, request_id).status == RequestStatus.APPROVED


class TestOrgAdminFanOut:
    """Test levels decided by one of several org admins"""

    @pytest.fixture
    def second_admin(self, db, org):
        """Second org admin, and a one-level org-admin chain for junior grades"""
        admin = User(
            organization_id=org.id,
            email="admin2@test.org",
            full_name="Admin2",
            grade_id=org.senior,
            is_active=True,
        )
        db.add(admin)
        db.flush()
        db.add(UserRoleAssignment(user_id=admin.id, role=UserRole.ORG_ADMIN))

        chain = ApprovalChain(organization_id=org.id, name="Admins")
        chain.levels = [ApprovalChainLevel(level_order=1, level_type=LevelType.ORG_ADMIN, is_required=True)]
        db.add(chain)
        db.flush()
        db.add(GradeChainAssignment(organization_id=org.id, chain_id=chain.id, grade_id=org.junior, min_amount=0))
        db.commit()
        return admin.id

    @pytest.fixture
    def service(self):
        return ApprovalWorkflowService(level_resolver=ChainLevelResolver(org_admin_fanout=True))

    def test_decider_is_recorded(self, db, org, second_admin, service):
        request_id = draft(db, org)
        service.submit(db, ctx(org, org.employee), request_id)
        record = pending_record(db, request_id)
        assert record.candidate_ids == [org.admin, second_admin]
        assert record.approver_id == org.admin

        service.decide(db, ctx(org, second_admin), record.id, "approve")

        db.expire_all()
        decided = db.query(ApprovalRecord).filter(ApprovalRecord.id == record.id).one()
        assert decided.decided_by == second_admin
        assert decided.approver_id == org.admin

    def test_escalation_skips_the_admin_who_decided(self, db, org, second_admin, service):
        """Test the admin who approved level 1 cannot also approve the escalation"""
        request_id = draft(db, org, accommodation_per_night=300)
        service.submit(db, ctx(org, org.employee), request_id, {"accommodation": "Only hotel near the site"})

        status = service.decide(db, ctx(org, second_admin), pending_record(db, request_id).id, "approve")

        assert status == RequestStatus.PENDING_APPROVAL
        escalation = pending_record(db, request_id)
        assert escalation.is_escalation is True
        assert escalation.candidate_ids == [org.admin]
        assert escalation.can_be_decided_by(second_admin) is False

        with pytest.raises(NotAuthorizedApprover):
            service.decide(db, ctx(org, second_admin), escalation.id, "approve")

        status = service.decide(db, ctx(org, org.admin), escalation.id, "approve")
        assert status == RequestStatus.APPROVED


class TestAuditTrail:
    """Test audit rows and audit log lines follow the transaction"""

    @pytest.fixture
    def audit_lines(self):
        lines = []
        handler_id = logger.add(lines.append, format="{message}", filter=lambda record: "AUDIT" in record["extra"])
        yield lines
        logger.remove(handler_id)

    def test_line_written_on_commit(self, db, org, audit_lines):
        audit_service.record(db, ctx(org, org.admin), "create_grade", "employee_grade", 1, "Created 'Lead'")
        assert audit_lines == []

        db.commit()

        [line] = audit_lines
        assert "ACTION=create_grade" in line
        assert f"USER_ID={org.admin}" in line

    def test_rolled_back_change_leaves_no_line(self, db, org, audit_lines):
        audit_service.record(db, ctx(org, org.admin), "create_grade", "employee_grade", 1, "Created 'Lead'")
        db.rollback()
        db.commit()

        assert audit_lines == []
        assert db.query(AuditLog).filter(AuditLog.action == "create_grade").count() == 0

    def test_failed_submission_leaves_no_line(self, db, org, audit_lines, monkeypatch):
        request_id = draft(db, org)
        audit_lines.clear()

        def broken_commit():
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(RuntimeError):
            approval_workflow_service.submit(db, ctx(org, org.employee), request_id)
        monkeypatch.undo()

        assert audit_lines == []
        assert get_request(db, request_id).status == RequestStatus.DRAFT
