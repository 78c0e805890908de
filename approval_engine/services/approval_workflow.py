"""
Approval Workflow Service
Status transitions for expense reports and travel requests.

Every transition writes the request status together with its approval
records in one transaction. Approval decisions are claimed with a
conditional UPDATE on the pending record, so two concurrent deciders can
never both win.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from approval_engine.config.settings import settings
from approval_engine.models.approval import ApprovalRecord, ApprovalStatus
from approval_engine.models.approval_chain import LevelType
from approval_engine.models.notification import NotificationType
from approval_engine.models.policy import PolicyViolationRecord
from approval_engine.models.spend_request import (
    BUDGET_FIELDS,
    RequestKind,
    RequestStatus,
    SpendRequest,
    budget_total,
)
from approval_engine.models.user import UserRole
from approval_engine.services.audit_service import audit_service
from approval_engine.services.chain_level_resolver import (
    ChainLevelResolver,
    OrganizationDirectory,
    RequesterProfile,
    ResolvedApprover,
    SkippedLevel,
    chain_level_resolver,
)
from approval_engine.services.context import RequestContext
from approval_engine.services.directory_service import directory_service
from approval_engine.services.grade_assignment_resolver import grade_assignment_service
from approval_engine.services.notification_service import notification_service
from approval_engine.services.policy_compliance import (
    PolicyComplianceEvaluator,
    PolicyViolation,
    RequestedAmounts,
    TripMeta,
    policy_compliance_service,
)
from approval_engine.utils.exceptions import (
    AlreadyDecided,
    EntityNotFound,
    FieldValidationError,
    InvalidAmount,
    InvalidTransition,
    MissingField,
    MissingViolationExplanation,
    NotAuthorizedApprover,
    SubmissionValidationError,
)
from approval_engine.utils.helpers import coerce_amount
from approval_engine.utils.logger import setup_logger

logger = setup_logger()


class Decision(str, Enum):
    APPROVE = "approve"
    APPROVE_WITH_CHANGES = "approve_with_changes"
    REJECT = "reject"


S = RequestStatus

# Allowed transitions for every kind of request
TRANSITIONS = {
    S.DRAFT: {S.PENDING_APPROVAL, S.APPROVED},
    S.OPEN: {S.PENDING_APPROVAL, S.APPROVED},
    S.PENDING_APPROVAL: {S.PENDING_APPROVAL, S.APPROVED, S.PARTIALLY_APPROVED, S.REJECTED},
    S.APPROVED: set(),
    S.PARTIALLY_APPROVED: set(),
    S.REJECTED: set(),
    S.CLOSED: set(),
}

# Extra transitions only expense reports have
REPORT_TRANSITIONS = {
    S.DRAFT: {S.OPEN},
    S.OPEN: {S.CLOSED},
    S.APPROVED: {S.CLOSED},
    S.PARTIALLY_APPROVED: {S.CLOSED},
    S.REJECTED: {S.OPEN},
}

SUBMITTABLE = {S.DRAFT, S.OPEN}

REQUIRED_FIELDS = {
    RequestKind.TRAVEL_REQUEST: ("purpose", "destination_city", "destination_country", "start_date", "end_date"),
    RequestKind.EXPENSE_REPORT: ("title",),
}


def can_transition(kind: RequestKind, current: RequestStatus, target: RequestStatus) -> bool:
    allowed = set(TRANSITIONS.get(current, set()))
    if RequestKind(kind) == RequestKind.EXPENSE_REPORT:
        allowed |= REPORT_TRANSITIONS.get(current, set())
    return target in allowed


def transition(request: SpendRequest, target: RequestStatus):
    """Move a request to target, rejecting anything outside the table"""
    current = RequestStatus(request.status)
    if not can_transition(request.kind, current, target):
        raise InvalidTransition(RequestKind(request.kind).value, current.value, target.value)
    request.status = target


class ApprovalWorkflowService:
    """Submission, decisions and report lifecycle"""

    def __init__(
        self,
        evaluator: Optional[PolicyComplianceEvaluator] = None,
        level_resolver: Optional[ChainLevelResolver] = None,
        escalation_level_cap: Optional[int] = None
    ):
        self.evaluator = evaluator or policy_compliance_service.evaluator
        self.level_resolver = level_resolver or chain_level_resolver
        self.escalation_level_cap = (
            settings.ESCALATION_LEVEL_CAP if escalation_level_cap is None else escalation_level_cap
        )
        self.notifier = notification_service
        self.directory = directory_service
        self.chains = grade_assignment_service
        self.audit = audit_service

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_request(self, db: Session, ctx: RequestContext, request_id: int) -> SpendRequest:
        request = db.query(SpendRequest).filter(
            SpendRequest.id == request_id,
            SpendRequest.organization_id == ctx.organization_id
        ).first()
        if not request:
            raise EntityNotFound("Request", request_id)
        return request

    def get_approval(self, db: Session, approval_id: int) -> ApprovalRecord:
        record = db.query(ApprovalRecord).filter(ApprovalRecord.id == approval_id).first()
        if not record:
            raise EntityNotFound("Approval", approval_id)
        return record

    def get_own_request(self, db: Session, ctx: RequestContext, request_id: int) -> SpendRequest:
        """A request of the acting user; other people's requests are not found"""
        request = self.get_request(db, ctx, request_id)
        if request.requester_id != ctx.user_id:
            raise EntityNotFound("Request", request_id)
        return request

    def pending_for(self, db: Session, ctx: RequestContext) -> List[ApprovalRecord]:
        """Pending approval records the acting user may decide"""
        records = db.query(ApprovalRecord).join(SpendRequest).filter(
            SpendRequest.organization_id == ctx.organization_id,
            ApprovalRecord.status == ApprovalStatus.PENDING
        ).order_by(ApprovalRecord.created_at.desc()).all()
        return [r for r in records if r.can_be_decided_by(ctx.user_id)]

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate_submission(
        self,
        db: Session,
        request: SpendRequest,
        profile: RequesterProfile,
        explanations: Dict[str, str]
    ) -> List[PolicyViolation]:
        """
        Collect every problem with a submission

        Returns:
            Policy violations of the request (each one explained)

        Raises:
            SubmissionValidationError: One or more problems, all listed
        """
        errors: List[FieldValidationError] = []

        for field in REQUIRED_FIELDS[RequestKind(request.kind)]:
            value = getattr(request, field)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors.append(MissingField(field))

        if request.start_date and request.end_date and request.end_date < request.start_date:
            errors.append(FieldValidationError("end_date", "end_date must not be before start_date"))

        violations: List[PolicyViolation] = []
        try:
            amounts = RequestedAmounts.from_request(request)
            trip = TripMeta(
                nights=request.nights or 0,
                days=request.days or 0,
                destination_type=request.destination_type,
            )
        except InvalidAmount as e:
            errors.append(e)
        else:
            rules = policy_compliance_service.get_rules(db, request.organization_id)
            violations = self.evaluator.evaluate(amounts, trip, profile.grade_id, rules)

        for violation in violations:
            explanation = explanations.get(violation.category.value) or ""
            if not explanation.strip():
                errors.append(MissingViolationExplanation(violation.category.value, violation.overage_percentage))

        if errors:
            logger.info(f"Submission of request {request.id} rejected with {len(errors)} error(s)")
            raise SubmissionValidationError(errors)
        return violations

    def submit(
        self,
        db: Session,
        ctx: RequestContext,
        request_id: int,
        explanations: Optional[Dict[str, str]] = None
    ) -> RequestStatus:
        """
        Submit a draft/open request for approval

        Args:
            db: Database session
            ctx: Acting context
            request_id: Request ID
            explanations: Employee explanation per violated category

        Returns:
            RequestStatus: pending_approval, or approved when nobody needs to approve

        Raises:
            SubmissionValidationError: Missing fields, bad amounts, unexplained violations
            NoApplicableChain / NoManagerAssigned / NoRoleOccupant / ReferencedUserMissing
            InvalidTransition: Request is not in draft/open
            EntityNotFound: Unknown request, or not the acting user's
        """
        request = self.get_own_request(db, ctx, request_id)
        current = RequestStatus(request.status)
        if current not in SUBMITTABLE or not can_transition(request.kind, current, S.PENDING_APPROVAL):
            raise InvalidTransition(RequestKind(request.kind).value, current.value, S.PENDING_APPROVAL.value)

        explanations = {str(k): v for k, v in (explanations or {}).items()}
        profile = self.directory.get_profile(db, request.requester_id)
        violations = self.validate_submission(db, request, profile, explanations)

        total = request.compute_total()
        chain = self.chains.try_resolve_chain(db, request.organization_id, profile.grade_id, total)
        directory = self.directory.load_directory(db, request.organization_id)

        approver, skipped = None, []
        if chain is not None:
            approver, skipped = self.level_resolver.next_approver(chain.levels, profile, directory, total)

        events: List[Tuple[str, Dict[str, Any]]] = []
        try:
            now = datetime.utcnow()
            request.total_amount = total
            request.chain_id = chain.id if chain is not None else None
            request.submitted_at = now
            request.rejection_reason = None
            request.escalated = False
            request.final_decision_at = None
            request.submission_count = (request.submission_count or 0) + 1

            request.violations.clear()
            for violation in violations:
                request.violations.append(PolicyViolationRecord(
                    rule_id=violation.rule_id,
                    category=violation.category,
                    requested_amount=violation.requested_amount,
                    policy_limit=violation.policy_limit,
                    overage_amount=violation.overage_amount,
                    overage_percentage=violation.overage_percentage,
                    employee_explanation=explanations[violation.category.value].strip(),
                    requires_special_approval=self.evaluator.requires_special_approval(violation),
                ))

            events.extend(self._skip_events(request, skipped))

            if approver is None and self._should_escalate(request, 0):
                approver = self._escalation_approver(request, profile, directory, level_order=1)
                if approver is not None:
                    request.escalated = True

            if approver is not None:
                record = self._open_level(db, request, approver, is_escalation=request.escalated)
                transition(request, S.PENDING_APPROVAL)
                events.append(self._pending_event(request, record))
            else:
                logger.info(f"Request {request.id} needs no approval; approving as requested")
                self._finalize(request, now)
                events.append(self._final_event(request, None))

            self.audit.record(
                db, ctx, "submit_request", "spend_request", request.id,
                f"Submitted {RequestKind(request.kind).value} for {total:.2f} "
                f"({len(violations)} violation(s)) -> {RequestStatus(request.status).value}",
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Submission of request {request_id} failed; rolled back")
            raise

        db.refresh(request)
        self._publish(db, events)
        logger.info(f"Request {request.id} submitted -> {RequestStatus(request.status).value}")
        return RequestStatus(request.status)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def validate_modified_amounts(
        self,
        request: SpendRequest,
        modified_amounts: Optional[Dict[str, Any]]
    ) -> Dict[str, float]:
        """Modified lines must be known, non-negative and not above the request"""
        if not modified_amounts:
            return {}
        requested = request.requested_budget()
        cleaned = {}
        for field, value in modified_amounts.items():
            if field not in BUDGET_FIELDS:
                raise FieldValidationError(field, f"Unknown budget line '{field}'")
            amount = coerce_amount(value, field)
            if amount is None:
                continue
            if amount > requested[field]:
                raise InvalidAmount(field, value, "cannot exceed the requested amount")
            cleaned[field] = amount
        return cleaned

    def decide(
        self,
        db: Session,
        ctx: RequestContext,
        approval_id: int,
        decision,
        modified_amounts: Optional[Dict[str, Any]] = None,
        comments: Optional[str] = None
    ) -> RequestStatus:
        """
        Record an approver's decision and advance the request

        Args:
            db: Database session
            ctx: Acting context (the approver)
            approval_id: ApprovalRecord ID
            decision: approve, approve_with_changes or reject
            modified_amounts: Reduced budget lines (approve_with_changes)
            comments: Approver comments / rejection reason

        Returns:
            RequestStatus: New status of the request

        Raises:
            AlreadyDecided: The record was decided by someone else first
            NotAuthorizedApprover: Acting user is not an approver of the record
        """
        decision = Decision(decision)
        record = self.get_approval(db, approval_id)
        if record.request.organization_id != ctx.organization_id:
            raise EntityNotFound("Approval", approval_id)
        if not record.can_be_decided_by(ctx.user_id):
            raise NotAuthorizedApprover(ctx.user_id, approval_id)
        if ApprovalStatus(record.status) != ApprovalStatus.PENDING:
            raise AlreadyDecided(approval_id)

        request = record.request
        if RequestStatus(request.status) != S.PENDING_APPROVAL:
            raise InvalidTransition(RequestKind(request.kind).value, RequestStatus(request.status).value, "decided")

        modified = {}
        if decision == Decision.APPROVE_WITH_CHANGES:
            modified = self.validate_modified_amounts(request, modified_amounts)

        now = datetime.utcnow()
        values = {
            ApprovalRecord.status: ApprovalStatus.REJECTED if decision == Decision.REJECT else ApprovalStatus.APPROVED,
            ApprovalRecord.comments: comments or None,
            ApprovalRecord.decided_by: ctx.user_id,
            ApprovalRecord.decided_at: now,
        }
        for field, amount in modified.items():
            values[getattr(ApprovalRecord, f"modified_{field}")] = amount

        events: List[Tuple[str, Dict[str, Any]]] = []
        try:
            claimed = db.query(ApprovalRecord).filter(
                ApprovalRecord.id == approval_id,
                ApprovalRecord.status == ApprovalStatus.PENDING
            ).update(values, synchronize_session=False)
            if claimed == 0:
                raise AlreadyDecided(approval_id)
            db.refresh(record)

            if decision == Decision.REJECT:
                transition(request, S.REJECTED)
                request.rejection_reason = comments or None
                request.final_decision_at = now
                events.append(self._final_event(request, comments, decided_by=ctx.user_id))
            else:
                events.extend(self._advance(db, request, record, now, comments))

            self.audit.record(
                db, ctx, "decide_approval", "approval_record", record.id,
                f"Level {record.approval_level} {decision.value} on request {request.id} "
                f"-> {RequestStatus(request.status).value}",
                changes={"modified_amounts": modified} if modified else None,
            )
            db.commit()
        except AlreadyDecided:
            db.rollback()
            logger.info(f"Approval {approval_id} was already decided; {ctx.user_id} lost the race")
            raise
        except Exception:
            db.rollback()
            logger.exception(f"Decision on approval {approval_id} failed; rolled back")
            raise

        db.refresh(request)
        self._publish(db, events)
        logger.info(
            f"Approval {approval_id} {decision.value} by {ctx.user_id}; "
            f"request {request.id} -> {RequestStatus(request.status).value}"
        )
        return RequestStatus(request.status)

    def _advance(
        self,
        db: Session,
        request: SpendRequest,
        record: ApprovalRecord,
        now: datetime,
        comments: Optional[str]
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """After an approval: next static level, an escalation level, or final"""
        events = []
        profile = self.directory.get_profile(db, request.requester_id)
        directory = self.directory.load_directory(db, request.organization_id)

        escalating = False
        approver, skipped = None, []
        if request.chain is not None and not record.is_escalation:
            approver, skipped = self.level_resolver.next_approver(
                request.chain.levels, profile, directory, request.total_amount or 0,
                after_order=record.approval_level,
            )
        events.extend(self._skip_events(request, skipped))

        if approver is None and self._should_escalate(request, record.approval_level):
            approver = self._escalation_approver(
                request, profile, directory, level_order=record.approval_level + 1
            )
            if approver is not None:
                escalating = True
                request.escalated = True
                logger.info(f"Request {request.id} escalated to level {approver.level_order}")
            else:
                logger.warning(f"Request {request.id} needs escalation but nobody can take it")

        if approver is not None:
            new_record = self._open_level(db, request, approver, is_escalation=escalating)
            transition(request, S.PENDING_APPROVAL)
            events.append(self._pending_event(request, new_record))
        else:
            self._finalize(request, now)
            events.append(self._final_event(request, comments, decided_by=record.decided_by))
        return events

    # ------------------------------------------------------------------
    # Expense report lifecycle
    # ------------------------------------------------------------------

    def reopen(self, db: Session, ctx: RequestContext, request_id: int) -> RequestStatus:
        """Expense reports only: rejected (or draft) -> open for editing"""
        request = self.get_own_request(db, ctx, request_id)
        previous = RequestStatus(request.status).value
        try:
            transition(request, S.OPEN)
            self.audit.record(db, ctx, "reopen_request", "spend_request", request.id, f"{previous} -> open")
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Request {request.id} reopened from {previous}")
        return RequestStatus(request.status)

    def close(self, db: Session, ctx: RequestContext, request_id: int) -> RequestStatus:
        """Expense reports only: open/approved/partially_approved -> closed"""
        request = self.get_own_request(db, ctx, request_id)
        previous = RequestStatus(request.status).value
        try:
            transition(request, S.CLOSED)
            self.audit.record(db, ctx, "close_request", "spend_request", request.id, f"{previous} -> closed")
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Request {request.id} closed from {previous}")
        return RequestStatus(request.status)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _should_escalate(self, request: SpendRequest, current_level: int) -> bool:
        if request.escalated or current_level >= self.escalation_level_cap:
            return False
        return self.evaluator.requires_escalation(v.overage_percentage for v in request.violations)

    def _escalation_approver(
        self,
        request: SpendRequest,
        profile: RequesterProfile,
        directory: OrganizationDirectory,
        level_order: int
    ) -> Optional[ResolvedApprover]:
        """Org admin first, accounting manager as fallback; never someone who already decided"""
        excluded = {profile.user_id} | {
            r.decided_by for r in request.approvals
            if r.submission_round == request.submission_count and r.decided_by is not None
        }
        for level_type, role in (
            (LevelType.ORG_ADMIN, UserRole.ORG_ADMIN),
            (LevelType.ACCOUNTING_MANAGER, UserRole.ACCOUNTING_MANAGER),
        ):
            occupants = directory.occupants(role, exclude=excluded)
            if not occupants:
                continue
            fan_out = level_type == LevelType.ORG_ADMIN and self.level_resolver.org_admin_fanout
            candidates = occupants if fan_out else occupants[:1]
            return ResolvedApprover(
                level_order=level_order,
                level_type=level_type,
                approver_id=candidates[0],
                candidate_ids=tuple(candidates),
                custom_message="Escalated: policy overage above the escalation threshold",
            )
        return None

    def _open_level(
        self,
        db: Session,
        request: SpendRequest,
        approver: ResolvedApprover,
        is_escalation: bool = False
    ) -> ApprovalRecord:
        record = ApprovalRecord(
            approver_id=approver.approver_id,
            candidate_ids=list(approver.candidate_ids),
            approval_level=approver.level_order,
            submission_round=request.submission_count or 1,
            level_type=LevelType(approver.level_type).value,
            is_escalation=is_escalation,
            custom_message=approver.custom_message,
            status=ApprovalStatus.PENDING,
        )
        request.approvals.append(record)
        request.current_approval_level = approver.level_order
        db.flush()
        return record

    def _finalize(self, request: SpendRequest, now: datetime):
        """Final approval: approved budget from the request overlaid by approvers' changes"""
        requested = request.requested_budget()
        effective = dict(requested)
        approved_records = sorted(
            (
                r for r in request.approvals
                if r.submission_round == (request.submission_count or 1)
                and ApprovalStatus(r.status) == ApprovalStatus.APPROVED
            ),
            key=lambda r: r.approval_level,
        )
        for record in approved_records:
            effective.update(record.modified_amounts())

        partial = any(abs(effective[field] - requested[field]) > 1e-9 for field in BUDGET_FIELDS)
        total = budget_total(nights=request.nights, days=request.days, **effective)

        request.approved_flights = effective["flights"]
        request.approved_accommodation_per_night = effective["accommodation_per_night"]
        request.approved_meals_per_day = effective["meals_per_day"]
        request.approved_transport = effective["transport"]
        request.approved_other = effective["other"]
        request.approved_total = total
        request.approved_budget = {
            "flights": effective["flights"],
            "accommodation_per_night": effective["accommodation_per_night"],
            "accommodation_total": effective["accommodation_per_night"] * (request.nights or 0),
            "meals_per_day": effective["meals_per_day"],
            "meals_total": effective["meals_per_day"] * (request.days or 0),
            "transport": effective["transport"],
            "other": effective["other"],
            "total": total,
            "currency": request.currency,
        }
        request.final_decision_at = now
        transition(request, S.PARTIALLY_APPROVED if partial else S.APPROVED)

    def _pending_event(self, request: SpendRequest, record: ApprovalRecord) -> Tuple[str, Dict[str, Any]]:
        return NotificationType.LEVEL_PENDING.value, {
            "request_id": request.id,
            "recipient_ids": list(record.candidate_ids or [record.approver_id]),
            "approval_id": record.id,
            "level": record.approval_level,
            "level_type": record.level_type,
            "is_escalation": bool(record.is_escalation),
            "custom_message": record.custom_message,
            "requester_id": request.requester_id,
            "total": request.total_amount,
            "currency": request.currency,
            "has_violations": len(request.violations) > 0,
            "violation_count": len(request.violations),
        }

    def _skip_events(self, request: SpendRequest, skipped: List[SkippedLevel]) -> List[Tuple[str, Dict[str, Any]]]:
        return [
            (NotificationType.APPROVAL_SKIPPED.value, {
                "request_id": request.id,
                "recipient_ids": [request.requester_id],
                "level": level.level_order,
                "level_type": LevelType(level.level_type).value,
                "reason": level.reason,
                "total": request.total_amount,
                "currency": request.currency,
            })
            for level in skipped
        ]

    def _final_event(
        self,
        request: SpendRequest,
        comments: Optional[str],
        decided_by: Optional[int] = None
    ) -> Tuple[str, Dict[str, Any]]:
        status = RequestStatus(request.status)
        event = NotificationType.REQUEST_REJECTED if status == S.REJECTED else NotificationType.REQUEST_APPROVED
        return event.value, {
            "request_id": request.id,
            "recipient_ids": [request.requester_id],
            "status": status.value,
            "approved_total": request.approved_total,
            "currency": request.currency,
            "comments": comments,
            "decided_by": decided_by,
        }

    def _publish(self, db: Session, events: List[Tuple[str, Dict[str, Any]]]):
        for event, payload in events:
            self.notifier.notify(db, event, payload)


# Create singleton instance
approval_workflow_service = ApprovalWorkflowService()
