"""
Request Service
Drafting expense reports and travel requests before submission
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from approval_engine.models.policy import DestinationType
from approval_engine.models.spend_request import BUDGET_FIELDS, RequestKind, RequestStatus, SpendRequest
from approval_engine.services.audit_service import audit_service
from approval_engine.services.context import RequestContext
from approval_engine.utils.exceptions import FieldValidationError, EntityNotFound, InvalidTransition
from approval_engine.utils.helpers import coerce_amount
from approval_engine.utils.logger import setup_logger

logger = setup_logger()

EDITABLE_STATUSES = {RequestStatus.DRAFT, RequestStatus.OPEN}
TEXT_FIELDS = ("title", "purpose", "destination_city", "destination_country", "employee_notes", "currency")


def trip_length(start_date: Optional[date], end_date: Optional[date]):
    """
    Nights and days of a trip, both inclusive of travel days

    Returns:
        (nights, days); (0, 0) when either date is missing or the range is inverted
    """
    if not start_date or not end_date or end_date < start_date:
        return 0, 0
    nights = (end_date - start_date).days
    return nights, nights + 1


class RequestService:
    """Draft creation and editing"""

    def list_requests(
        self,
        db: Session,
        ctx: RequestContext,
        mine_only: bool = True,
        status: Optional[RequestStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[SpendRequest]:
        query = db.query(SpendRequest).filter(SpendRequest.organization_id == ctx.organization_id)
        if mine_only:
            query = query.filter(SpendRequest.requester_id == ctx.user_id)
        if status is not None:
            query = query.filter(SpendRequest.status == status)
        return query.order_by(SpendRequest.created_at.desc()).offset(skip).limit(limit).all()

    def _apply(self, request: SpendRequest, values: Dict[str, Any]):
        for field in TEXT_FIELDS:
            if field in values:
                setattr(request, field, values[field])
        for field in BUDGET_FIELDS:
            if field in values:
                setattr(request, field, coerce_amount(values[field], field) or 0)
        if values.get("destination_type") is not None:
            request.destination_type = DestinationType(values["destination_type"])
        if "start_date" in values:
            request.start_date = values["start_date"]
        if "end_date" in values:
            request.end_date = values["end_date"]

        if request.start_date and request.end_date and request.end_date < request.start_date:
            raise FieldValidationError("end_date", "end_date must not be before start_date")
        request.nights, request.days = trip_length(request.start_date, request.end_date)
        request.total_amount = request.compute_total()

    def create_request(self, db: Session, ctx: RequestContext, kind, values: Dict[str, Any]) -> SpendRequest:
        """
        Create a draft

        Args:
            db: Database session
            ctx: Acting context (the requester)
            kind: expense_report or travel_request
            values: Trip fields and requested budget lines

        Returns:
            SpendRequest: Draft request with nights, days and total computed
        """
        request = SpendRequest(
            kind=RequestKind(kind),
            organization_id=ctx.organization_id,
            requester_id=ctx.user_id,
            status=RequestStatus.DRAFT,
            destination_type=DestinationType.DOMESTIC,
            submission_count=0,
        )
        self._apply(request, values)
        try:
            db.add(request)
            db.flush()
            audit_service.record(
                db, ctx, "create_request", "spend_request", request.id,
                f"Drafted {request.kind.value} for {request.total_amount:.2f}",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(request)
        logger.info(f"Request {request.id} drafted by user {ctx.user_id}")
        return request

    def update_request(self, db: Session, ctx: RequestContext, request_id: int, values: Dict[str, Any]) -> SpendRequest:
        """Edit a draft/open request; only its requester may"""
        request = db.query(SpendRequest).filter(
            SpendRequest.id == request_id,
            SpendRequest.organization_id == ctx.organization_id
        ).first()
        if not request or request.requester_id != ctx.user_id:
            raise EntityNotFound("Request", request_id)
        if RequestStatus(request.status) not in EDITABLE_STATUSES:
            raise InvalidTransition(request.kind.value, request.status.value, "edited")
        try:
            self._apply(request, values)
            audit_service.record(db, ctx, "update_request", "spend_request", request.id,
                                 f"Edited {request.kind.value}")
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(request)
        return request


# Create singleton instance
request_service = RequestService()
