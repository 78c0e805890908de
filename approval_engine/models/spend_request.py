"""
Spend Request Model
Expense reports and travel requests moving through an approval chain
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Enum, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values
from approval_engine.models.policy import DestinationType


class RequestKind(str, enum.Enum):
    EXPENSE_REPORT = "expense_report"
    TRAVEL_REQUEST = "travel_request"


class RequestStatus(str, enum.Enum):
    """Request status"""
    DRAFT = "draft"
    OPEN = "open"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    CLOSED = "closed"


# Budget lines and the unit each is requested in
BUDGET_FIELDS = {
    "flights": "flights",
    "accommodation_per_night": "accommodation",
    "meals_per_day": "food",
    "transport": "transportation",
    "other": "miscellaneous",
}


def budget_total(flights, accommodation_per_night, meals_per_day, transport, other, nights, days) -> float:
    """Trip total: per-night and per-day lines are multiplied out"""
    return (
        (flights or 0)
        + (accommodation_per_night or 0) * (nights or 0)
        + (meals_per_day or 0) * (days or 0)
        + (transport or 0)
        + (other or 0)
    )


class SpendRequest(Base):
    """Spend request model"""
    __tablename__ = "spend_requests"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(Enum(RequestKind, values_callable=enum_values), nullable=False)

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Trip details
    title = Column(String, nullable=True)
    purpose = Column(Text, nullable=True)
    destination_city = Column(String, nullable=True)
    destination_country = Column(String, nullable=True)
    destination_type = Column(
        Enum(DestinationType, values_callable=enum_values), default=DestinationType.DOMESTIC, nullable=False
    )
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    nights = Column(Integer, default=0)
    days = Column(Integer, default=0)

    # Requested budget
    currency = Column(String, default="ILS")
    flights = Column(Float, default=0)
    accommodation_per_night = Column(Float, default=0)
    meals_per_day = Column(Float, default=0)
    transport = Column(Float, default=0)
    other = Column(Float, default=0)
    total_amount = Column(Float, default=0)
    employee_notes = Column(Text, nullable=True)

    # Workflow
    status = Column(Enum(RequestStatus, values_callable=enum_values), default=RequestStatus.DRAFT, nullable=False)
    chain_id = Column(Integer, ForeignKey("approval_chains.id"), nullable=True)
    current_approval_level = Column(Integer, nullable=True)
    escalated = Column(Boolean, default=False)
    submission_count = Column(Integer, default=0)
    rejection_reason = Column(Text, nullable=True)

    # Approved budget (set on final approval)
    approved_flights = Column(Float, nullable=True)
    approved_accommodation_per_night = Column(Float, nullable=True)
    approved_meals_per_day = Column(Float, nullable=True)
    approved_transport = Column(Float, nullable=True)
    approved_other = Column(Float, nullable=True)
    approved_total = Column(Float, nullable=True)
    approved_budget = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    submitted_at = Column(DateTime, nullable=True)
    final_decision_at = Column(DateTime, nullable=True)

    # Relationships
    requester = relationship("User", foreign_keys=[requester_id])
    chain = relationship("ApprovalChain")
    approvals = relationship(
        "ApprovalRecord",
        back_populates="request",
        order_by="ApprovalRecord.approval_level",
        cascade="all, delete-orphan",
    )
    violations = relationship("PolicyViolationRecord", back_populates="request", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SpendRequest {self.id} {self.kind.value} - {self.status.value}>"

    def requested_budget(self) -> dict:
        """Requested amounts keyed by budget field"""
        return {field: getattr(self, field) or 0 for field in BUDGET_FIELDS}

    def compute_total(self) -> float:
        return budget_total(nights=self.nights, days=self.days, **self.requested_budget())

    def pending_approval(self):
        """The open approval record, if any"""
        for approval in self.approvals:
            if approval.status.value == "pending":
                return approval
        return None
