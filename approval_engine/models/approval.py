"""
Approval Model
One decision slot per (request, level) in the approval workflow
"""

from sqlalchemy import Column, Integer, Float, DateTime, Enum, ForeignKey, Text, Boolean, JSON, String, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values


class ApprovalStatus(str, enum.Enum):
    """Approval status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalRecord(Base):
    """Approval model"""
    __tablename__ = "approval_records"
    __table_args__ = (
        # At most one undecided record per (request, level)
        Index(
            "uq_approval_pending_per_level",
            "request_id",
            "approval_level",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Request and approver
    request_id = Column(Integer, ForeignKey("spend_requests.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Everyone allowed to decide; more than one when org admins fan out
    candidate_ids = Column(JSON, nullable=True)

    # Level details
    approval_level = Column(Integer, nullable=False)
    submission_round = Column(Integer, default=1, nullable=False)
    level_type = Column(String, nullable=True)
    is_escalation = Column(Boolean, default=False)
    custom_message = Column(Text, nullable=True)

    # Who actually decided; one of candidate_ids when org admins fan out
    decided_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    status = Column(Enum(ApprovalStatus, values_callable=enum_values), default=ApprovalStatus.PENDING, nullable=False)
    comments = Column(Text, nullable=True)

    # Amounts changed by this approver (partial approval)
    modified_flights = Column(Float, nullable=True)
    modified_accommodation_per_night = Column(Float, nullable=True)
    modified_meals_per_day = Column(Float, nullable=True)
    modified_transport = Column(Float, nullable=True)
    modified_other = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    decided_at = Column(DateTime, nullable=True)

    # Relationships
    request = relationship("SpendRequest", back_populates="approvals")
    approver = relationship("User", foreign_keys=[approver_id])
    decider = relationship("User", foreign_keys=[decided_by])

    def __repr__(self):
        return f"<ApprovalRecord request={self.request_id} level={self.approval_level} - {self.status.value}>"

    def can_be_decided_by(self, user_id: int) -> bool:
        """Check if the user is the approver or a fan-out candidate"""
        candidates = self.candidate_ids or [self.approver_id]
        return user_id in candidates

    def modified_amounts(self) -> dict:
        """Modified amounts keyed by budget field, unset ones omitted"""
        amounts = {
            "flights": self.modified_flights,
            "accommodation_per_night": self.modified_accommodation_per_night,
            "meals_per_day": self.modified_meals_per_day,
            "transport": self.modified_transport,
            "other": self.modified_other,
        }
        return {field: value for field, value in amounts.items() if value is not None}
