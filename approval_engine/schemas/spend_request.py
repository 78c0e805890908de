"""
Spend Request Schemas
Pydantic models for expense reports and travel requests
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum

from approval_engine.schemas.policy import DestinationTypeEnum


class RequestKindEnum(str, Enum):
    expense_report = "expense_report"
    travel_request = "travel_request"


class SpendRequestBase(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    purpose: Optional[str] = None
    destination_city: Optional[str] = None
    destination_country: Optional[str] = None
    destination_type: Optional[DestinationTypeEnum] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    currency: Optional[str] = None
    flights: Optional[float] = None
    accommodation_per_night: Optional[float] = None
    meals_per_day: Optional[float] = None
    transport: Optional[float] = None
    other: Optional[float] = None
    employee_notes: Optional[str] = None

    @model_validator(mode='after')
    def validate_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SpendRequestCreate(SpendRequestBase):
    kind: RequestKindEnum


class SpendRequestUpdate(SpendRequestBase):
    pass


class SubmitRequest(BaseModel):
    """Explanation per violated category, e.g. {"accommodation": "Conference hotel"}"""
    explanations: Dict[str, str] = {}


class ViolationRecordResponse(BaseModel):
    category: str
    requested_amount: float
    policy_limit: float
    overage_amount: float
    overage_percentage: float
    employee_explanation: Optional[str] = None
    requires_special_approval: bool

    class Config:
        from_attributes = True


class ApprovalRecordSummary(BaseModel):
    id: int
    approval_level: int
    level_type: Optional[str] = None
    approver_id: int
    is_escalation: bool
    status: str
    comments: Optional[str] = None
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SpendRequestResponse(BaseModel):
    id: int
    kind: str
    requester_id: int
    title: Optional[str] = None
    purpose: Optional[str] = None
    destination_city: Optional[str] = None
    destination_country: Optional[str] = None
    destination_type: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    nights: int
    days: int
    currency: Optional[str] = None
    flights: float
    accommodation_per_night: float
    meals_per_day: float
    transport: float
    other: float
    total_amount: float
    status: str
    chain_id: Optional[int] = None
    current_approval_level: Optional[int] = None
    escalated: bool
    rejection_reason: Optional[str] = None
    approved_total: Optional[float] = None
    approved_budget: Optional[Dict[str, Any]] = None
    submitted_at: Optional[datetime] = None
    final_decision_at: Optional[datetime] = None
    created_at: datetime
    violations: List[ViolationRecordResponse] = []
    approvals: List[ApprovalRecordSummary] = []

    class Config:
        from_attributes = True
