"""
Approval Schemas
Pydantic models for approval workflow
"""

from pydantic import BaseModel, model_validator
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum


class DecisionEnum(str, Enum):
    approve = "approve"
    approve_with_changes = "approve_with_changes"
    reject = "reject"


class DecisionCreate(BaseModel):
    """Schema for approving, approving with changes, or rejecting"""
    decision: DecisionEnum
    modified_amounts: Optional[Dict[str, float]] = None
    comments: Optional[str] = None

    @model_validator(mode='after')
    def validate_changes(self):
        if self.decision == DecisionEnum.approve_with_changes and not self.modified_amounts:
            raise ValueError("modified_amounts is required for approve_with_changes")
        return self


class ApprovalResponse(BaseModel):
    """Schema for approval response"""
    id: int
    request_id: int
    approver_id: int
    candidate_ids: Optional[List[int]] = None
    approval_level: int
    level_type: Optional[str] = None
    is_escalation: bool
    custom_message: Optional[str] = None
    status: str
    decided_by: Optional[int] = None
    comments: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DecisionResponse(BaseModel):
    approval_id: int
    request_id: int
    request_status: str


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    request_id: Optional[int] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
