"""
Policy Schemas
Pydantic models for policy rules and policy evaluation
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class PolicyCategoryEnum(str, Enum):
    flights = "flights"
    accommodation = "accommodation"
    food = "food"
    transportation = "transportation"
    miscellaneous = "miscellaneous"


class DestinationTypeEnum(str, Enum):
    domestic = "domestic"
    international = "international"
    all = "all"


class PerTypeEnum(str, Enum):
    per_day = "per_day"
    per_trip = "per_trip"
    per_item = "per_item"


class PolicyRuleCreate(BaseModel):
    category: PolicyCategoryEnum
    max_amount: Optional[float] = Field(default=None, ge=0)
    currency: str = "ILS"
    destination_type: DestinationTypeEnum = DestinationTypeEnum.all
    per_type: PerTypeEnum = PerTypeEnum.per_trip
    grade_id: Optional[int] = None
    notes: Optional[str] = None


class PolicyRuleUpdate(BaseModel):
    max_amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    destination_type: Optional[DestinationTypeEnum] = None
    per_type: Optional[PerTypeEnum] = None
    grade_id: Optional[int] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class PolicyRuleResponse(BaseModel):
    id: int
    category: str
    max_amount: Optional[float] = None
    currency: Optional[str] = None
    destination_type: str
    per_type: str
    grade_id: Optional[int] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PolicyEvaluateRequest(BaseModel):
    """
    Amounts as the employee fills them in: accommodation per night,
    meals per day, everything else per trip. Amounts are validated by the
    engine so negative values surface as InvalidAmount.
    """
    flights: Optional[float] = 0
    accommodation_per_night: Optional[float] = 0
    meals_per_day: Optional[float] = 0
    transport: Optional[float] = 0
    other: Optional[float] = 0
    nights: int = 0
    days: int = 0
    destination_type: DestinationTypeEnum = DestinationTypeEnum.domestic
    grade_id: Optional[int] = None


class PolicyViolationResponse(BaseModel):
    category: str
    requested_amount: float
    policy_limit: float
    overage_amount: float
    overage_percentage: float
    per_type: str
    currency: Optional[str] = None
    rule_id: Optional[int] = None
    requires_special_approval: bool = False


class PolicyEvaluateResponse(BaseModel):
    compliant: bool
    violations: List[PolicyViolationResponse]
    requires_escalation: bool
