"""
Approval Chain Schemas
Pydantic models for chains, levels, grade assignments and grades
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum


class LevelTypeEnum(str, Enum):
    direct_manager = "direct_manager"
    org_admin = "org_admin"
    accounting_manager = "accounting_manager"
    specific_user = "specific_user"


class ChainLevelCreate(BaseModel):
    """One level; level_order is assigned by position"""
    level_type: LevelTypeEnum
    specific_user_id: Optional[int] = None
    is_required: bool = True
    skip_if_amount_under: Optional[float] = Field(default=None, ge=0)
    custom_message: Optional[str] = Field(default=None, max_length=500)


class ChainLevelUpdate(BaseModel):
    level_type: Optional[LevelTypeEnum] = None
    specific_user_id: Optional[int] = None
    is_required: Optional[bool] = None
    skip_if_amount_under: Optional[float] = Field(default=None, ge=0)
    custom_message: Optional[str] = Field(default=None, max_length=500)


class ChainLevelResponse(BaseModel):
    id: int
    level_order: int
    level_type: str
    specific_user_id: Optional[int] = None
    is_required: bool
    skip_if_amount_under: Optional[float] = None
    custom_message: Optional[str] = None

    class Config:
        from_attributes = True


class ChainCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    is_default: bool = False
    levels: List[ChainLevelCreate] = []


class ChainUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class ChainResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    is_default: bool
    created_at: datetime
    levels: List[ChainLevelResponse] = []

    class Config:
        from_attributes = True


class AssignmentCreate(BaseModel):
    """Route (grade, amount range) to a chain; null bounds are open"""
    chain_id: int
    grade_id: Optional[int] = None
    min_amount: Optional[float] = Field(default=None, ge=0)
    max_amount: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def validate_range(self):
        if self.min_amount is not None and self.max_amount is not None and self.min_amount > self.max_amount:
            raise ValueError("min_amount cannot be greater than max_amount")
        return self


class AssignmentResponse(BaseModel):
    id: int
    chain_id: int
    grade_id: Optional[int] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None

    class Config:
        from_attributes = True


class GradeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    level: int = Field(default=1, ge=1)


class GradeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    level: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class GradeResponse(BaseModel):
    id: int
    name: str
    level: int
    is_active: bool

    class Config:
        from_attributes = True


class ResolvedLevelResponse(BaseModel):
    level_order: int
    level_type: str
    approver_id: int
    candidate_ids: List[int]
    is_required: bool
    custom_message: Optional[str] = None


class ChainResolutionResponse(BaseModel):
    """Which chain a (grade, amount) routes to"""
    chain: ChainResponse
    grade_id: Optional[int] = None
    amount: float
