"""
Approval Chain Models
Chains, their ordered levels, employee grades and grade/amount assignments
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values


class LevelType(str, enum.Enum):
    """Who a chain level resolves to"""
    DIRECT_MANAGER = "direct_manager"
    ORG_ADMIN = "org_admin"
    ACCOUNTING_MANAGER = "accounting_manager"
    SPECIFIC_USER = "specific_user"


class EmployeeGrade(Base):
    """Organization-scoped seniority tier; lower level = more junior"""
    __tablename__ = "employee_grades"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    level = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<EmployeeGrade {self.name} (level {self.level})>"


class ApprovalChain(Base):
    """Approval chain model"""
    __tablename__ = "approval_chains"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    # Inactive chains are kept for history but never assigned again
    is_active = Column(Boolean, default=True)
    is_default = Column(Boolean, default=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    levels = relationship(
        "ApprovalChainLevel",
        back_populates="chain",
        order_by="ApprovalChainLevel.level_order",
        cascade="all, delete-orphan",
    )
    assignments = relationship("GradeChainAssignment", back_populates="chain", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ApprovalChain {self.name} ({len(self.levels)} levels)>"


class ApprovalChainLevel(Base):
    """One ordered step of a chain"""
    __tablename__ = "approval_chain_levels"

    id = Column(Integer, primary_key=True, index=True)
    chain_id = Column(Integer, ForeignKey("approval_chains.id"), nullable=False, index=True)
    level_order = Column(Integer, nullable=False)
    level_type = Column(Enum(LevelType, values_callable=enum_values), nullable=False)

    # Only set for specific_user levels
    specific_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    is_required = Column(Boolean, default=True)
    skip_if_amount_under = Column(Float, nullable=True)
    custom_message = Column(Text, nullable=True)

    chain = relationship("ApprovalChain", back_populates="levels")

    def __repr__(self):
        return f"<ApprovalChainLevel {self.level_order}: {self.level_type.value}>"


class GradeChainAssignment(Base):
    """Routes (grade, amount range) to a chain; null grade = every grade"""
    __tablename__ = "grade_chain_assignments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    grade_id = Column(Integer, ForeignKey("employee_grades.id"), nullable=True)
    chain_id = Column(Integer, ForeignKey("approval_chains.id"), nullable=False)

    # Either bound may be null (unbounded); both are inclusive
    min_amount = Column(Float, nullable=True)
    max_amount = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    chain = relationship("ApprovalChain", back_populates="assignments")
    grade = relationship("EmployeeGrade")

    def __repr__(self):
        return f"<GradeChainAssignment grade={self.grade_id} [{self.min_amount}, {self.max_amount}] -> {self.chain_id}>"
