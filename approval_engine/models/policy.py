"""
Policy Models
Organization spend limits and the violations recorded at submission
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values


class PolicyCategory(str, enum.Enum):
    """Budget categories a policy rule can limit"""
    FLIGHTS = "flights"
    ACCOMMODATION = "accommodation"
    FOOD = "food"
    TRANSPORTATION = "transportation"
    MISCELLANEOUS = "miscellaneous"


class DestinationType(str, enum.Enum):
    DOMESTIC = "domestic"
    INTERNATIONAL = "international"
    ALL = "all"


class PerType(str, enum.Enum):
    """Unit the rule's max_amount is expressed in"""
    PER_DAY = "per_day"
    PER_TRIP = "per_trip"
    PER_ITEM = "per_item"


class PolicyRule(Base):
    """Policy rule model"""
    __tablename__ = "policy_rules"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    category = Column(Enum(PolicyCategory, values_callable=enum_values), nullable=False)
    max_amount = Column(Float, nullable=True)
    currency = Column(String, default="ILS")
    destination_type = Column(
        Enum(DestinationType, values_callable=enum_values), default=DestinationType.ALL, nullable=False
    )
    per_type = Column(Enum(PerType, values_callable=enum_values), default=PerType.PER_TRIP, nullable=False)

    # Null grade applies to every grade
    grade_id = Column(Integer, ForeignKey("employee_grades.id"), nullable=True)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<PolicyRule {self.category.value} <= {self.max_amount} {self.per_type.value}>"


class PolicyViolationRecord(Base):
    """Violation persisted when a request is submitted"""
    __tablename__ = "policy_violations"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("spend_requests.id"), nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("policy_rules.id"), nullable=True)

    category = Column(Enum(PolicyCategory, values_callable=enum_values), nullable=False)
    requested_amount = Column(Float, nullable=False)
    policy_limit = Column(Float, nullable=False)
    overage_amount = Column(Float, nullable=False)
    overage_percentage = Column(Float, nullable=False)

    employee_explanation = Column(Text, nullable=True)
    requires_special_approval = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    request = relationship("SpendRequest", back_populates="violations")

    def __repr__(self):
        return f"<PolicyViolationRecord {self.category.value} +{self.overage_percentage:.1f}%>"
