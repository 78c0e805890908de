"""
Audit Log Model
Tracks policy and chain configuration changes and workflow decisions
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from approval_engine.config.database import Base


class AuditLog(Base):
    """Audit log model"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    # User who performed the action
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Action details
    action = Column(String, nullable=False)  # e.g., "create_chain", "decide_approval"
    entity_type = Column(String, nullable=False)  # e.g., "approval_chain", "policy_rule"
    entity_id = Column(Integer, nullable=True)

    # Details
    description = Column(Text, nullable=False)
    changes = Column(JSON, nullable=True)  # Before/after values

    # Timestamp
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User")

    def __repr__(self):
        return f"<AuditLog {self.action} by User {self.user_id}>"
