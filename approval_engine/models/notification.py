"""
Notification Model
In-app notifications produced by workflow events
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values


class NotificationType(str, enum.Enum):
    """Notification types"""
    LEVEL_PENDING = "level_pending"
    APPROVAL_SKIPPED = "approval_skipped"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    SYSTEM = "system"


class Notification(Base):
    """Notification model"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)

    # User
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Notification details
    type = Column(Enum(NotificationType, values_callable=enum_values), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)

    # Related request (optional)
    request_id = Column(Integer, ForeignKey("spend_requests.id"), nullable=True)

    # Status
    is_read = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="notifications")
    request = relationship("SpendRequest", foreign_keys=[request_id], lazy="select")

    def __repr__(self):
        return f"<Notification {self.type.value} - User {self.user_id}>"
