"""
Database models
Importing this package registers every table on Base.metadata
"""

from approval_engine.models.user import Organization, User, UserRole, UserRoleAssignment
from approval_engine.models.approval_chain import (
    ApprovalChain,
    ApprovalChainLevel,
    EmployeeGrade,
    GradeChainAssignment,
    LevelType,
)
from approval_engine.models.policy import (
    DestinationType,
    PerType,
    PolicyCategory,
    PolicyRule,
    PolicyViolationRecord,
)
from approval_engine.models.spend_request import RequestKind, RequestStatus, SpendRequest
from approval_engine.models.approval import ApprovalRecord, ApprovalStatus
from approval_engine.models.notification import Notification, NotificationType
from approval_engine.models.audit_log import AuditLog

__all__ = [
    "Organization",
    "User",
    "UserRole",
    "UserRoleAssignment",
    "ApprovalChain",
    "ApprovalChainLevel",
    "EmployeeGrade",
    "GradeChainAssignment",
    "LevelType",
    "DestinationType",
    "PerType",
    "PolicyCategory",
    "PolicyRule",
    "PolicyViolationRecord",
    "RequestKind",
    "RequestStatus",
    "SpendRequest",
    "ApprovalRecord",
    "ApprovalStatus",
    "Notification",
    "NotificationType",
    "AuditLog",
]
