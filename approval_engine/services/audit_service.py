"""
Audit Service
Writes audit rows inside the caller's transaction and mirrors them to the
audit log once that transaction commits
"""

from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from approval_engine.models.audit_log import AuditLog
from approval_engine.services.context import RequestContext
from approval_engine.utils.logger import log_audit

PENDING_AUDIT_LINES = "pending_audit_lines"


class AuditService:

    def record(
        self,
        db: Session,
        ctx: Optional[RequestContext],
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        description: str,
        changes: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Add an audit entry to the session (committed by the caller)

        The audit log line is held on the session and written after commit;
        a rollback discards it together with the row.

        Args:
            db: Database session
            ctx: Acting context, None for system actions
            action: e.g. "create_chain"
            entity_type: e.g. "approval_chain"
            entity_id: Affected row ID
            description: Human readable summary
            changes: Before/after values
        """
        user_id = ctx.user_id if ctx else None
        entry = AuditLog(
            organization_id=ctx.organization_id if ctx else None,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            changes=changes,
        )
        db.add(entry)
        db.info.setdefault(PENDING_AUDIT_LINES, []).append(
            (user_id, action, f"{entity_type}#{entity_id} {description}")
        )
        return entry


@event.listens_for(Session, "after_commit")
def _write_committed_audit_lines(session):
    for user_id, action, details in session.info.pop(PENDING_AUDIT_LINES, []):
        log_audit(user_id, action, details)


@event.listens_for(Session, "after_soft_rollback")
def _discard_rolled_back_audit_lines(session, previous_transaction):
    session.info.pop(PENDING_AUDIT_LINES, None)


# Create singleton instance
audit_service = AuditService()
