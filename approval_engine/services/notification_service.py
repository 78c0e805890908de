"""
Notification Service
Publishes workflow events as in-app notifications and to subscribers
"""

from sqlalchemy.orm import Session
from typing import Any, Callable, Dict, List

from approval_engine.models.notification import Notification, NotificationType
from approval_engine.utils.helpers import format_currency
from approval_engine.utils.logger import setup_logger

logger = setup_logger()

EventHandler = Callable[[str, Dict[str, Any]], None]


class NotificationService:
    """
    Fire-and-forget event dispatch.

    Events are published after the workflow transaction commits; a failure
    here is logged and never propagates back into the transition.
    """

    def __init__(self):
        self._subscribers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler):
        """Register an outbound handler (email, websocket push, ...)"""
        self._subscribers.append(handler)

    def unsubscribe(self, handler: EventHandler):
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def notify(self, db: Session, event: str, payload: Dict[str, Any]):
        """
        Publish a workflow event

        Args:
            db: Database session
            event: NotificationType value, e.g. "level_pending"
            payload: Event data; "recipient_ids" selects in-app recipients
        """
        try:
            self._store(db, event, payload)
        except Exception:
            db.rollback()
            logger.exception(f"Failed to store notification for event {event}")

        for handler in list(self._subscribers):
            try:
                handler(event, payload)
            except Exception:
                logger.exception(f"Notification handler {handler!r} failed for event {event}")

    def _store(self, db: Session, event: str, payload: Dict[str, Any]):
        notification_type = NotificationType(event)
        title, message = self._render(notification_type, payload)

        recipients = payload.get("recipient_ids") or []
        for user_id in recipients:
            db.add(Notification(
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                request_id=payload.get("request_id"),
            ))
        db.commit()

        logger.info(f"Event {event} for request {payload.get('request_id')} -> {len(recipients)} recipient(s)")

    def _render(self, notification_type: NotificationType, payload: Dict[str, Any]):
        request_id = payload.get("request_id")
        total = format_currency(payload.get("total"), payload.get("currency") or "ILS")

        if notification_type == NotificationType.LEVEL_PENDING:
            message = f"Request #{request_id} ({total}) is waiting for your approval at level {payload.get('level')}."
            if payload.get("has_violations"):
                message += f" It has {payload.get('violation_count')} policy violation(s)."
            if payload.get("custom_message"):
                message += f" {payload['custom_message']}"
            return "Approval required", message

        if notification_type == NotificationType.APPROVAL_SKIPPED:
            return (
                "Approval level skipped",
                f"Level {payload.get('level')} ({payload.get('level_type')}) of request #{request_id} "
                f"was skipped: {payload.get('reason')}.",
            )

        if notification_type == NotificationType.REQUEST_APPROVED:
            status = payload.get("status", "approved").replace("_", " ")
            approved_total = format_currency(payload.get("approved_total"), payload.get("currency") or "ILS")
            message = f"Your request #{request_id} was {status}. Approved budget: {approved_total}."
            if payload.get("comments"):
                message += f" Comments: {payload['comments']}"
            return "Request approved", message

        if notification_type == NotificationType.REQUEST_REJECTED:
            message = f"Your request #{request_id} was rejected."
            if payload.get("comments"):
                message += f" Reason: {payload['comments']}"
            return "Request rejected", message

        return "Notification", payload.get("message", "")


# Create singleton instance
notification_service = NotificationService()
