"""
Append-only side-effect records: audit log, security log and notifications

These helpers only add rows to the session; the caller owns the commit so
the records land in the same transaction as the state change they describe.
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from travelpi.db.models import AuditLog, SecurityLog, Notification


class AuditService:
    """Service for audit, security and notification records"""

    @staticmethod
    def log_action(
        db: Session,
        action: str,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            changes=changes,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(entry)
        return entry

    @staticmethod
    def log_security_event(
        db: Session,
        action: str,
        success: bool,
        user_id: Optional[int] = None,
        failure_reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SecurityLog:
        entry = SecurityLog(
            user_id=user_id,
            action=action,
            success=success,
            failure_reason=failure_reason,
            ip_address=ip_address,
            user_agent=user_agent,
            event_metadata=metadata,
        )
        db.add(entry)
        return entry

    @staticmethod
    def notify(
        db: Session,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data,
        )
        db.add(notification)
        return notification


# Global instance
audit_service = AuditService()
