"""
Audit logging service for privileged admin actions.
"""
from storefront.models.audit_log import AuditLog, AuditAction
from flask import request, g, has_request_context
from datetime import datetime
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None
):
    """
    Add an audit entry for the current admin to the session.

    Args:
        session: Database session
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'discount', 'order')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
    """
    try:
        admin = g.get('admin_user') if has_request_context() else None
        if not admin:
            logger.warning(f"Cannot log action {action}: no admin in request context")
            return

        ip_address = request.remote_addr if has_request_context() else None
        user_agent = request.headers.get('User-Agent', '')[:255] if has_request_context() else None

        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to serialize audit details: {e}")
                details_json = str(details)

        session.add(AuditLog(
            admin_user_id=admin.id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details_json,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=datetime.utcnow()
        ))
        # Caller is responsible for committing the session

        logger.info(f"Audit log created: {action.value} by admin {admin.id} on {resource_type} {resource_id}")

    except Exception as e:
        # Audit failures must not break the admin action
        logger.error(f"Failed to create audit log: {e}")


def get_audit_logs(
    session,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    resource_type_filter: str = None
):
    """Recent audit entries, newest first, with optional filters."""
    query = session.query(AuditLog)

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset).all()


def serialize_audit_log(entry: AuditLog) -> dict:
    return {
        'id': entry.id,
        'adminUserId': entry.admin_user_id,
        'action': entry.action.value,
        'resourceType': entry.resource_type,
        'resourceId': entry.resource_id,
        'details': json.loads(entry.details) if entry.details and entry.details.startswith('{') else entry.details,
        'createdAt': entry.created_at.isoformat() if entry.created_at else None,
    }
