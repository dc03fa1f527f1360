"""
Audit logging service for catalog changes.
"""
from almacen.models.audit_log import AuditLog, AuditAction
from flask import request, has_request_context
from datetime import datetime
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    actor,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None
):
    """
    Add an audit row to the session.

    The caller owns the transaction: the row is committed (or rolled back)
    together with the change it describes.

    Args:
        session: Database session
        actor: Actor performing the action
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'product')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get('User-Agent', '')[:255]

    details_json = None
    if details:
        details_json = json.dumps(details, default=str)

    audit_entry = AuditLog(
        user_id=actor.user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details_json,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=datetime.now()
    )
    session.add(audit_entry)

    logger.info(f"Audit log created: {action.value} by user {actor.user_id} on {resource_type} {resource_id}")
    return audit_entry
