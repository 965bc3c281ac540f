"""
Audit logging service for the status history of engine operations.

Entries are written after the primary operation has committed, in their own
transaction, so a failing audit write can never undo stock or BOM changes.
"""
from mrp_ledger.models.audit_log import AuditLog, AuditAction
from flask import request, has_request_context
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    action: AuditAction,
    resource_type: str = None,
    resource_id=None,
    details: dict = None,
    performed_by: str = None
):
    """
    Log an auditable action to the database (best effort).

    Args:
        session: Database session (the primary operation must already be committed)
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'bom', 'product')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
        performed_by: User that triggered the action
    """
    try:
        ip_address = request.remote_addr if has_request_context() else None

        # Serialize details to JSON
        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to serialize audit details: {e}")
                details_json = str(details)

        audit_entry = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details_json,
            performed_by=performed_by,
            ip_address=ip_address,
        )
        session.add(audit_entry)
        session.commit()

        logger.info(f"Audit log created: {action.value} by {performed_by} on {resource_type} {resource_id}")

    except Exception as e:
        session.rollback()
        logger.error(f"Failed to create audit log: {e}")
        # Don't raise exception - audit failures should not break business logic


def get_audit_logs(
    session,
    limit: int = 100,
    action_filter: AuditAction = None,
    resource_type_filter: str = None,
    resource_id_filter=None
):
    """
    Retrieve audit logs with optional filters, newest first.

    Returns:
        List of AuditLog objects
    """
    query = session.query(AuditLog)

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    if resource_id_filter is not None:
        query = query.filter(AuditLog.resource_id == str(resource_id_filter))

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return query.limit(limit).all()
