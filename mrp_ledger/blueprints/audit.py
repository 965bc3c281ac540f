"""Status history (audit log) JSON API."""
from flask import Blueprint, request, jsonify

from mrp_ledger.database import get_session
from mrp_ledger.exceptions import ValidationError
from mrp_ledger.models import AuditAction
from mrp_ledger.services.audit_service import get_audit_logs

audit_bp = Blueprint('audit', __name__, url_prefix='/api/audit-logs')


@audit_bp.route('', methods=['GET'])
def list_audit_logs():
    action = request.args.get('action')
    if action:
        try:
            action = AuditAction(action.upper())
        except ValueError:
            raise ValidationError('Unknown audit action', field='action', value=action)

    try:
        limit = min(int(request.args.get('limit', 100)), 500)
    except ValueError:
        raise ValidationError('limit must be an integer', field='limit', value=request.args.get('limit'))

    logs = get_audit_logs(
        get_session(),
        limit=limit,
        action_filter=action or None,
        resource_type_filter=request.args.get('resource_type') or None,
        resource_id_filter=request.args.get('resource_id') or None,
    )
    return jsonify([
        {
            'id': entry.id,
            'action': entry.action.value,
            'resource_type': entry.resource_type,
            'resource_id': entry.resource_id,
            'details': entry.details,
            'performed_by': entry.performed_by,
            'ip_address': entry.ip_address,
            'created_at': entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in logs
    ])
