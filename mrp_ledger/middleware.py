"""Middleware for request context (acting user) and JSON payload helpers."""
from flask import g, request

from mrp_ledger.exceptions import ValidationError

MAX_ACTOR_LENGTH = 64


def load_actor():
    """
    Load the acting user into g.actor from the X-User header.

    There is no authentication: the header is recorded as-is on ledger
    entries and audit logs (recorded_by / performed_by).
    """
    actor = (request.headers.get('X-User') or '').strip()
    g.actor = actor[:MAX_ACTOR_LENGTH] or None


def current_actor():
    return g.get('actor')


def json_payload() -> dict:
    """Request body as a dict, or ValidationError."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload
