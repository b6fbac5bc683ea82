"""
Helpers shared by the route blueprints.
"""

from typing import Any, Dict, Optional

from flask import current_app, request

from billing.validators import parse_date


def get_services():
    """Billing services attached to the running app."""
    return current_app.extensions['billing']


def get_payload() -> Dict[str, Any]:
    """Request body as a dict, from JSON or form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def date_arg(name: str, payload: Optional[Dict[str, Any]] = None):
    """Optional date from the query string, or from ``payload`` if given."""
    value = payload.get(name) if payload is not None else None
    if value is None:
        value = request.args.get(name)
    return parse_date(value, name, required=False)
