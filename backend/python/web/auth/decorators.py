"""
Authentication decorators for machine-to-machine endpoints.
"""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def get_token_from_header():
    """
    Extract a bearer token from the Authorization header.

    Returns:
        str: Token string or None
    """
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:]
    return None


def require_cron_secret(f):
    """
    Decorator for endpoints called by an external cron.

    The caller must send ``Authorization: Bearer <CRON_SECRET>``. When no
    secret is configured the endpoint refuses every request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        if not secret:
            logger.error(f"Cron endpoint {request.path} called but no cron secret is configured")
            return jsonify({'error': 'unauthorized', 'message': 'Cron secret not configured'}), 401

        token = get_token_from_header()
        if token is None or not hmac.compare_digest(token.encode(), secret.encode()):
            logger.warning(f"Rejected cron call to {request.path} from {request.remote_addr}")
            return jsonify({'error': 'unauthorized', 'message': 'Not authorized'}), 401

        return f(*args, **kwargs)
    return decorated_function
