"""Authentication module for Flask app."""
from .decorators import require_cron_secret, get_token_from_header
