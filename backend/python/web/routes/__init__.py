"""Route blueprints for Flask app."""
from .payments import payments_bp
from .deposits import deposits_bp
from .bills import bills_bp
from .bookings import bookings_bp
from .cron import cron_bp
from .transactions import transactions_bp
