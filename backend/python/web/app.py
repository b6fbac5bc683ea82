"""
Flask Web Application for the billing back-office.
Provides the REST API for payments, deposits, bills and bookings, and the
cron entry points for the billing jobs.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify
from flask_cors import CORS

from billing.audit import setup_audit_logging
from billing.exceptions import BillingError
from common.config_loader import get_config, get_flask_config

logger = logging.getLogger(__name__)


def build_default_services():
    """Wire the services from the YAML configuration and environment."""
    from billing.storage import LocalObjectStorage
    from common.config import BillingConfig
    from common.engine import get_engine
    from common.session import SessionManager
    from scheduler.alert_manager import AlertManager, SMTPMailer
    from scheduler.config import SchedulerConfig
    from web.services import BillingServices

    billing_config = BillingConfig.from_config()
    scheduler_config = SchedulerConfig.from_yaml()

    engine = get_engine('backend')
    mailer = SMTPMailer(scheduler_config.alerts.email)

    setup_audit_logging(billing_config.audit_log_path)

    return BillingServices.build(
        SessionManager(engine),
        config=billing_config,
        storage=LocalObjectStorage(billing_config.storage.root),
        mailer=mailer if mailer.is_configured() else None,
        scheduler_config=scheduler_config,
        alert_manager=AlertManager(scheduler_config.alerts),
    )


def create_app(services=None, flask_config: Optional[Dict[str, Any]] = None):
    """
    Create Flask application with all blueprints registered.

    Args:
        services: BillingServices instance (optional, built from config if not provided)
        flask_config: Flask settings (optional, read from app.yaml if not provided)

    Returns:
        Flask application
    """
    app = Flask(__name__)

    app.config.update(flask_config if flask_config is not None else get_flask_config())

    if services is None:
        services = build_default_services()
    app.extensions['billing'] = services

    CORS(app)

    app.web_started_at = datetime.now()

    # Prevent caching of API responses
    @app.after_request
    def add_api_headers(response):
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        return response

    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error.code}: {error.message}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'not_found', 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'method_not_allowed', 'message': str(error)}), 405

    @app.errorhandler(413)
    def handle_too_large(error):
        return jsonify({'error': 'payload_too_large', 'message': 'Upload exceeds the size limit'}), 413

    # Register blueprints
    from web.routes import payments_bp, deposits_bp, bills_bp, bookings_bp, cron_bp, transactions_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(deposits_bp)
    app.register_blueprint(bills_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(transactions_bp)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'uptime_seconds': (datetime.now() - app.web_started_at).total_seconds(),
        })

    return app


def run_app(host='0.0.0.0', port=5000, debug=False):
    """Run the Flask application."""
    app_config = get_config()
    app = create_app()

    # Get server settings from config
    flask_settings = app_config.app.flask
    if flask_settings:
        host = flask_settings.host or host
        port = flask_settings.port or port
        debug = flask_settings.debug if flask_settings.debug is not None else debug

    app.run(host=host, port=port, debug=debug)


if __name__ == '__main__':
    run_app(debug=True)
