"""
Cron routes - entry points for an external scheduler.

Every route requires the cron bearer secret.
"""

import logging

from flask import Blueprint, jsonify

from scheduler.engine import REMINDER_JOB_NAME
from scheduler.jobs import JOB_NAME as BILLING_JOB_NAME
from web.auth import require_cron_secret
from web.utils.request_helpers import date_arg, get_payload, get_services

logger = logging.getLogger(__name__)

cron_bp = Blueprint('cron', __name__, url_prefix='/api/cron')


@cron_bp.route('/monthly-billing', methods=['POST'])
@require_cron_secret
def monthly_billing():
    """
    Run the recurring billing job.

    Returns the run report. A run where any booking failed answers 500 with
    the same report so the caller's retry and alerting kick in.
    """
    as_of = date_arg('target_date', get_payload())
    report = get_services().engine.run_job_now(BILLING_JOB_NAME, triggered_by='api', as_of=as_of)

    if report['status'] != 'success':
        logger.error(f"Cron billing run {report['run_id']} ended {report['status']}: {report['error']}")
        return jsonify(report), 500
    return jsonify(report)


@cron_bp.route('/monthly-billing/preview')
@require_cron_secret
def monthly_billing_preview():
    """What the billing job would create for ``?target_date=`` (default today)."""
    return jsonify(get_services().billing_job.preview(as_of=date_arg('target_date')))


@cron_bp.route('/bill-reminders', methods=['POST'])
@require_cron_secret
def bill_reminders():
    services = get_services()
    if services.reminders is None:
        return jsonify({'error': 'mail_not_configured', 'message': 'No mailer configured'}), 503
    target = date_arg('target_date', get_payload())
    return jsonify(services.engine.run_job_now(REMINDER_JOB_NAME, triggered_by='api', target_date=target))
