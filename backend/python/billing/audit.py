"""
Audit logging for money-moving events.

Payments, allocations and deposit resolutions are written to a dedicated
rotating log so finance can reconcile them independently of the database.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional


# Configure audit logger
audit_logger = logging.getLogger('billing.audit')


def setup_audit_logging(log_file: Optional[str] = None, debug: bool = False):
    """
    Set up audit logging.

    Creates a dedicated log file for billing audit events. Calling it again
    with the same file does not add a second handler.
    """
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        already_attached = any(
            isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(log_file)
            for h in audit_logger.handlers
        )
        if not already_attached:
            # 10MB max, keep 5 backups
            handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            audit_logger.addHandler(handler)

    audit_logger.setLevel(logging.INFO)

    if debug:
        audit_logger.addHandler(logging.StreamHandler())


def audit_log(event_type, details, actor=None, level='INFO'):
    """
    Log a billing audit event.

    Args:
        event_type: Type of event (e.g., 'PAYMENT_SUBMITTED')
        details: Description of what happened
        actor: Who triggered it (defaults to 'system')
        level: Log level ('INFO', 'WARNING', 'ERROR')
    """
    message = f"{event_type} | Actor: {actor or 'system'} | {details}"

    if level == 'WARNING':
        audit_logger.warning(message)
    elif level == 'ERROR':
        audit_logger.error(message)
    else:
        audit_logger.info(message)


class AuditEvent:
    """Audit event type constants."""
    # Payments
    PAYMENT_SUBMITTED = 'PAYMENT_SUBMITTED'
    PAYMENT_UPDATED = 'PAYMENT_UPDATED'
    PAYMENT_REJECTED = 'PAYMENT_REJECTED'

    # Deposits
    DEPOSIT_CREATED = 'DEPOSIT_CREATED'
    DEPOSIT_UPDATED = 'DEPOSIT_UPDATED'
    DEPOSIT_STATUS_CHANGED = 'DEPOSIT_STATUS_CHANGED'
    DEPOSIT_DELETED = 'DEPOSIT_DELETED'

    # Bills
    BILL_CREATED = 'BILL_CREATED'
    BILL_ITEM_CHANGED = 'BILL_ITEM_CHANGED'
    BILLING_RUN_COMPLETED = 'BILLING_RUN_COMPLETED'

    # Bookings
    END_OF_STAY_SCHEDULED = 'END_OF_STAY_SCHEDULED'

    # Ledger
    TRANSACTION_CREATED = 'TRANSACTION_CREATED'
    TRANSACTION_UPDATED = 'TRANSACTION_UPDATED'
    TRANSACTION_DELETED = 'TRANSACTION_DELETED'
