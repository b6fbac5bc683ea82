"""
Bill reminder job.

Emails tenants about unpaid bills falling due in the next few days. Reads
bills through the same repository the payment flow uses and never writes.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from billing.bills import BillRepository
from billing.exceptions import BillNotFound, ValidationError
from common.config import BillingConfig
from common.date_utils import format_long
from common.models import Bill
from common.session import SessionManager
from scheduler.alert_manager import Mailer

logger = logging.getLogger(__name__)


def render_reminder(bill: Bill) -> Dict[str, str]:
    """Subject and body of a reminder for one bill."""
    tenant = bill.booking.tenant
    subject = f"Payment reminder: {bill.description} due {format_long(bill.due_date)}"
    body = (
        f"Dear {tenant.name},\n\n"
        f"This is a reminder that your bill \"{bill.description}\" is due on "
        f"{format_long(bill.due_date)}.\n\n"
        f"Amount: {bill.amount.to_string()}\n"
        f"Already paid: {bill.paid_amount.to_string()}\n"
        f"Outstanding: {bill.outstanding.to_string()}\n\n"
        "Please ignore this message if you have already paid.\n"
    )
    return {'subject': subject, 'body': body}


@dataclass
class ReminderReport:
    """Outcome of one reminder run."""
    start: date
    end: date
    sent: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'window': {'start': self.start.isoformat(), 'end': self.end.isoformat()},
            'sent': len(self.sent),
            'skipped': len(self.skipped),
            'failed': len(self.failed),
            'sent_bill_ids': self.sent,
            'skipped_bill_ids': self.skipped,
            'failures': {str(k): v for k, v in self.failed.items()},
        }


class BillReminderJob:
    """Send reminders for unpaid bills due within ``days_ahead`` of a date."""

    def __init__(
        self,
        session_manager: SessionManager,
        mailer: Mailer,
        config: Optional[BillingConfig] = None,
        today: Callable[[], date] = date.today
    ):
        self.session_manager = session_manager
        self.mailer = mailer
        self.config = config or BillingConfig()
        self.today = today

    def run(self, target_date: Optional[date] = None) -> ReminderReport:
        """
        Email the tenant of every unpaid bill due in
        ``[target_date, target_date + days_ahead]``.

        A failed send is logged and reported; the run carries on.
        """
        start = target_date or self.today()
        end = start + timedelta(days=self.config.reminder_days_ahead)
        report = ReminderReport(start=start, end=end)

        with self.session_manager.session_scope() as s:
            repo = BillRepository(s)
            for page in repo.iter_unpaid_due_between(start, end, self.config.reminder_page_size):
                for bill in page:
                    self._remind(bill, report)

        logger.info(
            f"Bill reminders {start} - {end}: {len(report.sent)} sent, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    def _remind(self, bill: Bill, report: ReminderReport):
        tenant = bill.booking.tenant if bill.booking else None
        if tenant is None or not tenant.email:
            logger.debug(f"Bill {bill.id}: no tenant email, skipping reminder")
            report.skipped.append(bill.id)
            return

        message = render_reminder(bill)
        try:
            self.mailer.send_mail(tenant.email, message['subject'], message['body'])
        except Exception as e:
            logger.error(f"Reminder for bill {bill.id} to {tenant.email} failed: {e}")
            report.failed[bill.id] = str(e)
            return
        report.sent.append(bill.id)

    def send_bill_reminder(self, bill_id: int) -> Dict[str, Any]:
        """
        Send a reminder for a single bill right away.

        Raises:
            BillNotFound: Unknown bill
            ValidationError: Bill is paid or tenant has no email
        """
        with self.session_manager.session_scope() as s:
            bill = s.get(Bill, bill_id)
            if bill is None:
                raise BillNotFound(bill_id)
            if bill.is_paid:
                raise ValidationError(f"Bill {bill_id} is already paid")
            tenant = bill.booking.tenant
            if tenant is None or not tenant.email:
                raise ValidationError(f"Bill {bill_id} has no tenant email on file")

            message = render_reminder(bill)
            self.mailer.send_mail(tenant.email, message['subject'], message['body'])
            logger.info(f"Reminder for bill {bill_id} sent to {tenant.email}")
            return {'bill_id': bill_id, 'to': tenant.email, 'subject': message['subject']}
