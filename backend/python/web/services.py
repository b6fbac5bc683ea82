"""
Service container for the web layer.

Route handlers reach every collaborator through this object, so the app can
be built against a test database, a fake storage and a fake mailer.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from billing.bills import BillService
from billing.bookings import BookingService
from billing.deposits import DepositService
from billing.ledger import TransactionService
from billing.payments import PaymentService
from billing.storage import LocalObjectStorage, ObjectStorage
from common.config import BillingConfig
from common.session import SessionManager
from scheduler.alert_manager import AlertManager, Mailer
from scheduler.config import SchedulerConfig
from scheduler.engine import SchedulerEngine
from scheduler.jobs import RecurringBillingJob
from scheduler.reminders import BillReminderJob

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    """Everything the routes need, wired to one session manager."""
    session_manager: SessionManager
    config: BillingConfig
    payments: PaymentService
    deposits: DepositService
    bills: BillService
    bookings: BookingService
    transactions: TransactionService
    billing_job: RecurringBillingJob
    engine: SchedulerEngine
    reminders: Optional[BillReminderJob] = None

    @classmethod
    def build(
        cls,
        session_manager: SessionManager,
        config: Optional[BillingConfig] = None,
        storage: Optional[ObjectStorage] = None,
        mailer: Optional[Mailer] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        alert_manager: Optional[AlertManager] = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.utcnow
    ) -> 'BillingServices':
        """
        Wire the billing services.

        Args:
            session_manager: Database session manager
            config: Billing settings; defaults apply when omitted
            storage: Proof storage; a local directory from config when omitted
            mailer: Outbound mail; reminders are unavailable without one
            scheduler_config: Job definitions used by the cron endpoints
            alert_manager: Alerts for cron-triggered billing runs
            today: Clock for due dates
            now: Clock for timestamps
        """
        config = config or BillingConfig()
        if storage is None:
            storage = LocalObjectStorage(config.storage.root)

        engine = SchedulerEngine(
            scheduler_config or SchedulerConfig(),
            session_manager,
            billing_config=config,
            alert_manager=alert_manager,
            mailer=mailer,
            today=today,
        )

        return cls(
            session_manager=session_manager,
            config=config,
            payments=PaymentService(session_manager, storage, config, today=today, now=now),
            deposits=DepositService(session_manager, config, today=today, now=now),
            bills=BillService(session_manager, today=today),
            bookings=BookingService(session_manager, config, today=today),
            transactions=TransactionService(session_manager, today=today),
            billing_job=RecurringBillingJob(session_manager, config, today=today),
            engine=engine,
            reminders=BillReminderJob(session_manager, mailer, config, today=today) if mailer else None,
        )
