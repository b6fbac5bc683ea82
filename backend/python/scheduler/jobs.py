"""
Recurring billing job.

Runs once a day: every rolling booking without a scheduled end gets its next
periodic bill if that period has arrived. Each booking is handled in its own
transaction so one bad booking cannot take the rest of the batch down.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from billing.audit import audit_log, AuditEvent
from billing.bills import BillRepository
from billing.exceptions import BillingJobError
from billing.generator import generate_next_periodic_bill
from common.config import BillingConfig
from common.models import Booking, BillingJobRun
from common.session import SessionManager

logger = logging.getLogger(__name__)

JOB_NAME = 'recurring_billing'

OUTCOME_PROCESSED = 'processed'
OUTCOME_NO_BILL = 'no_bill_needed'
OUTCOME_FAILED = 'failed'


@dataclass
class BookingOutcome:
    """What the job did for one booking."""
    booking_id: int
    outcome: str
    bill_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'booking_id': self.booking_id, 'outcome': self.outcome}
        if self.bill_id is not None:
            data['bill_id'] = self.bill_id
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass
class BillingRunReport:
    """JSON-serializable summary of one job run."""
    as_of: date
    outcomes: List[BookingOutcome] = field(default_factory=list)
    run_id: Optional[int] = None
    triggered_by: str = 'scheduler'
    duration_seconds: float = 0.0

    @property
    def bookings_processed(self) -> int:
        return len(self.outcomes)

    @property
    def bills_created(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == OUTCOME_PROCESSED)

    @property
    def failed_booking_ids(self) -> List[int]:
        return [o.booking_id for o in self.outcomes if o.outcome == OUTCOME_FAILED]

    @property
    def status(self) -> str:
        return 'partial_success' if self.failed_booking_ids else 'success'

    @property
    def error(self) -> Optional[str]:
        failed = self.failed_booking_ids
        if not failed:
            return None
        return (
            f"{len(failed)} of {self.bookings_processed} booking(s) failed: "
            f"{', '.join(str(i) for i in failed)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'as_of': self.as_of.isoformat(),
            'status': self.status,
            'triggered_by': self.triggered_by,
            'summary': {
                'bookings': self.bookings_processed,
                'bills_created': self.bills_created,
                'no_bill_needed': sum(1 for o in self.outcomes if o.outcome == OUTCOME_NO_BILL),
                'failed': len(self.failed_booking_ids),
            },
            'failed_booking_ids': self.failed_booking_ids,
            'error': self.error,
            'results': [o.to_dict() for o in self.outcomes],
            'duration_seconds': round(self.duration_seconds, 3),
        }

    def raise_for_failures(self):
        """Raise BillingJobError if any booking failed."""
        if self.failed_booking_ids:
            raise BillingJobError(self.failed_booking_ids, message=self.error)


class RecurringBillingJob:
    """
    Generate due periodic bills for all open rolling bookings.

    Safe to run repeatedly: the generator returns nothing for a period that
    is already billed, and the (booking, period start) unique constraint
    rejects a duplicate from an overlapping run.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        config: Optional[BillingConfig] = None,
        today: Callable[[], date] = date.today
    ):
        self.session_manager = session_manager
        self.config = config or BillingConfig()
        self.today = today

    def run(self, as_of: Optional[date] = None, triggered_by: str = 'scheduler') -> BillingRunReport:
        """
        Run the job.

        Per-booking errors are recorded in the report, never raised. Call
        ``report.raise_for_failures()`` to turn them into an exception.
        """
        as_of = as_of or self.today()
        started = time.monotonic()
        report = BillingRunReport(as_of=as_of, triggered_by=triggered_by)
        report.run_id = self._start_run(as_of, triggered_by)

        booking_ids = self._open_rolling_booking_ids()
        logger.info(f"Recurring billing for {as_of}: {len(booking_ids)} open rolling bookings")

        for booking_id in booking_ids:
            report.outcomes.append(self._process_booking(booking_id, as_of))

        report.duration_seconds = time.monotonic() - started
        self._finish_run(report)

        if report.failed_booking_ids:
            logger.error(f"Recurring billing for {as_of} finished with failures: {report.error}")
        else:
            logger.info(
                f"Recurring billing for {as_of} complete: {report.bills_created} bill(s) created "
                f"across {report.bookings_processed} booking(s)"
            )
        audit_log(
            AuditEvent.BILLING_RUN_COMPLETED,
            f"run={report.run_id} as_of={as_of} status={report.status} "
            f"bills_created={report.bills_created} failed={report.failed_booking_ids}",
            actor=triggered_by,
            level='WARNING' if report.failed_booking_ids else 'INFO'
        )
        return report

    def preview(self, as_of: Optional[date] = None) -> Dict[str, Any]:
        """What a run on ``as_of`` would create, without writing anything."""
        as_of = as_of or self.today()
        results = []
        booking_ids = self._open_rolling_booking_ids()
        with self.session_manager.session_scope() as s:
            for booking_id in booking_ids:
                booking = s.get(Booking, booking_id)
                bills = BillRepository(s).for_booking(booking_id)
                entry = {'booking_id': booking_id, 'existing_bills': len(bills)}
                try:
                    draft = generate_next_periodic_bill(
                        booking, bills, as_of, self.config.due_offset_days
                    )
                except Exception as e:
                    logger.warning(f"Preview for booking {booking_id} failed: {e}")
                    entry.update(status='error', reason=str(e))
                else:
                    if draft is None:
                        entry['status'] = OUTCOME_NO_BILL
                    else:
                        entry.update(status='would_create_bill', bill=draft.to_dict())
                results.append(entry)

        return {
            'as_of': as_of.isoformat(),
            'would_create': sum(1 for r in results if r['status'] == 'would_create_bill'),
            'results': results,
        }

    def _open_rolling_booking_ids(self) -> List[int]:
        with self.session_manager.session_scope() as s:
            stmt = (
                select(Booking.id)
                .where(Booking.is_rolling.is_(True), Booking.end_date.is_(None))
                .order_by(Booking.id)
            )
            return list(s.scalars(stmt))

    def _process_booking(self, booking_id: int, as_of: date) -> BookingOutcome:
        try:
            with self.session_manager.session_scope() as s:
                booking = s.get(Booking, booking_id)
                bills = BillRepository(s).for_booking(booking_id)
                draft = generate_next_periodic_bill(
                    booking, bills, as_of, self.config.due_offset_days
                )
                if draft is None:
                    return BookingOutcome(booking_id, OUTCOME_NO_BILL)

                bill = draft.to_model()
                s.add(bill)
                s.flush()
                logger.info(
                    f"Booking {booking_id}: created bill {bill.id} for "
                    f"{draft.period_start} - {draft.period_end} ({bill.amount})"
                )
                return BookingOutcome(booking_id, OUTCOME_PROCESSED, bill_id=bill.id)

        except IntegrityError as e:
            logger.warning(f"Booking {booking_id}: period already billed by a concurrent run ({e.orig})")
            return BookingOutcome(booking_id, OUTCOME_FAILED, error=f"Duplicate bill for period: {e.orig}")

        except Exception as e:
            logger.exception(f"Booking {booking_id}: bill generation failed: {e}")
            return BookingOutcome(booking_id, OUTCOME_FAILED, error=str(e))

    def _start_run(self, as_of: date, triggered_by: str) -> int:
        with self.session_manager.session_scope() as s:
            run = BillingJobRun(
                job_name=JOB_NAME,
                status='running',
                triggered_by=triggered_by,
                as_of=as_of,
                started_at=datetime.utcnow(),
            )
            s.add(run)
            s.flush()
            return run.id

    def _finish_run(self, report: BillingRunReport):
        with self.session_manager.session_scope() as s:
            run = s.get(BillingJobRun, report.run_id)
            run.status = report.status
            run.completed_at = datetime.utcnow()
            run.bookings_processed = report.bookings_processed
            run.bills_created = report.bills_created
            run.failed_booking_ids = report.failed_booking_ids
            run.error_message = report.error
            run.report = report.to_dict()
