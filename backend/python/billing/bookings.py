"""
Booking operations that touch billing: creation with initial bills and
scheduling the end of a rolling stay.
"""

import logging
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from common.config import BillingConfig
from common.models import Bill, BillItemType, Booking, Room
from common.session import SessionManager

from .audit import audit_log, AuditEvent
from .bills import BillRepository, recompute_bill_amount
from .exceptions import BookingNotFound, ValidationError
from .generator import BillDraft, build_period_draft, generate_initial_bills, generate_next_periodic_bill
from .validators import parse_date, parse_id, parse_money


logger = logging.getLogger(__name__)


class BookingService:
    """Booking lifecycle hooks for the billing engine."""

    def __init__(
        self,
        session_manager: SessionManager,
        config: Optional[BillingConfig] = None,
        today: Callable[[], date] = date.today
    ):
        self.session_manager = session_manager
        self.config = config or BillingConfig()
        self.today = today

    def create_booking(
        self,
        room_id,
        start_date,
        fee,
        tenant_id: Optional[int] = None,
        is_rolling: bool = False,
        duration_months: Optional[int] = None,
        second_resident_fee=None,
        session: Optional[Session] = None
    ) -> Booking:
        """
        Create a booking and its initial bills.

        Fixed-duration bookings are billed for the whole term; rolling
        bookings are billed up to the current period and then left to the
        recurring billing job.
        """
        room_id = parse_id(room_id, 'room_id')
        if tenant_id not in (None, ''):
            tenant_id = parse_id(tenant_id, 'tenant_id')
        else:
            tenant_id = None
        start = parse_date(start_date, 'start_date')
        fee = parse_money(fee, 'fee')
        second_fee = None
        if second_resident_fee not in (None, ''):
            second_fee = parse_money(second_resident_fee, 'second_resident_fee', allow_zero=True)
        if not is_rolling:
            if duration_months in (None, ''):
                raise ValidationError(
                    "A fixed-term booking needs a positive duration_months", field='duration_months'
                )
            duration_months = parse_id(duration_months, 'duration_months')

        with self.session_manager.transaction(session) as s:
            if s.get(Room, room_id) is None:
                raise ValidationError(f"Room not found: {room_id}", field='room_id')

            booking = Booking(
                room_id=room_id,
                tenant_id=tenant_id,
                start_date=start,
                fee=fee,
                second_resident_fee=second_fee,
                is_rolling=bool(is_rolling),
                duration_months=None if is_rolling else duration_months,
                status='active',
            )
            s.add(booking)
            s.flush()

            drafts = generate_initial_bills(
                booking, self.today(), self.config.due_offset_days, addons=[]
            )
            for draft in drafts:
                s.add(draft.to_model())
            s.flush()

            logger.info(
                f"Created booking {booking.id} ({'rolling' if booking.is_rolling else f'{duration_months} months'}) "
                f"with {len(drafts)} bills"
            )
            return booking

    def schedule_end_of_stay(self, booking_id, end_date, session: Optional[Session] = None) -> Booking:
        """
        Set the last day of a rolling booking.

        Periods from the last billed one through ``end_date`` are billed now,
        since the recurring job only handles open-ended bookings. A bill
        whose period runs past it has its generated items re-priced for the
        shortened period; manually added items are kept.

        Raises:
            BookingNotFound: Unknown booking
            ValidationError: Fixed-term booking, end before start, or a bill
                already exists for a period starting after the end date
        """
        booking_id = parse_id(booking_id, 'booking_id')
        end = parse_date(end_date, 'end_date')

        with self.session_manager.transaction(session) as s:
            booking = s.get(Booking, booking_id, with_for_update=True)
            if booking is None:
                raise BookingNotFound(booking_id)
            if not booking.is_rolling:
                raise ValidationError(
                    f"Booking {booking_id} has a fixed term; end of stay applies to rolling bookings"
                )
            if end < booking.start_date:
                raise ValidationError("end_date is before the booking start", field='end_date')

            bills = BillRepository(s).for_booking(booking_id)
            later = [b for b in bills if b.period_start is not None and b.period_start > end]
            if later:
                raise ValidationError(
                    f"Booking {booking_id} is already billed for periods after {end} "
                    f"(bills {', '.join(str(b.id) for b in later)})",
                    field='end_date'
                )

            booking.end_date = end
            for bill in bills:
                if bill.period_start is not None and bill.period_start <= end < bill.period_end:
                    self._shorten_bill(booking, bill, end)

            # The recurring job skips bookings with an end date, so bill the rest of the stay now
            remaining = self._remaining_periods(booking, bills, end)
            for draft in remaining:
                s.add(draft.to_model())
            s.flush()

            logger.info(
                f"Booking {booking_id} scheduled to end on {end}, "
                f"{len(remaining)} remaining period(s) billed"
            )
            audit_log(AuditEvent.END_OF_STAY_SCHEDULED, f"booking={booking_id} end_date={end}")
            return booking

    def _remaining_periods(self, booking: Booking, bills: List[Bill], end: date) -> List[BillDraft]:
        covered: list = list(bills)
        drafts: List[BillDraft] = []
        while True:
            draft = generate_next_periodic_bill(booking, covered, end, self.config.due_offset_days)
            if draft is None:
                return drafts
            drafts.append(draft)
            covered.append(draft)

    def _shorten_bill(self, booking: Booking, bill: Bill, end: date) -> None:
        draft = build_period_draft(booking, bill.period_start, end, self.config.due_offset_days)
        for item in [i for i in bill.items if i.type == BillItemType.GENERATED]:
            bill.items.remove(item)
        bill.items.extend(item.to_model() for item in draft.items)
        bill.period_end = end
        recompute_bill_amount(bill)
        logger.info(f"Bill {bill.id} shortened to end {end}, amount now {bill.amount}")
