"""
Bill queries and bill-item maintenance.

A bill's amount is always the sum of its items, so every item write here
recomputes it and refuses to drop it below what has already been paid.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from common.models import Bill, BillItem, BillItemType, Booking
from common.money import Money
from common.operations import BaseRepository
from common.related import RelatedRef
from common.session import SessionManager

from .audit import audit_log, AuditEvent
from .exceptions import (
    BillNotFound, BillItemNotFound, BookingNotFound, ValidationError,
)
from .validators import parse_date, parse_id, parse_money


logger = logging.getLogger(__name__)


def recompute_bill_amount(bill: Bill) -> Money:
    """
    Set a bill's amount from its items.

    Raises ValidationError if the new amount is below what has been paid.
    """
    amount = bill.recompute_amount()
    if amount < bill.paid_amount:
        raise ValidationError(
            f"Bill {bill.id} amount {amount} would fall below the paid amount {bill.paid_amount}",
            field='amount'
        )
    return amount


def _parse_related(value) -> Optional[RelatedRef]:
    if value is None or isinstance(value, RelatedRef):
        return value
    if not isinstance(value, dict):
        raise ValidationError("related must be an object with kind and id", field='items.related')
    try:
        return RelatedRef.from_dict(value)
    except ValueError as e:
        raise ValidationError(str(e), field='items.related')


class BillRepository(BaseRepository[Bill]):
    """Bill lookups used by the orchestrator, jobs and web layer."""

    model_class = Bill

    def for_booking(self, booking_id: int) -> List[Bill]:
        stmt = (
            select(Bill)
            .where(Bill.booking_id == booking_id)
            .options(selectinload(Bill.items))
            .order_by(Bill.due_date, Bill.id)
        )
        return list(self.session.scalars(stmt))

    def outstanding_for_booking(
        self,
        booking_id: int,
        as_of: date,
        for_update: bool = False
    ) -> List[Bill]:
        """
        Bills due by ``as_of`` that are not fully paid, oldest first.

        With ``for_update`` every due bill of the booking is row-locked, so a
        concurrent payment against the same booking waits for this
        transaction.
        """
        stmt = (
            select(Bill)
            .where(Bill.booking_id == booking_id, Bill.due_date <= as_of)
            .options(selectinload(Bill.items))
            .order_by(Bill.due_date, Bill.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        bills = list(self.session.scalars(stmt))
        # Amounts are compared in Python; SQLite stores them as text
        return [bill for bill in bills if bill.paid_amount < bill.amount]

    def first_bill(self, booking_id: int) -> Optional[Bill]:
        stmt = (
            select(Bill)
            .where(Bill.booking_id == booking_id)
            .order_by(Bill.due_date, Bill.id)
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def due_between_stmt(self, start: date, end: date):
        return (
            select(Bill)
            .where(Bill.due_date >= start, Bill.due_date <= end)
            .options(
                selectinload(Bill.items),
                selectinload(Bill.booking).selectinload(Booking.tenant),
            )
            .order_by(Bill.due_date, Bill.id)
        )

    def iter_unpaid_due_between(self, start: date, end: date, page_size: int = 50) -> Iterator[List[Bill]]:
        """Pages of unpaid bills due in ``[start, end]``."""
        for page in self.iter_pages(self.due_between_stmt(start, end), page_size):
            unpaid = [bill for bill in page if bill.paid_amount < bill.amount]
            if unpaid:
                yield unpaid


class BillService:
    """
    Bill and bill-item operations.

    Every write accepts an optional ``session``; when given, the work joins
    that transaction instead of opening its own.
    """

    def __init__(self, session_manager: SessionManager, today: Callable[[], date] = date.today):
        self.session_manager = session_manager
        self.today = today

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_bill(self, bill_id: int, session: Optional[Session] = None) -> Bill:
        with self.session_manager.transaction(session) as s:
            bill = s.get(Bill, bill_id, options=[selectinload(Bill.items)])
            if bill is None:
                raise BillNotFound(bill_id)
            return bill

    def list_bills(self, booking_id: int, session: Optional[Session] = None) -> List[Bill]:
        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)
            return BillRepository(s).for_booking(booking_id)

    def get_unpaid_bills(
        self,
        booking_id: int,
        as_of: Optional[date] = None,
        session: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Outstanding bills of a booking and their total.

        Returns:
            dict with ``total`` (Money) and ``bills`` (list of Bill)
        """
        as_of = as_of or self.today()
        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)
            bills = BillRepository(s).outstanding_for_booking(booking_id, as_of)
            return {
                'total': Money.sum(bill.outstanding for bill in bills),
                'bills': bills,
            }

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def create_bill(
        self,
        booking_id: int,
        due_date,
        description: str,
        items: List[Dict[str, Any]],
        session: Optional[Session] = None
    ) -> Bill:
        """
        Create a manual bill with CREATED items.

        Args:
            booking_id: Booking to bill
            due_date: Date the bill becomes outstanding
            description: Label shown to the tenant
            items: ``[{'amount': ..., 'description': ...}]``, at least one
        """
        booking_id = parse_id(booking_id, 'booking_id')
        due = parse_date(due_date, 'due_date')
        if not items:
            raise ValidationError("A bill needs at least one item", field='items')
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError("Each bill item must be an object", field='items')
        drafts = [
            (
                parse_money(item.get('amount'), 'items.amount'),
                item.get('description', ''),
                _parse_related(item.get('related')),
            )
            for item in items
        ]

        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)

            bill = Bill(
                booking_id=booking_id,
                due_date=due,
                description=description or '',
                paid_amount=Money.zero(),
            )
            bill.items = [
                BillItem(amount=amount, description=label, type=BillItemType.CREATED, related=related)
                for amount, label, related in drafts
            ]
            bill.recompute_amount()
            s.add(bill)
            s.flush()

            logger.info(f"Created bill {bill.id} for booking {booking_id}: {bill.amount}")
            audit_log(AuditEvent.BILL_CREATED, f"bill={bill.id} booking={booking_id} amount={bill.amount}")
            return bill

    def delete_bill(self, bill_id: int, session: Optional[Session] = None) -> None:
        """Delete a bill that has not received any payment."""
        with self.session_manager.transaction(session) as s:
            bill = s.get(Bill, bill_id, with_for_update=True)
            if bill is None:
                raise BillNotFound(bill_id)
            if bill.paid_amount.is_positive() or bill.allocations:
                raise ValidationError(
                    f"Bill {bill_id} has payments applied and cannot be deleted"
                )
            s.delete(bill)
            s.flush()
            logger.info(f"Deleted bill {bill_id}")

    # ------------------------------------------------------------------
    # Bill items
    # ------------------------------------------------------------------

    def add_bill_item(
        self,
        bill_id: int,
        amount,
        description: str,
        item_type: BillItemType = BillItemType.CREATED,
        related: Optional[RelatedRef] = None,
        session: Optional[Session] = None
    ) -> BillItem:
        amount = parse_money(amount)
        with self.session_manager.transaction(session) as s:
            bill = s.get(Bill, bill_id, with_for_update=True)
            if bill is None:
                raise BillNotFound(bill_id)

            item = BillItem(amount=amount, description=description or '', type=item_type, related=related)
            bill.items.append(item)
            recompute_bill_amount(bill)
            s.flush()

            logger.debug(f"Added item {item.id} to bill {bill_id}, amount now {bill.amount}")
            audit_log(AuditEvent.BILL_ITEM_CHANGED, f"bill={bill_id} item={item.id} added amount={amount}")
            return item

    def update_bill_item(
        self,
        item_id: int,
        amount=None,
        description: Optional[str] = None,
        session: Optional[Session] = None
    ) -> BillItem:
        with self.session_manager.transaction(session) as s:
            item = s.get(BillItem, item_id)
            if item is None:
                raise BillItemNotFound(item_id)

            if amount is not None:
                item.amount = parse_money(amount, allow_zero=True)
            if description is not None:
                item.description = description

            recompute_bill_amount(item.bill)
            s.flush()

            audit_log(
                AuditEvent.BILL_ITEM_CHANGED,
                f"bill={item.bill_id} item={item_id} updated amount={item.amount}"
            )
            return item

    def delete_bill_item(self, item_id: int, session: Optional[Session] = None) -> None:
        with self.session_manager.transaction(session) as s:
            item = s.get(BillItem, item_id)
            if item is None:
                raise BillItemNotFound(item_id)

            bill = item.bill
            bill.items.remove(item)
            recompute_bill_amount(bill)
            s.flush()

            audit_log(AuditEvent.BILL_ITEM_CHANGED, f"bill={bill.id} item={item_id} deleted")
