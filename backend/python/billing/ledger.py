"""
Manual entries in the income/expense ledger.

Payments and deposit resolutions write their own INCOME transactions; this
module covers everything else finance records by hand, such as repairs,
utilities or one-off income. Entries created by the engine carry a payment
or deposit reference and are read-only here.
"""

import logging
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.models import Booking, Location, Transaction
from common.related import RelatedRef
from common.session import SessionManager

from .audit import audit_log, AuditEvent
from .exceptions import BookingNotFound, TransactionNotFound, ValidationError
from .validators import parse_date, parse_id, parse_money, parse_transaction_type


logger = logging.getLogger(__name__)


def is_manual(transaction: Transaction) -> bool:
    """True unless the entry was written by a payment or deposit."""
    return transaction.related is None or transaction.related.kind == 'booking'


class TransactionService:
    """Create, edit, list and delete manual ledger entries."""

    def __init__(self, session_manager: SessionManager, today: Callable[[], date] = date.today):
        self.session_manager = session_manager
        self.today = today

    @staticmethod
    def _load(s: Session, transaction_id: int) -> Transaction:
        transaction = s.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    @staticmethod
    def _load_manual(s: Session, transaction_id: int) -> Transaction:
        transaction = TransactionService._load(s, transaction_id)
        if not is_manual(transaction):
            raise ValidationError(
                f"Transaction {transaction_id} was recorded for {transaction.related.kind} "
                f"{transaction.related.id} and cannot be changed by hand"
            )
        return transaction

    @staticmethod
    def _check_location(s: Session, location_id) -> Optional[int]:
        if location_id in (None, ''):
            return None
        location_id = parse_id(location_id, 'location_id')
        if s.get(Location, location_id) is None:
            raise ValidationError(f"Location not found: {location_id}", field='location_id')
        return location_id

    @staticmethod
    def _category(value) -> str:
        category = str(value).strip() if value is not None else ''
        if not category:
            raise ValidationError("category is required", field='category')
        return category[:100]

    def get_transaction(self, transaction_id: int, session: Optional[Session] = None) -> Transaction:
        with self.session_manager.transaction(session) as s:
            return self._load(s, transaction_id)

    def list_transactions(
        self,
        entry_type=None,
        location_id=None,
        start=None,
        end=None,
        session: Optional[Session] = None
    ) -> List[Transaction]:
        """Ledger entries, oldest first, optionally filtered by type, location and date range."""
        stmt = select(Transaction).order_by(Transaction.date, Transaction.id)
        if entry_type not in (None, ''):
            stmt = stmt.where(Transaction.type == parse_transaction_type(entry_type))
        if location_id not in (None, ''):
            stmt = stmt.where(Transaction.location_id == parse_id(location_id, 'location_id'))
        start = parse_date(start, 'start', required=False)
        end = parse_date(end, 'end', required=False)
        if start and end and end < start:
            raise ValidationError("end is before start", field='end')
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)

        with self.session_manager.transaction(session) as s:
            return list(s.scalars(stmt))

    def create_transaction(
        self,
        entry_type,
        amount,
        category,
        transaction_date=None,
        description: Optional[str] = None,
        location_id=None,
        booking_id=None,
        session: Optional[Session] = None
    ) -> Transaction:
        """
        Record a manual INCOME or EXPENSE entry.

        ``transaction_date`` defaults to today. A ``booking_id`` links the
        entry to a booking and supplies the location when none is given.

        Raises:
            ValidationError: Bad type, amount, category, date or location
            BookingNotFound: Unknown booking
        """
        transaction_type = parse_transaction_type(entry_type)
        amount = parse_money(amount)
        category = self._category(category)
        entry_date = parse_date(transaction_date, 'date', required=False) or self.today()

        with self.session_manager.transaction(session) as s:
            location = self._check_location(s, location_id)
            related = None
            if booking_id not in (None, ''):
                booking_id = parse_id(booking_id, 'booking_id')
                booking = s.get(Booking, booking_id)
                if booking is None:
                    raise BookingNotFound(booking_id)
                related = RelatedRef.booking(booking_id)
                if location is None:
                    location = booking.location_id

            transaction = Transaction(
                amount=amount,
                type=transaction_type,
                date=entry_date,
                category=category,
                description=description,
                location_id=location,
                related=related,
            )
            s.add(transaction)
            s.flush()

            logger.info(f"Recorded {transaction_type.value} {transaction.id}: {amount} ({category})")
            audit_log(
                AuditEvent.TRANSACTION_CREATED,
                f"transaction={transaction.id} type={transaction_type.value} amount={amount} "
                f"category={category} date={entry_date}"
            )
            return transaction

    def update_transaction(
        self,
        transaction_id: int,
        entry_type=None,
        amount=None,
        category=None,
        transaction_date=None,
        description: Optional[str] = None,
        location_id=None,
        session: Optional[Session] = None
    ) -> Transaction:
        """Change the given fields of a manual entry; None leaves a field as it is."""
        with self.session_manager.transaction(session) as s:
            transaction = self._load_manual(s, transaction_id)

            if entry_type is not None:
                transaction.type = parse_transaction_type(entry_type)
            if amount is not None:
                transaction.amount = parse_money(amount)
            if category is not None:
                transaction.category = self._category(category)
            if transaction_date is not None:
                transaction.date = parse_date(transaction_date, 'date')
            if description is not None:
                transaction.description = description
            if location_id is not None:
                transaction.location_id = self._check_location(s, location_id)
            s.flush()

            audit_log(
                AuditEvent.TRANSACTION_UPDATED,
                f"transaction={transaction_id} type={transaction.type.value} amount={transaction.amount}"
            )
            return transaction

    def delete_transaction(self, transaction_id: int, session: Optional[Session] = None) -> None:
        with self.session_manager.transaction(session) as s:
            transaction = self._load_manual(s, transaction_id)
            s.delete(transaction)

            logger.info(f"Deleted transaction {transaction_id}")
            audit_log(
                AuditEvent.TRANSACTION_DELETED,
                f"transaction={transaction_id} type={transaction.type.value} amount={transaction.amount}",
                level='WARNING'
            )
