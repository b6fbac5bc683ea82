"""
Deposit lifecycle.

    UNPAID -> HELD -> APPLIED | REFUNDED | PARTIALLY_REFUNDED | FORFEITED

Transitions only move forward. Resolving a deposit recognizes whatever the
property keeps as income; a full refund keeps nothing and books nothing.
The deposit amount is mirrored by a bill item on the booking's first bill so
the tenant pays it through the normal payment flow.
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.config import BillingConfig
from common.models import (
    Bill, BillItem, BillItemType, Booking, Deposit, DepositStatus, Transaction,
    TransactionType,
)
from common.money import Money
from common.related import RelatedRef
from common.session import SessionManager

from .audit import audit_log, AuditEvent
from .bills import BillRepository, recompute_bill_amount
from .exceptions import (
    BookingNotFound, DepositNotFound, InvalidTransition, ValidationError,
)
from .validators import parse_deposit_status, parse_id, parse_money


logger = logging.getLogger(__name__)

DEPOSIT_ITEM_DESCRIPTION = 'Room deposit'


def check_transition(current: DepositStatus, new: DepositStatus) -> None:
    """
    Raise InvalidTransition unless ``current -> new`` moves forward.

    Terminal states never change; UNPAID and HELD are never re-entered.
    """
    if current.is_terminal:
        raise InvalidTransition(
            f"Deposit is already {current.value} and cannot change to {new.value}"
        )
    if new == DepositStatus.UNPAID and current != DepositStatus.UNPAID:
        raise InvalidTransition(f"Deposit cannot return to UNPAID from {current.value}")


class DepositService:
    """Create, edit, resolve and delete deposits."""

    def __init__(
        self,
        session_manager: SessionManager,
        config: Optional[BillingConfig] = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_manager = session_manager
        self.config = config or BillingConfig()
        self.today = today
        self.now = now

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load(s: Session, deposit_id: int, for_update: bool = False) -> Deposit:
        deposit = s.get(Deposit, deposit_id, with_for_update=for_update or None)
        if deposit is None:
            raise DepositNotFound(deposit_id)
        return deposit

    @staticmethod
    def _mirrored_items(s: Session, deposit: Deposit):
        """Bill items mirroring ``deposit``; they live on its booking's bills."""
        stmt = (
            select(BillItem)
            .join(Bill, BillItem.bill_id == Bill.id)
            .where(Bill.booking_id == deposit.booking_id, BillItem.related.isnot(None))
        )
        ref = RelatedRef.deposit(deposit.id)
        return [item for item in s.scalars(stmt) if item.related == ref]

    def _mirror_on_first_bill(self, s: Session, deposit: Deposit) -> Optional[BillItem]:
        first_bill = BillRepository(s).first_bill(deposit.booking_id)
        if first_bill is None:
            logger.warning(
                f"Booking {deposit.booking_id} has no bills yet; deposit {deposit.id} not mirrored"
            )
            return None

        item = BillItem(
            amount=deposit.amount,
            description=DEPOSIT_ITEM_DESCRIPTION,
            type=BillItemType.CREATED,
            related=RelatedRef.deposit(deposit.id),
        )
        first_bill.items.append(item)
        recompute_bill_amount(first_bill)
        return item

    def _income(self, deposit: Deposit, amount: Money, description: str) -> Transaction:
        return Transaction(
            amount=amount,
            type=TransactionType.INCOME,
            date=self.today(),
            category=self.config.deposit_category,
            description=description,
            location_id=deposit.booking.location_id,
            related=RelatedRef.deposit(deposit.id),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_deposit(self, deposit_id: int, session: Optional[Session] = None) -> Deposit:
        with self.session_manager.transaction(session) as s:
            return self._load(s, deposit_id)

    def create_deposit(self, booking_id, amount, session: Optional[Session] = None) -> Deposit:
        """
        Create an UNPAID deposit and mirror it on the booking's first bill.

        Raises:
            BookingNotFound: Unknown booking
            ValidationError: Non-positive amount or booking already has one
        """
        booking_id = parse_id(booking_id, 'booking_id')
        amount = parse_money(amount)

        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)
            existing = s.scalars(select(Deposit).where(Deposit.booking_id == booking_id)).first()
            if existing is not None:
                raise ValidationError(
                    f"Booking {booking_id} already has deposit {existing.id}", field='booking_id'
                )

            deposit = Deposit(booking_id=booking_id, amount=amount, status=DepositStatus.UNPAID)
            s.add(deposit)
            s.flush()

            self._mirror_on_first_bill(s, deposit)
            s.flush()

            logger.info(f"Created deposit {deposit.id} of {amount} for booking {booking_id}")
            audit_log(AuditEvent.DEPOSIT_CREATED, f"deposit={deposit.id} booking={booking_id} amount={amount}")
            return deposit

    def update_deposit(self, deposit_id: int, amount=None, booking_id=None,
                       session: Optional[Session] = None) -> Deposit:
        """
        Change amount or booking of an unresolved deposit.

        The mirrored bill item follows in the same transaction: its amount is
        updated, and on a booking change it moves to the new booking's first
        bill.
        """
        with self.session_manager.transaction(session) as s:
            deposit = self._load(s, deposit_id, for_update=True)
            if deposit.status.is_terminal:
                raise InvalidTransition(
                    f"Deposit {deposit_id} is {deposit.status.value} and can no longer be edited"
                )

            items = self._mirrored_items(s, deposit)

            if amount is not None:
                deposit.amount = parse_money(amount)
                for item in items:
                    item.amount = deposit.amount
                    recompute_bill_amount(item.bill)

            if booking_id is not None:
                booking_id = parse_id(booking_id, 'booking_id')
                if booking_id != deposit.booking_id:
                    if s.get(Booking, booking_id) is None:
                        raise BookingNotFound(booking_id)
                    taken = s.scalars(select(Deposit).where(Deposit.booking_id == booking_id)).first()
                    if taken is not None:
                        raise ValidationError(
                            f"Booking {booking_id} already has deposit {taken.id}", field='booking_id'
                        )
                    for item in items:
                        bill = item.bill
                        bill.items.remove(item)
                        recompute_bill_amount(bill)
                    deposit.booking_id = booking_id
                    s.flush()
                    s.expire(deposit, ['booking'])
                    self._mirror_on_first_bill(s, deposit)

            s.flush()
            audit_log(
                AuditEvent.DEPOSIT_UPDATED,
                f"deposit={deposit_id} booking={deposit.booking_id} amount={deposit.amount}"
            )
            return deposit

    def update_deposit_status(self, deposit_id: int, new_status, refunded_amount=None,
                              session: Optional[Session] = None) -> Deposit:
        """
        Move a deposit to a new status.

        - APPLIED: income for the full amount, ``applied_at`` stamped
        - PARTIALLY_REFUNDED: needs ``0 < refunded_amount < amount``; income
          for what is kept, ``refunded_at`` stamped
        - REFUNDED: needs ``refunded_amount == amount``; no income
        - anything else: status change only

        Raises:
            DepositNotFound: Unknown deposit
            InvalidTransition: Backward move or refund amount out of range;
                nothing is changed
        """
        new_status = parse_deposit_status(new_status)

        with self.session_manager.transaction(session) as s:
            deposit = self._load(s, deposit_id, for_update=True)
            old_status = deposit.status
            check_transition(old_status, new_status)

            if new_status == DepositStatus.APPLIED:
                s.add(self._income(
                    deposit, deposit.amount, f"Deposit applied for booking #{deposit.booking_id}"
                ))
                deposit.applied_at = self.now()

            elif new_status == DepositStatus.PARTIALLY_REFUNDED:
                refund = self._refund_amount(refunded_amount)
                if not (refund.is_positive() and refund < deposit.amount):
                    raise InvalidTransition(
                        f"Partial refund must be between 0 and {deposit.amount}, got {refund}"
                    )
                kept = deposit.amount - refund
                s.add(self._income(
                    deposit, kept,
                    f"Deposit retained for booking #{deposit.booking_id} (refunded {refund})"
                ))
                deposit.refunded_amount = refund
                deposit.refunded_at = self.now()

            elif new_status == DepositStatus.REFUNDED:
                refund = self._refund_amount(refunded_amount)
                if refund != deposit.amount:
                    raise InvalidTransition(
                        f"Full refund must equal the deposit amount {deposit.amount}, got {refund}"
                    )
                deposit.refunded_amount = refund
                deposit.refunded_at = self.now()

            deposit.status = new_status
            s.flush()

            logger.info(f"Deposit {deposit_id}: {old_status.value} -> {new_status.value}")
            audit_log(
                AuditEvent.DEPOSIT_STATUS_CHANGED,
                f"deposit={deposit_id} {old_status.value}->{new_status.value}"
                + (f" refunded={deposit.refunded_amount}" if deposit.refunded_amount is not None else '')
            )
            return deposit

    @staticmethod
    def _refund_amount(value) -> Money:
        if value is None:
            raise InvalidTransition("A refunded amount is required for refunds")
        try:
            return parse_money(value, 'refunded_amount', positive=False)
        except ValidationError as e:
            raise InvalidTransition(e.message)

    def delete_deposit(self, deposit_id: int, session: Optional[Session] = None) -> None:
        """Remove the mirrored bill items, then the deposit, in one transaction."""
        with self.session_manager.transaction(session) as s:
            deposit = self._load(s, deposit_id, for_update=True)

            for item in self._mirrored_items(s, deposit):
                bill = item.bill
                bill.items.remove(item)
                recompute_bill_amount(bill)
            s.flush()

            s.delete(deposit)
            s.flush()

            logger.info(f"Deleted deposit {deposit_id}")
            audit_log(AuditEvent.DEPOSIT_DELETED, f"deposit={deposit_id}")
