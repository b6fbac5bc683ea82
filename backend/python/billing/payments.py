"""
Payment submission.

A payment is stored and spread over the booking's outstanding bills in one
database transaction. Any unapplied remainder rolls the whole unit back.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from common.config import BillingConfig
from common.models import (
    Bill, Booking, Deposit, DepositStatus, Payment, PaymentBill, Transaction,
    TransactionType,
)
from common.money import Money
from common.related import RelatedRef
from common.session import SessionManager

from .allocator import AllocationResult, allocate
from .audit import audit_log, AuditEvent
from .bills import BillRepository
from .exceptions import (
    BookingNotFound, PaymentNotFound, ReconciliationMismatch, StorageError,
)
from .storage import ObjectStorage, payment_proof_key
from .validators import parse_date, parse_id, parse_money


logger = logging.getLogger(__name__)


@dataclass
class ProofFile:
    """Uploaded proof of payment."""
    filename: str
    data: bytes


@dataclass
class IncomeSplit:
    """How the money applied by one payment divides between deposits and the rest."""
    regular: Money
    deposit: Money
    completed_deposit_ids: List[int]


def split_applied_amounts(bills: Dict[int, Bill], result: AllocationResult,
                          previously_paid: Dict[int, Money]) -> IncomeSplit:
    """
    Divide allocated amounts over each bill's items, deposit items first.

    Money already on a bill before this payment is assumed to have covered
    items in the same order, so only the newly applied slice is classified.
    """
    regular = Money.zero()
    deposit = Money.zero()
    completed = []

    for update in result.updates:
        bill = bills[update.bill_id]
        items = sorted(bill.items, key=lambda item: (not item.is_deposit, item.id or 0))

        already = previously_paid[bill.id]
        remaining = update.applied
        for item in items:
            if remaining.is_zero():
                break
            covered_before = already.min(item.amount)
            already = already - covered_before
            open_amount = item.amount - covered_before
            if not open_amount.is_positive():
                continue

            applied = remaining.min(open_amount)
            remaining = remaining - applied
            if item.is_deposit:
                deposit = deposit + applied
                if applied == open_amount and item.related.id not in completed:
                    completed.append(item.related.id)
            else:
                regular = regular + applied

    return IncomeSplit(regular=regular, deposit=deposit, completed_deposit_ids=completed)


class PaymentService:
    """
    Payment orchestrator.

    Collaborators are injected so tests can run without network or disk:
    ``storage`` receives proof files and ``today`` decides which bills are due.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        storage: Optional[ObjectStorage] = None,
        config: Optional[BillingConfig] = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_manager = session_manager
        self.storage = storage
        self.config = config or BillingConfig()
        self.today = today
        self.now = now

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_payment(
        self,
        booking_id,
        amount,
        payment_date,
        proof: Optional[ProofFile] = None,
        status_id: Optional[int] = None,
        session: Optional[Session] = None
    ) -> Payment:
        """
        Record a payment and apply it to the booking's outstanding bills.

        Args:
            booking_id: Booking paying
            amount: Positive amount received
            payment_date: Date the money arrived
            proof: Optional proof file, uploaded before any database write
            status_id: Optional payment status reference
            session: Join this transaction instead of opening one

        Returns:
            The created Payment

        Raises:
            ValidationError: Malformed input
            BookingNotFound: Unknown booking
            StorageError: Proof upload failed; nothing was written
            ReconciliationMismatch: Payment does not match what is owed;
                nothing was written
            TransactionTimeout: Transaction ran past its bound; nothing
                was written
        """
        booking_id = parse_id(booking_id, 'booking_id')
        amount = parse_money(amount)
        payment_date = parse_date(payment_date, 'payment_date')

        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)

        proof_ref = self._upload_proof(booking_id, proof) if proof is not None else None

        try:
            with self.session_manager.transaction(
                session, timeout_seconds=self.config.payment_timeout_seconds
            ) as s:
                payment = self._apply_payment(s, booking_id, amount, payment_date, proof_ref, status_id)
        except Exception as e:
            if proof_ref is not None:
                self._discard_proof(proof_ref)
            if isinstance(e, ReconciliationMismatch):
                audit_log(
                    AuditEvent.PAYMENT_REJECTED,
                    f"booking={booking_id} amount={amount} balance={e.balance}",
                    level='WARNING'
                )
            raise

        logger.info(f"Payment {payment.id} of {amount} applied to booking {booking_id}")
        audit_log(
            AuditEvent.PAYMENT_SUBMITTED,
            f"payment={payment.id} booking={booking_id} amount={amount} date={payment_date}"
        )
        return payment

    def _apply_payment(self, s: Session, booking_id: int, amount: Money, payment_date: date,
                       proof_ref: Optional[str], status_id: Optional[int]) -> Payment:
        booking = s.get(Booking, booking_id)

        # Allocate before inserting so a rejected payment writes nothing, even in a caller's session
        bills = BillRepository(s).outstanding_for_booking(
            booking_id, self.today(), for_update=True
        )
        result = allocate(amount, bills)
        if not result.is_balanced:
            logger.warning(
                f"Payment of {amount} for booking {booking_id} leaves balance {result.balance}; rejected"
            )
            raise ReconciliationMismatch(result.balance)

        payment = Payment(
            booking_id=booking_id,
            amount=amount,
            payment_date=payment_date,
            payment_proof=proof_ref,
            status_id=status_id,
        )
        s.add(payment)
        s.flush()

        bills_by_id = {bill.id: bill for bill in bills}
        previously_paid = {bill.id: bill.paid_amount for bill in bills}

        for update in result.updates:
            bill = bills_by_id[update.bill_id]
            bill.paid_amount = update.new_paid_amount
            if update.fully_paid:
                bill.paid_at = payment_date
            s.add(PaymentBill(payment_id=payment.id, bill_id=bill.id, amount=update.applied))

        self._recognize_income(s, booking, payment, bills_by_id, result, previously_paid)
        s.flush()
        return payment

    def _recognize_income(self, s: Session, booking: Booking, payment: Payment,
                          bills: Dict[int, Bill], result: AllocationResult,
                          previously_paid: Dict[int, Money]) -> None:
        split = split_applied_amounts(bills, result, previously_paid)

        if split.regular.is_positive():
            s.add(Transaction(
                amount=split.regular,
                type=TransactionType.INCOME,
                date=payment.payment_date,
                category=self.config.rent_category,
                description=f"Income for payment #{payment.id}",
                location_id=booking.location_id,
                related=RelatedRef.payment(payment.id),
            ))

        for deposit_id in split.completed_deposit_ids:
            deposit = s.get(Deposit, deposit_id)
            if deposit is not None and deposit.status == DepositStatus.UNPAID:
                deposit.status = DepositStatus.HELD
                logger.info(f"Deposit {deposit_id} received with payment {payment.id}, now HELD")

        if split.deposit.is_positive():
            logger.debug(f"Payment {payment.id}: {split.deposit} went to deposit items")

    # ------------------------------------------------------------------
    # Proof files
    # ------------------------------------------------------------------

    def _upload_proof(self, booking_id: int, proof: ProofFile) -> str:
        if self.storage is None:
            raise StorageError("No object storage configured for payment proofs")
        key = payment_proof_key(
            booking_id, proof.filename, self.now(), prefix=self.config.storage.key_prefix
        )
        try:
            return self.storage.put_object(key, proof.data)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Proof upload failed for booking {booking_id}: {e}")
            raise StorageError(f"Failed to upload payment proof: {e}") from e

    def _discard_proof(self, ref: str) -> None:
        try:
            self.storage.delete_object(ref)
            logger.info(f"Removed orphaned payment proof {ref}")
        except Exception as e:
            logger.warning(f"Could not remove orphaned payment proof {ref}: {e}")

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    def update_payment(
        self,
        payment_id: int,
        amount=None,
        payment_date=None,
        status_id: Optional[int] = None,
        session: Optional[Session] = None
    ) -> Payment:
        """
        Edit a payment's fields.

        Allocation is NOT re-run: bills keep the paid amounts from the
        original submission even when the amount changes.
        """
        with self.session_manager.transaction(session) as s:
            payment = s.get(Payment, payment_id, with_for_update=True)
            if payment is None:
                raise PaymentNotFound(payment_id)

            changed = []
            if amount is not None:
                new_amount = parse_money(amount)
                if new_amount != payment.amount:
                    changed.append(f"amount {payment.amount} -> {new_amount}")
                    payment.amount = new_amount
            if payment_date is not None:
                payment.payment_date = parse_date(payment_date, 'payment_date')
                changed.append(f"payment_date {payment.payment_date}")
            if status_id is not None:
                payment.status_id = status_id
            s.flush()

            if any(c.startswith('amount') for c in changed):
                logger.warning(
                    f"Payment {payment_id} amount edited without reallocation; "
                    f"bill paid amounts for booking {payment.booking_id} may be stale"
                )
            audit_log(AuditEvent.PAYMENT_UPDATED, f"payment={payment_id} {'; '.join(changed) or 'no change'}")
            return payment

    def get_payment(self, payment_id: int, session: Optional[Session] = None) -> Payment:
        with self.session_manager.transaction(session) as s:
            payment = s.get(Payment, payment_id)
            if payment is None:
                raise PaymentNotFound(payment_id)
            return payment

    def simulate_payment(self, booking_id, amount, as_of: Optional[date] = None,
                         session: Optional[Session] = None) -> AllocationResult:
        """Allocation a payment would produce today, without writing anything."""
        booking_id = parse_id(booking_id, 'booking_id')
        amount = parse_money(amount)
        with self.session_manager.transaction(session) as s:
            if s.get(Booking, booking_id) is None:
                raise BookingNotFound(booking_id)
            bills = BillRepository(s).outstanding_for_booking(booking_id, as_of or self.today())
            return allocate(amount, bills)
