from datetime import date

import pytest

from billing.deposits import DepositService
from billing.exceptions import (
    BookingNotFound, PaymentNotFound, ReconciliationMismatch, StorageError,
    TransactionTimeout, ValidationError,
)
from billing.payments import PaymentService, ProofFile
from common.models import (
    Bill, Deposit, DepositStatus, Payment, PaymentBill, Transaction, TransactionType,
)
from common.money import Money
from common.related import RelatedRef

from conftest import FakeStorage


@pytest.fixture
def payments(session_manager, storage, billing_config, today, now):
    return PaymentService(session_manager, storage, billing_config, today=today, now=now)


@pytest.fixture
def booking(factory):
    """Booking owing 50 (due January) and 100 (due February)."""
    booking_id = factory.booking()
    january = factory.bill(booking_id, date(2024, 1, 1), '50.00')
    february = factory.bill(booking_id, date(2024, 2, 1), '100.00')
    return {'id': booking_id, 'january': january, 'february': february}


def test_payment_applied_oldest_first(payments, factory, booking):
    payment = payments.submit_payment(booking['id'], '120.00', '2024-03-01')

    january = factory.get(Bill, booking['january'])
    february = factory.get(Bill, booking['february'])
    assert january.paid_amount == Money('50')
    assert january.paid_at == date(2024, 3, 1)
    assert february.paid_amount == Money('70')
    assert february.paid_at is None

    allocations = factory.all(PaymentBill)
    assert [(a.payment_id, a.bill_id, a.amount) for a in allocations] == [
        (payment.id, booking['january'], Money('50')),
        (payment.id, booking['february'], Money('70')),
    ]


def test_exact_payment_settles_both_bills(payments, factory, booking):
    payments.submit_payment(booking['id'], '150', date(2024, 3, 1))

    assert all(bill.is_paid for bill in factory.bills_for(booking['id']))


def test_payment_recognizes_rent_income(payments, factory, booking):
    payment = payments.submit_payment(booking['id'], '150', date(2024, 3, 1))

    [income] = factory.all(Transaction)
    assert income.type == TransactionType.INCOME
    assert income.amount == Money('150')
    assert income.category == 'rent'
    assert income.related == RelatedRef.payment(payment.id)
    assert income.location_id is not None


def test_overpayment_rolls_everything_back(payments, factory, booking):
    with pytest.raises(ReconciliationMismatch) as exc_info:
        payments.submit_payment(booking['id'], '200', date(2024, 3, 1))

    assert exc_info.value.balance == Money('50')
    assert exc_info.value.to_dict()['balance'] == '50.00'
    assert factory.all(Payment) == []
    assert factory.all(PaymentBill) == []
    assert factory.all(Transaction) == []
    assert [b.paid_amount for b in factory.bills_for(booking['id'])] == [Money(0), Money(0)]


def test_underpayment_is_kept_as_partial_payment(payments, factory, booking):
    payments.submit_payment(booking['id'], '30', date(2024, 3, 1))

    january, february = factory.bills_for(booking['id'])
    assert january.paid_amount == Money('30')
    assert february.paid_amount == Money(0)


def test_bills_not_yet_due_are_ignored(payments, factory, booking):
    factory.bill(booking['id'], date(2024, 4, 1), '100.00')

    with pytest.raises(ReconciliationMismatch):
        payments.submit_payment(booking['id'], '250', date(2024, 3, 1))


def test_unknown_booking(payments):
    with pytest.raises(BookingNotFound):
        payments.submit_payment(999, '10', date(2024, 3, 1))


@pytest.mark.parametrize('amount', [None, '0', '-5', 'abc', '1.234'])
def test_invalid_amount(payments, booking, amount):
    with pytest.raises(ValidationError):
        payments.submit_payment(booking['id'], amount, date(2024, 3, 1))


def test_missing_payment_date(payments, booking):
    with pytest.raises(ValidationError) as exc_info:
        payments.submit_payment(booking['id'], '10', None)
    assert exc_info.value.field == 'payment_date'


# ---------------------------------------------------------------------------
# Proof files
# ---------------------------------------------------------------------------


def test_proof_uploaded_and_referenced(payments, storage, booking):
    payment = payments.submit_payment(
        booking['id'], '150', date(2024, 3, 1), proof=ProofFile('bank receipt.pdf', b'%PDF')
    )

    expected_key = f"booking-payments/{booking['id']}/20240301T093000/bank_receipt.pdf"
    assert payment.payment_proof == expected_key
    assert storage.objects == {expected_key: b'%PDF'}


def test_proof_removed_when_payment_rejected(payments, storage, booking):
    with pytest.raises(ReconciliationMismatch):
        payments.submit_payment(booking['id'], '500', date(2024, 3, 1), proof=ProofFile('r.png', b'x'))

    assert storage.objects == {}


def test_storage_failure_aborts_before_any_write(session_manager, billing_config, today, factory, booking):
    payments = PaymentService(session_manager, FakeStorage(fail=True), billing_config, today=today)

    with pytest.raises(StorageError):
        payments.submit_payment(booking['id'], '150', date(2024, 3, 1), proof=ProofFile('r.png', b'x'))

    assert factory.all(Payment) == []


def test_proof_without_storage_configured(session_manager, billing_config, today, booking):
    payments = PaymentService(session_manager, None, billing_config, today=today)

    with pytest.raises(StorageError):
        payments.submit_payment(booking['id'], '150', date(2024, 3, 1), proof=ProofFile('r.png', b'x'))


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class SlowClock:
    """Monotonic clock that jumps 100 seconds per reading."""

    def __init__(self):
        self.value = 0.0

    def monotonic(self):
        self.value += 100.0
        return self.value


def test_timeout_rolls_back(monkeypatch, payments, factory, booking):
    monkeypatch.setattr('common.session.time', SlowClock())

    with pytest.raises(TransactionTimeout):
        payments.submit_payment(booking['id'], '150', date(2024, 3, 1))

    assert factory.all(Payment) == []
    assert [b.paid_amount for b in factory.bills_for(booking['id'])] == [Money(0), Money(0)]


def test_joins_caller_transaction(session_manager, payments, factory, booking):
    with pytest.raises(RuntimeError):
        with session_manager.session_scope() as s:
            payment = payments.submit_payment(booking['id'], '150', date(2024, 3, 1), session=s)
            assert payment.id is not None
            raise RuntimeError("caller aborts")

    assert factory.all(Payment) == []


def test_rejected_payment_leaves_nothing_in_caller_transaction(session_manager, payments, storage, factory, booking):
    with session_manager.session_scope() as s:
        with pytest.raises(ReconciliationMismatch):
            payments.submit_payment(
                booking['id'], '200', date(2024, 3, 1), proof=ProofFile('r.png', b'x'), session=s
            )

    assert factory.all(Payment) == []
    assert factory.all(PaymentBill) == []
    assert factory.all(Transaction) == []
    assert storage.objects == {}
    assert [b.paid_amount for b in factory.bills_for(booking['id'])] == [Money(0), Money(0)]


def test_caller_transaction_commits_together(session_manager, payments, factory, booking):
    with session_manager.session_scope() as s:
        payments.submit_payment(booking['id'], '50', date(2024, 3, 1), session=s)
        payments.submit_payment(booking['id'], '100', date(2024, 3, 1), session=s)

    assert len(factory.all(Payment)) == 2
    assert all(bill.is_paid for bill in factory.bills_for(booking['id']))


# ---------------------------------------------------------------------------
# Deposits paid through bills
# ---------------------------------------------------------------------------


def test_paying_deposit_item_marks_deposit_held(session_manager, billing_config, today, payments, factory, booking):
    deposit = DepositService(session_manager, billing_config, today=today).create_deposit(booking['id'], '500')

    payments.submit_payment(booking['id'], '550', date(2024, 3, 1))

    assert factory.get(Deposit, deposit.id).status == DepositStatus.HELD
    [income] = factory.all(Transaction)
    # Only the rent part of the January bill is income; the deposit is held
    assert income.amount == Money('50')


def test_partial_deposit_payment_keeps_deposit_unpaid(session_manager, billing_config, today, payments, factory, booking):
    deposit = DepositService(session_manager, billing_config, today=today).create_deposit(booking['id'], '500')

    payments.submit_payment(booking['id'], '300', date(2024, 3, 1))

    assert factory.get(Deposit, deposit.id).status == DepositStatus.UNPAID
    assert factory.all(Transaction) == []


# ---------------------------------------------------------------------------
# Other operations
# ---------------------------------------------------------------------------


def test_simulate_writes_nothing(payments, factory, booking):
    result = payments.simulate_payment(booking['id'], '200')

    assert result.balance == Money('50')
    assert factory.all(Payment) == []


def test_update_payment_does_not_reallocate(payments, factory, booking):
    payment = payments.submit_payment(booking['id'], '150', date(2024, 3, 1))

    updated = payments.update_payment(payment.id, amount='120', payment_date='2024-03-02')

    assert updated.amount == Money('120')
    assert updated.payment_date == date(2024, 3, 2)
    assert [b.paid_amount for b in factory.bills_for(booking['id'])] == [Money('50'), Money('100')]


def test_get_and_update_unknown_payment(payments):
    with pytest.raises(PaymentNotFound):
        payments.get_payment(42)
    with pytest.raises(PaymentNotFound):
        payments.update_payment(42, amount='10')
