"""
Payment allocation across outstanding bills.

Pure functions only: no database access, no clock. The orchestrator in
billing.payments persists what ``allocate`` returns.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from common.money import Money, MoneyLike

from .exceptions import ValidationError


@dataclass(frozen=True)
class BillUpdate:
    """Amount applied to one bill and its resulting paid amount."""
    bill_id: int
    applied: Money
    new_paid_amount: Money
    fully_paid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bill_id': self.bill_id,
            'applied': self.applied.to_string(),
            'new_paid_amount': self.new_paid_amount.to_string(),
            'fully_paid': self.fully_paid,
        }


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of spreading a payment over bills.

    ``balance`` is the unapplied remainder; anything other than zero means the
    payment does not reconcile.
    """
    balance: Money
    updates: List[BillUpdate] = field(default_factory=list)

    @property
    def applied_total(self) -> Money:
        return Money.sum(update.applied for update in self.updates)

    @property
    def is_balanced(self) -> bool:
        return self.balance.is_zero()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'balance': self.balance.to_string(),
            'applied_total': self.applied_total.to_string(),
            'updates': [update.to_dict() for update in self.updates],
        }


@dataclass(frozen=True)
class OutstandingBill:
    """Minimal bill view accepted by the allocator."""
    id: int
    due_date: date
    amount: Money
    paid_amount: Money

    @property
    def outstanding(self) -> Money:
        return self.amount - self.paid_amount


def _sort_key(bill):
    return (bill.due_date, bill.id)


def allocate(payment_amount: MoneyLike, outstanding_bills: Iterable) -> AllocationResult:
    """
    Apply a payment to bills oldest-due first.

    Each bill receives the smaller of its outstanding amount and what is left
    of the payment. Bills are re-sorted by (due_date, id) whatever order they
    arrive in, and bills with nothing outstanding are skipped.

    Args:
        payment_amount: Positive amount received
        outstanding_bills: Objects exposing ``id``, ``due_date``, ``amount``
            and ``paid_amount`` (ORM Bill rows or OutstandingBill)

    Returns:
        AllocationResult with one BillUpdate per bill that received money and
        the leftover as ``balance``

    Raises:
        ValidationError: If the payment amount is not positive

    Example:
        >>> bills = [OutstandingBill(2, date(2024, 2, 1), Money('100'), Money(0)),
        ...          OutstandingBill(1, date(2024, 1, 1), Money('50'), Money(0))]
        >>> allocate(Money('120'), bills).balance
        Money('0.00')
    """
    remaining = payment_amount if isinstance(payment_amount, Money) else Money(payment_amount)
    if not remaining.is_positive():
        raise ValidationError(f"Payment amount must be positive, got {remaining}", field='amount')

    updates: List[BillUpdate] = []
    for bill in sorted(outstanding_bills, key=_sort_key):
        if remaining.is_zero():
            break

        outstanding = bill.amount - bill.paid_amount
        if not outstanding.is_positive():
            continue

        if remaining < outstanding:
            updates.append(BillUpdate(
                bill_id=bill.id,
                applied=remaining,
                new_paid_amount=bill.paid_amount + remaining,
            ))
            remaining = Money.zero()
            break

        updates.append(BillUpdate(
            bill_id=bill.id,
            applied=outstanding,
            new_paid_amount=bill.amount,
            fully_paid=True,
        ))
        remaining = remaining - outstanding

    return AllocationResult(balance=remaining, updates=updates)


def total_outstanding(bills: Iterable, as_of: Optional[date] = None) -> Money:
    """Sum of what is still owed on the given bills, optionally only those due by ``as_of``."""
    return Money.sum(
        bill.amount - bill.paid_amount
        for bill in bills
        if bill.paid_amount < bill.amount and (as_of is None or bill.due_date <= as_of)
    )
