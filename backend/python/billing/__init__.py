"""
Billing and payment reconciliation engine.

- generator: next periodic bill for a rolling booking
- allocator: spreads a payment over outstanding bills, oldest first
- payments: transactional payment submission
- deposits: deposit lifecycle and income recognition
- bills / bookings: bill-item maintenance and end-of-stay scheduling
- ledger: manual income and expense entries
"""

from .exceptions import (
    BillingError,
    ValidationError,
    NotFoundError,
    BookingNotFound,
    DepositNotFound,
    PaymentNotFound,
    BillNotFound,
    BillItemNotFound,
    TransactionNotFound,
    ReconciliationMismatch,
    InvalidTransition,
    StorageError,
    TransactionTimeout,
    BillingJobError,
)

__all__ = [
    'BillingError',
    'ValidationError',
    'NotFoundError',
    'BookingNotFound',
    'DepositNotFound',
    'PaymentNotFound',
    'BillNotFound',
    'BillItemNotFound',
    'TransactionNotFound',
    'ReconciliationMismatch',
    'InvalidTransition',
    'StorageError',
    'TransactionTimeout',
    'BillingJobError',
]
