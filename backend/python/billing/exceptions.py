"""
Typed errors raised by the billing engine.

Each error carries a stable ``code`` and an HTTP-style ``status_code`` so the
web layer can render it without knowing the concrete type.
"""

from typing import Dict, Any, List, Optional


class BillingError(Exception):
    """Base class for all billing engine errors."""
    code = 'billing_error'
    status_code = 500

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0]
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.code, 'message': self.message}


class ValidationError(BillingError):
    """Malformed input."""
    code = 'validation_error'
    status_code = 400

    def __init__(self, message: str = None, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data['field'] = self.field
        return data


class NotFoundError(BillingError):
    """Referenced entity does not exist."""
    code = 'not_found'
    status_code = 404
    entity = 'Entity'

    def __init__(self, entity_id=None, message: str = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} not found: {entity_id}")


class BookingNotFound(NotFoundError):
    """Booking not found."""
    code = 'booking_not_found'
    entity = 'Booking'


class DepositNotFound(NotFoundError):
    """Deposit not found."""
    code = 'deposit_not_found'
    entity = 'Deposit'


class PaymentNotFound(NotFoundError):
    """Payment not found."""
    code = 'payment_not_found'
    entity = 'Payment'


class BillNotFound(NotFoundError):
    """Bill not found."""
    code = 'bill_not_found'
    entity = 'Bill'


class BillItemNotFound(NotFoundError):
    """Bill item not found."""
    code = 'bill_item_not_found'
    entity = 'Bill item'


class TransactionNotFound(NotFoundError):
    """Ledger transaction not found."""
    code = 'transaction_not_found'
    entity = 'Transaction'


class ReconciliationMismatch(BillingError):
    """Payment does not reconcile against the outstanding bills."""
    code = 'reconciliation_mismatch'
    status_code = 409

    def __init__(self, balance, message: str = None):
        self.balance = balance
        if message is None:
            if balance.is_positive():
                message = f"Payment exceeds amount due by {balance}"
            else:
                message = f"Payment leaves a shortfall of {abs(balance)}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['balance'] = self.balance.to_string()
        return data


class InvalidTransition(BillingError):
    """Illegal deposit status change."""
    code = 'invalid_transition'
    status_code = 409


class StorageError(BillingError):
    """Object storage operation failed."""
    code = 'storage_error'
    status_code = 500


class TransactionTimeout(BillingError):
    """Database transaction exceeded its time bound."""
    code = 'transaction_timeout'
    status_code = 503


class BillingJobError(BillingError):
    """One or more bookings failed during a billing run."""
    code = 'billing_job_failed'
    status_code = 500

    def __init__(self, failed_booking_ids: List[int], message: str = None):
        self.failed_booking_ids = list(failed_booking_ids)
        super().__init__(
            message or f"Billing failed for bookings: {', '.join(str(i) for i in self.failed_booking_ids)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['failed_booking_ids'] = self.failed_booking_ids
        return data
