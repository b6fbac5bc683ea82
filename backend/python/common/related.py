"""
Tagged back-references from bill items and ledger entries to other entities.

Stored as a small JSON object ``{"kind": "deposit", "id": 12}`` and validated
on the way in and out of the database.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator

RELATED_KINDS = ('booking', 'deposit', 'payment')


@dataclass(frozen=True)
class RelatedRef:
    """Reference to a booking, deposit or payment."""
    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in RELATED_KINDS:
            raise ValueError(
                f"Unknown related kind: {self.kind!r}. "
                f"Supported kinds: {', '.join(RELATED_KINDS)}"
            )
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise ValueError(f"Related id must be a positive integer, got {self.id!r}")

    @classmethod
    def deposit(cls, deposit_id: int) -> 'RelatedRef':
        return cls('deposit', deposit_id)

    @classmethod
    def booking(cls, booking_id: int) -> 'RelatedRef':
        return cls('booking', booking_id)

    @classmethod
    def payment(cls, payment_id: int) -> 'RelatedRef':
        return cls('payment', payment_id)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['RelatedRef']:
        if data is None:
            return None
        if not isinstance(data, dict) or set(data) != {'kind', 'id'}:
            raise ValueError(f"Malformed related reference: {data!r}")
        return cls(data['kind'], data['id'])

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'id': self.id}

    def is_deposit(self) -> bool:
        return self.kind == 'deposit'


class RelatedRefType(TypeDecorator):
    """JSON column holding a RelatedRef."""
    impl = JSON(none_as_null=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, dict):
            value = RelatedRef.from_dict(value)
        if not isinstance(value, RelatedRef):
            raise TypeError(f"Expected RelatedRef, got {type(value).__name__}")
        return value.to_dict()

    def process_result_value(self, value, dialect):
        return RelatedRef.from_dict(value)
