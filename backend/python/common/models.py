"""
SQLAlchemy ORM models with base classes and mixins.
Defines bookings, bills, payments, deposits and the income/expense ledger.
"""

import enum
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, Any, List, Optional

from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, Numeric, Text, ForeignKey,
    Index, UniqueConstraint, CheckConstraint, JSON, Enum as SAEnum,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from .money import Money
from .related import RelatedRef, RelatedRefType


# Declarative base for all models
Base = declarative_base()


class MoneyType(TypeDecorator):
    """
    Currency column mapped to Money.

    Uses NUMERIC(14, 2) on real databases. SQLite has no exact decimal
    storage, so the value is kept as text there.
    """
    impl = Numeric(14, 2)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'sqlite':
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(14, 2, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        money = value if isinstance(value, Money) else Money(value)
        if dialect.name == 'sqlite':
            return money.to_string()
        return money.quantize().amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            value = Decimal(str(value))
        return Money(value).quantize()


class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            dict: JSON-ready representation of the model
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, Money):
                value = value.to_string()
            elif isinstance(value, RelatedRef):
                value = value.to_dict()
            elif isinstance(value, enum.Enum):
                value = value.value
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        """String representation of model"""
        return f"<{self.__class__.__name__}(id={getattr(self, 'id', None)})>"


# ============================================================================
# Enumerations
# ============================================================================


class BillItemType(enum.Enum):
    GENERATED = 'GENERATED'
    CREATED = 'CREATED'


class DepositStatus(enum.Enum):
    UNPAID = 'UNPAID'
    HELD = 'HELD'
    APPLIED = 'APPLIED'
    REFUNDED = 'REFUNDED'
    PARTIALLY_REFUNDED = 'PARTIALLY_REFUNDED'
    FORFEITED = 'FORFEITED'

    @property
    def is_terminal(self) -> bool:
        return self not in (DepositStatus.UNPAID, DepositStatus.HELD)


class TransactionType(enum.Enum):
    INCOME = 'INCOME'
    EXPENSE = 'EXPENSE'


# ============================================================================
# Property Models
# ============================================================================


class Location(Base, BaseModel, TimestampMixin):
    """A managed property."""
    __tablename__ = 'locations'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    address = Column(Text)


class Room(Base, BaseModel, TimestampMixin):
    """A rentable room at a location."""
    __tablename__ = 'rooms'

    id = Column(Integer, primary_key=True)
    room_number = Column(String(50), nullable=False)
    location_id = Column(Integer, ForeignKey('locations.id'), nullable=False, index=True)

    location = relationship('Location')


class Tenant(Base, BaseModel, TimestampMixin):
    """A resident who signs bookings and receives bill reminders."""
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True)
    name = Column(String(150), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))


# ============================================================================
# Booking Models
# ============================================================================


class Booking(Base, BaseModel, TimestampMixin):
    """
    Tenancy contract for a room.

    Fixed-term bookings carry ``duration_months``; rolling bookings are billed
    month by month until ``end_date`` is scheduled.
    """
    __tablename__ = 'bookings'

    id = Column(Integer, primary_key=True)
    room_id = Column(Integer, ForeignKey('rooms.id'), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    duration_months = Column(Integer)
    is_rolling = Column(Boolean, nullable=False, default=False)
    fee = Column(MoneyType, nullable=False)
    second_resident_fee = Column(MoneyType)
    status = Column(String(30), nullable=False, default='active')

    room = relationship('Room')
    tenant = relationship('Tenant')
    bills = relationship('Bill', back_populates='booking', order_by='Bill.due_date')
    deposit = relationship('Deposit', back_populates='booking', uselist=False)
    addons = relationship('BookingAddOn', back_populates='booking')

    __table_args__ = (
        CheckConstraint(
            'is_rolling OR duration_months IS NOT NULL',
            name='chk_booking_duration'
        ),
        Index('idx_bookings_rolling_end', 'is_rolling', 'end_date'),
    )

    @property
    def location_id(self) -> Optional[int]:
        return self.room.location_id if self.room else None


class AddOn(Base, BaseModel, TimestampMixin):
    """Optional service (laundry, parking, ...) billed alongside rent."""
    __tablename__ = 'addons'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)

    pricing = relationship('AddOnPricing', back_populates='addon', order_by='AddOnPricing.interval_start')


class AddOnPricing(Base, BaseModel):
    """
    Price tier for an add-on, keyed by months since the add-on started.

    ``interval_end`` NULL means the tier is open-ended. Full-payment tiers are
    charged once when the tier begins instead of monthly.
    """
    __tablename__ = 'addon_pricing'

    id = Column(Integer, primary_key=True)
    addon_id = Column(Integer, ForeignKey('addons.id'), nullable=False, index=True)
    interval_start = Column(Integer, nullable=False, default=0)
    interval_end = Column(Integer)
    price = Column(MoneyType, nullable=False)
    is_full_payment = Column(Boolean, nullable=False, default=False)

    addon = relationship('AddOn', back_populates='pricing')


class BookingAddOn(Base, BaseModel, TimestampMixin):
    """An add-on subscribed to a booking for a date range."""
    __tablename__ = 'booking_addons'

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    addon_id = Column(Integer, ForeignKey('addons.id'), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    is_rolling = Column(Boolean, nullable=False, default=False)

    booking = relationship('Booking', back_populates='addons')
    addon = relationship('AddOn')


# ============================================================================
# Billing Models
# ============================================================================


class Bill(Base, BaseModel, TimestampMixin):
    """
    Amount owed by a booking for a period.

    ``amount`` always equals the sum of the bill's items. ``paid_amount`` only
    grows, and only through payment allocation.
    """
    __tablename__ = 'bills'

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    description = Column(String(255), nullable=False, default='')
    amount = Column(MoneyType, nullable=False, default=Money.zero)
    paid_amount = Column(MoneyType, nullable=False, default=Money.zero)
    period_start = Column(Date)
    period_end = Column(Date)
    paid_at = Column(Date)

    booking = relationship('Booking', back_populates='bills')
    items = relationship(
        'BillItem',
        back_populates='bill',
        cascade='all, delete-orphan',
        order_by='BillItem.id'
    )
    allocations = relationship('PaymentBill', back_populates='bill')

    __table_args__ = (
        UniqueConstraint('booking_id', 'period_start', name='uq_bills_booking_period'),
        Index('idx_bills_booking_due', 'booking_id', 'due_date'),
    )

    @property
    def outstanding(self) -> Money:
        return self.amount - self.paid_amount

    @property
    def is_paid(self) -> bool:
        return self.paid_amount >= self.amount

    def recompute_amount(self) -> Money:
        """Set amount to the sum of the bill's items."""
        self.amount = Money.sum(item.amount for item in self.items)
        return self.amount

    def to_dict(self, include_items: bool = False) -> Dict[str, Any]:
        data = super().to_dict()
        data['outstanding'] = self.outstanding.to_string()
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


class BillItem(Base, BaseModel, TimestampMixin):
    """Line item composing a bill's amount."""
    __tablename__ = 'bill_items'

    id = Column(Integer, primary_key=True)
    bill_id = Column(Integer, ForeignKey('bills.id'), nullable=False, index=True)
    amount = Column(MoneyType, nullable=False)
    description = Column(String(255), nullable=False, default='')
    type = Column(SAEnum(BillItemType, name='bill_item_type'), nullable=False, default=BillItemType.GENERATED)
    related = Column(RelatedRefType)

    bill = relationship('Bill', back_populates='items')

    @property
    def is_deposit(self) -> bool:
        return self.related is not None and self.related.is_deposit()


class Payment(Base, BaseModel, TimestampMixin):
    """Money received against a booking."""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    amount = Column(MoneyType, nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_proof = Column(String(500))
    status_id = Column(Integer)

    booking = relationship('Booking')
    allocations = relationship('PaymentBill', back_populates='payment')


class PaymentBill(Base, BaseModel, TimestampMixin):
    """Portion of a payment applied to a single bill."""
    __tablename__ = 'payment_bills'

    id = Column(Integer, primary_key=True)
    payment_id = Column(Integer, ForeignKey('payments.id'), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey('bills.id'), nullable=False, index=True)
    amount = Column(MoneyType, nullable=False)

    payment = relationship('Payment', back_populates='allocations')
    bill = relationship('Bill', back_populates='allocations')

    __table_args__ = (
        UniqueConstraint('payment_id', 'bill_id', name='uq_payment_bills_payment_bill'),
    )


class Deposit(Base, BaseModel, TimestampMixin):
    """Security deposit held against a booking."""
    __tablename__ = 'deposits'

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, unique=True)
    amount = Column(MoneyType, nullable=False)
    status = Column(SAEnum(DepositStatus, name='deposit_status'), nullable=False, default=DepositStatus.UNPAID)
    refunded_amount = Column(MoneyType)
    applied_at = Column(DateTime)
    refunded_at = Column(DateTime)

    booking = relationship('Booking', back_populates='deposit')


class Transaction(Base, BaseModel, TimestampMixin):
    """Income or expense ledger entry, independent of bills."""
    __tablename__ = 'transactions'

    id = Column(Integer, primary_key=True)
    amount = Column(MoneyType, nullable=False)
    type = Column(SAEnum(TransactionType, name='transaction_type'), nullable=False)
    date = Column(Date, nullable=False)
    category = Column(String(100), nullable=False)
    description = Column(String(255))
    location_id = Column(Integer, ForeignKey('locations.id'), index=True)
    related = Column(RelatedRefType)

    __table_args__ = (
        Index('idx_transactions_date_type', 'date', 'type'),
    )


# ============================================================================
# Job Tracking
# ============================================================================


class BillingJobRun(Base, BaseModel):
    """
    Track recurring billing job executions.
    Records every run with status, counts, and the full report.
    """
    __tablename__ = 'billing_job_runs'

    id = Column(Integer, primary_key=True)
    job_name = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default='running', index=True)
    triggered_by = Column(String(50), default='scheduler')  # scheduler, cli, api
    as_of = Column(Date, nullable=False)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)
    bookings_processed = Column(Integer)
    bills_created = Column(Integer)
    failed_booking_ids = Column(JSON)
    report = Column(JSON)
    error_message = Column(Text)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'success', 'partial_success', 'failed')",
            name='chk_billing_job_status'
        ),
    )


def create_tables(engine):
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)
