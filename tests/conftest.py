"""
Shared fixtures: an in-memory SQLite database, fixed clocks, fake storage
and mail, and a small factory for rooms, bookings and bills.
"""

from datetime import date, datetime
from typing import Dict, List

import pytest
from sqlalchemy import select

from billing.exceptions import StorageError
from billing.storage import ObjectStorage
from common.config import BillingConfig
from common.engine import create_engine_from_config
from common.models import (
    Bill, BillItem, BillItemType, Booking, Location, Room, Tenant, create_tables,
)
from common.money import Money
from common.session import SessionManager
from scheduler.alert_manager import Mailer


TODAY = date(2024, 3, 1)
NOW = datetime(2024, 3, 1, 9, 30)


class FakeStorage(ObjectStorage):
    """In-memory object store; set ``fail`` to make every write raise."""

    def __init__(self, fail: bool = False):
        self.objects: Dict[str, bytes] = {}
        self.fail = fail

    def put_object(self, key, data):
        if self.fail:
            raise StorageError("storage unavailable")
        self.objects[key] = data
        return key

    def get_object(self, ref):
        return self.objects[ref]

    def delete_object(self, ref):
        self.objects.pop(ref, None)


class FakeMailer(Mailer):
    """Records messages; addresses in ``fail_for`` raise on send."""

    def __init__(self, fail_for=()):
        self.sent: List[dict] = []
        self.fail_for = set(fail_for)

    def send_mail(self, to, subject, body):
        recipients = [to] if isinstance(to, str) else list(to)
        if any(r in self.fail_for for r in recipients):
            raise ConnectionError(f"mail to {to} bounced")
        self.sent.append({'to': to, 'subject': subject, 'body': body})


class Factory:
    """Inserts test rows directly and returns their ids."""

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager
        self._rooms = 0

    def room(self, location_name: str = 'Harbour House') -> int:
        self._rooms += 1
        with self.session_manager.session_scope() as s:
            room = Room(room_number=str(100 + self._rooms), location=Location(name=location_name))
            s.add(room)
            s.flush()
            return room.id

    def booking(
        self,
        start: date = date(2024, 1, 1),
        fee: str = '310.00',
        is_rolling: bool = True,
        duration_months: int = None,
        end_date: date = None,
        tenant_email: str = 'tenant@example.com',
        second_resident_fee: str = None,
    ) -> int:
        room_id = self.room()
        with self.session_manager.session_scope() as s:
            booking = Booking(
                room_id=room_id,
                tenant=Tenant(name='Alex Tenant', email=tenant_email),
                start_date=start,
                end_date=end_date,
                is_rolling=is_rolling,
                duration_months=duration_months,
                fee=Money(fee),
                second_resident_fee=Money(second_resident_fee) if second_resident_fee else None,
            )
            s.add(booking)
            s.flush()
            return booking.id

    def bill(
        self,
        booking_id: int,
        due_date: date,
        amount: str,
        paid: str = '0',
        period_start: date = None,
        period_end: date = None,
        description: str = 'Rent',
    ) -> int:
        with self.session_manager.session_scope() as s:
            bill = Bill(
                booking_id=booking_id,
                due_date=due_date,
                description=description,
                paid_amount=Money(paid),
                period_start=period_start,
                period_end=period_end,
            )
            bill.items = [BillItem(amount=Money(amount), description=description, type=BillItemType.GENERATED)]
            bill.recompute_amount()
            s.add(bill)
            s.flush()
            return bill.id

    def monthly_bill(self, booking_id: int, year: int, month: int, amount: str = '310.00') -> int:
        from common.date_utils import get_first_day_of_month, get_last_day_of_month

        start = get_first_day_of_month(year, month)
        return self.bill(
            booking_id, start, amount,
            period_start=start, period_end=get_last_day_of_month(year, month),
        )

    def get(self, model, id_value):
        with self.session_manager.session_scope() as s:
            return s.get(model, id_value)

    def all(self, model) -> list:
        with self.session_manager.session_scope() as s:
            return list(s.scalars(select(model).order_by(model.id)))

    def bills_for(self, booking_id: int) -> List[Bill]:
        with self.session_manager.session_scope() as s:
            stmt = select(Bill).where(Bill.booking_id == booking_id).order_by(Bill.due_date, Bill.id)
            return list(s.scalars(stmt))


@pytest.fixture
def db_engine():
    engine = create_engine_from_config('sqlite://')
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_manager(db_engine):
    return SessionManager(db_engine)


@pytest.fixture
def factory(session_manager):
    return Factory(session_manager)


@pytest.fixture
def billing_config():
    return BillingConfig(audit_log_path=None)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def today():
    return lambda: TODAY


@pytest.fixture
def now():
    return lambda: NOW
