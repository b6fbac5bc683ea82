from datetime import date

import pytest

from billing.bills import BillService
from billing.bookings import BookingService
from billing.exceptions import BookingNotFound, ValidationError
from common.models import Bill, Booking, BillItemType
from common.money import Money
from scheduler.jobs import RecurringBillingJob


@pytest.fixture
def bookings(session_manager, billing_config, today):
    return BookingService(session_manager, billing_config, today=today)


def test_fixed_term_booking_billed_for_whole_term(bookings, factory):
    room_id = factory.room()

    booking = bookings.create_booking(
        room_id, '2024-01-15', '310.00', is_rolling=False, duration_months='2'
    )

    bills = factory.bills_for(booking.id)
    assert booking.duration_months == 2
    assert [(b.period_start, b.period_end) for b in bills] == [
        (date(2024, 1, 15), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 14)),
    ]
    assert [b.amount for b in bills] == [Money('170.00'), Money('310.00'), Money('140.00')]


def test_rolling_booking_billed_up_to_today(bookings, factory):
    room_id = factory.room()

    booking = bookings.create_booking(room_id, date(2024, 1, 1), '310.00', is_rolling=True)

    assert booking.duration_months is None
    assert [b.period_start for b in factory.bills_for(booking.id)] == [
        date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1),
    ]


def test_second_resident_fee_added_to_each_bill(bookings, factory):
    room_id = factory.room()

    booking = bookings.create_booking(
        room_id, date(2024, 3, 1), '310.00', is_rolling=True, second_resident_fee='90.00'
    )

    [bill] = factory.bills_for(booking.id)
    assert bill.amount == Money('400.00')


@pytest.mark.parametrize('kwargs', [
    {'is_rolling': False},
    {'is_rolling': False, 'duration_months': 0},
    {'is_rolling': False, 'duration_months': 'six'},
    {'is_rolling': True, 'tenant_id': 'abc'},
])
def test_create_booking_validation(bookings, factory, kwargs):
    room_id = factory.room()
    with pytest.raises(ValidationError):
        bookings.create_booking(room_id, date(2024, 1, 1), '310.00', **kwargs)


def test_create_booking_requires_room(bookings):
    with pytest.raises(ValidationError) as exc_info:
        bookings.create_booking(77, date(2024, 1, 1), '310.00', is_rolling=True)
    assert exc_info.value.field == 'room_id'


# ---------------------------------------------------------------------------
# End of stay
# ---------------------------------------------------------------------------


@pytest.fixture
def rolling(bookings, factory):
    room_id = factory.room()
    return bookings.create_booking(room_id, date(2024, 1, 1), '310.00', is_rolling=True)


def test_end_of_stay_shortens_current_bill(session_manager, today, bookings, factory, rolling):
    march = factory.bills_for(rolling.id)[-1]
    BillService(session_manager, today=today).add_bill_item(march.id, '25.00', 'Key replacement')

    booking = bookings.schedule_end_of_stay(rolling.id, '2024-03-10')

    assert booking.end_date == date(2024, 3, 10)
    with session_manager.session_scope() as s:
        bill = s.get(Bill, march.id)
        assert bill.period_end == date(2024, 3, 10)
        generated = [i for i in bill.items if i.type == BillItemType.GENERATED]
        created = [i for i in bill.items if i.type == BillItemType.CREATED]
        assert [i.amount for i in generated] == [Money('100.00')]
        assert generated[0].description == 'Room fee (1 March 2024 - 10 March 2024)'
        assert [i.description for i in created] == ['Key replacement']
        assert bill.amount == Money('125.00')


def test_end_of_stay_on_period_end_changes_nothing(bookings, factory, rolling):
    bookings.schedule_end_of_stay(rolling.id, date(2024, 3, 31))

    assert factory.bills_for(rolling.id)[-1].amount == Money('310.00')


def test_end_of_stay_before_billed_periods_rejected(bookings, factory, rolling):
    with pytest.raises(ValidationError):
        bookings.schedule_end_of_stay(rolling.id, date(2024, 1, 20))

    assert factory.get(Booking, rolling.id).end_date is None


def test_end_of_stay_needs_rolling_booking(bookings, factory):
    room_id = factory.room()
    fixed = bookings.create_booking(room_id, date(2024, 1, 1), '310.00', duration_months=3)

    with pytest.raises(ValidationError):
        bookings.schedule_end_of_stay(fixed.id, date(2024, 2, 1))


def test_end_of_stay_validation(bookings, rolling):
    with pytest.raises(BookingNotFound):
        bookings.schedule_end_of_stay(555, date(2024, 2, 1))
    with pytest.raises(ValidationError):
        bookings.schedule_end_of_stay(rolling.id, date(2023, 12, 31))


def test_end_of_stay_bills_remaining_periods(session_manager, billing_config, today, bookings, factory):
    booking_id = factory.booking()
    factory.monthly_bill(booking_id, 2024, 1)

    bookings.schedule_end_of_stay(booking_id, date(2024, 3, 15))

    bills = factory.bills_for(booking_id)
    assert [(b.period_start, b.period_end) for b in bills] == [
        (date(2024, 1, 1), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 15)),
    ]
    assert [b.amount for b in bills[1:]] == [Money('310.00'), Money('150.00')]

    job = RecurringBillingJob(session_manager, billing_config, today=today)
    report = job.run(as_of=date(2024, 3, 1))
    assert report.bills_created == 0
    assert len(factory.bills_for(booking_id)) == 3
