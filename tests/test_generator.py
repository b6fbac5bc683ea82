from datetime import date
from types import SimpleNamespace

import pytest

from billing.generator import (
    addon_items, fixed_term_end, generate_initial_bills, generate_next_periodic_bill, prorate,
)
from common.models import BillItemType
from common.money import Money


def make_booking(**overrides):
    data = dict(
        id=1,
        start_date=date(2024, 1, 1),
        end_date=None,
        duration_months=None,
        is_rolling=True,
        fee=Money('310.00'),
        second_resident_fee=None,
        addons=[],
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def billed(period_start, period_end):
    return SimpleNamespace(period_start=period_start, period_end=period_end)


def tier(start, end, price, full=False):
    return SimpleNamespace(interval_start=start, interval_end=end, price=Money(price), is_full_payment=full)


def booking_addon(name, pricing, start=date(2024, 1, 1), end=None):
    return SimpleNamespace(id=7, start_date=start, end_date=end, addon=SimpleNamespace(name=name, pricing=pricing))


# ---------------------------------------------------------------------------
# Periodic bills
# ---------------------------------------------------------------------------


def test_first_bill_covers_start_month_prorated():
    booking = make_booking(start_date=date(2024, 1, 15))

    draft = generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 15))

    assert draft.period_start == date(2024, 1, 15)
    assert draft.period_end == date(2024, 1, 31)
    assert draft.due_date == date(2024, 1, 15)
    # 17 of 31 days
    assert draft.amount == Money('170.00')
    assert draft.description == 'Bill for January 2024'


def test_second_call_in_same_period_returns_none():
    booking = make_booking()
    first = generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 10))

    assert first is not None
    assert generate_next_periodic_bill(booking, [first], as_of=date(2024, 1, 10)) is None


def test_next_period_starts_after_latest_period_end():
    booking = make_booking()
    bills = [billed(date(2024, 1, 1), date(2024, 1, 31))]

    assert generate_next_periodic_bill(booking, bills, as_of=date(2024, 1, 31)) is None

    draft = generate_next_periodic_bill(booking, bills, as_of=date(2024, 2, 1))
    assert draft.period_start == date(2024, 2, 1)
    assert draft.period_end == date(2024, 2, 29)
    assert draft.amount == Money('310.00')


def test_existing_bill_with_same_period_start_blocks_generation():
    booking = make_booking()
    bills = [billed(date(2024, 1, 1), None)]

    assert generate_next_periodic_bill(booking, bills, as_of=date(2024, 1, 5)) is None


def test_fixed_term_booking_is_not_periodic():
    booking = make_booking(is_rolling=False, duration_months=6)
    assert generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 5)) is None


def test_ended_booking_gets_no_bill():
    booking = make_booking(end_date=date(2024, 1, 31))
    bills = [billed(date(2024, 1, 1), date(2024, 1, 31))]

    assert generate_next_periodic_bill(booking, bills, as_of=date(2024, 2, 1)) is None


def test_last_period_is_cut_at_end_date():
    booking = make_booking(end_date=date(2024, 2, 10))
    bills = [billed(date(2024, 1, 1), date(2024, 1, 31))]

    draft = generate_next_periodic_bill(booking, bills, as_of=date(2024, 2, 5))

    assert draft.period_end == date(2024, 2, 10)
    # 310 * 10 / 29
    assert draft.amount == Money('106.90')


def test_due_offset_and_second_resident_fee():
    booking = make_booking(second_resident_fee=Money('62.00'))

    draft = generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 1), due_offset_days=5)

    assert draft.due_date == date(2024, 1, 6)
    assert [item.amount for item in draft.items] == [Money('310.00'), Money('62.00')]
    assert draft.items[1].description.startswith('Second resident fee')
    assert all(item.type == BillItemType.GENERATED for item in draft.items)


def test_draft_to_model_sums_items():
    booking = make_booking(second_resident_fee=Money('62.00'))
    bill = generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 1)).to_model()

    assert bill.amount == Money('372.00')
    assert bill.paid_amount == Money(0)
    assert len(bill.items) == 2


def test_prorate_full_month_unchanged():
    assert prorate(Money('310'), date(2024, 3, 1), date(2024, 3, 31)) == Money('310')
    assert prorate(Money('100'), date(2024, 4, 16), date(2024, 4, 30)) == Money('50.00')


# ---------------------------------------------------------------------------
# Add-ons
# ---------------------------------------------------------------------------


def test_addon_tier_follows_months_elapsed():
    laundry = booking_addon('Laundry', [tier(0, 2, '30.00'), tier(3, None, '20.00')])

    march = addon_items([laundry], date(2024, 3, 1), date(2024, 3, 31))
    april = addon_items([laundry], date(2024, 4, 1), date(2024, 4, 30))

    assert march[0].amount == Money('30.00')
    assert april[0].amount == Money('20.00')
    assert march[0].description.startswith('Add-on: Laundry')


def test_addon_prorated_when_started_mid_period():
    parking = booking_addon('Parking', [tier(0, None, '31.00')], start=date(2024, 1, 22))

    items = addon_items([parking], date(2024, 1, 1), date(2024, 1, 31))

    assert items[0].amount == Money('10.00')


def test_full_payment_tier_charged_once():
    setup = booking_addon('Setup', [tier(0, None, '100.00', full=True)])

    assert addon_items([setup], date(2024, 1, 1), date(2024, 1, 31))[0].amount == Money('100.00')
    assert addon_items([setup], date(2024, 2, 1), date(2024, 2, 29)) == []


def test_addon_outside_period_or_without_tier_is_skipped():
    ended = booking_addon('Gym', [tier(0, None, '15.00')], end=date(2024, 1, 31))
    untiered = booking_addon('Locker', [tier(5, None, '5.00')])

    assert addon_items([ended, untiered], date(2024, 2, 1), date(2024, 2, 29)) == []


def test_periodic_bill_includes_active_addons():
    booking = make_booking(addons=[booking_addon('Laundry', [tier(0, None, '30.00')])])

    draft = generate_next_periodic_bill(booking, [], as_of=date(2024, 1, 1))

    assert draft.amount == Money('340.00')


# ---------------------------------------------------------------------------
# Initial bills
# ---------------------------------------------------------------------------


def test_fixed_term_billed_upfront_by_calendar_month():
    booking = make_booking(start_date=date(2024, 1, 15), is_rolling=False, duration_months=2)

    drafts = generate_initial_bills(booking, as_of=date(2024, 1, 1))

    assert fixed_term_end(booking) == date(2024, 3, 14)
    assert [(d.period_start, d.period_end) for d in drafts] == [
        (date(2024, 1, 15), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 14)),
    ]
    assert [d.amount for d in drafts] == [Money('170.00'), Money('310.00'), Money('140.00')]


def test_rolling_initial_bills_catch_up_to_today():
    booking = make_booking(start_date=date(2024, 1, 15))

    drafts = generate_initial_bills(booking, as_of=date(2024, 3, 1))

    assert [d.period_start for d in drafts] == [date(2024, 1, 15), date(2024, 2, 1), date(2024, 3, 1)]


def test_rolling_booking_starting_later_has_no_initial_bills():
    booking = make_booking(start_date=date(2024, 5, 1))
    assert generate_initial_bills(booking, as_of=date(2024, 3, 1)) == []


def test_fixed_term_without_duration_rejected():
    booking = make_booking(is_rolling=False, duration_months=None)
    with pytest.raises(ValueError):
        generate_initial_bills(booking, as_of=date(2024, 1, 1))
