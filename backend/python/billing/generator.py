"""
Bill generation for bookings.

Billing periods follow calendar months. A period that does not cover its
whole month (move-in mid-month, scheduled end of stay) is prorated by days.
Everything here is pure: callers pass the booking and its existing bills and
persist the returned drafts themselves.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from common.date_utils import (
    add_days, add_months, days_in_month, end_of_month, format_long,
    inclusive_days, month_label, months_between,
)
from common.models import Bill, BillItem, BillItemType
from common.money import Money
from common.related import RelatedRef


logger = logging.getLogger(__name__)


@dataclass
class BillItemDraft:
    amount: Money
    description: str
    type: BillItemType = BillItemType.GENERATED
    related: Optional[RelatedRef] = None

    def to_model(self) -> BillItem:
        return BillItem(
            amount=self.amount,
            description=self.description,
            type=self.type,
            related=self.related,
        )


@dataclass
class BillDraft:
    """
    An unsaved bill for one billing period.

    Attributes:
        booking_id: Booking being billed
        period_start: First day covered
        period_end: Last day covered (inclusive)
        due_date: Date the bill becomes outstanding
        description: Human-readable period label
        items: Line items; the bill amount is their sum
    """
    booking_id: int
    period_start: date
    period_end: date
    due_date: date
    description: str
    items: List[BillItemDraft] = field(default_factory=list)

    @property
    def amount(self) -> Money:
        return Money.sum(item.amount for item in self.items)

    def to_model(self) -> Bill:
        """Build an ORM Bill with its items; amount is recomputed from them."""
        bill = Bill(
            booking_id=self.booking_id,
            due_date=self.due_date,
            description=self.description,
            period_start=self.period_start,
            period_end=self.period_end,
            paid_amount=Money.zero(),
        )
        bill.items = [item.to_model() for item in self.items]
        bill.recompute_amount()
        return bill

    def to_dict(self) -> Dict[str, Any]:
        return {
            'booking_id': self.booking_id,
            'period_start': self.period_start.isoformat(),
            'period_end': self.period_end.isoformat(),
            'due_date': self.due_date.isoformat(),
            'description': self.description,
            'amount': self.amount.to_string(),
            'items': [
                {'amount': item.amount.to_string(), 'description': item.description}
                for item in self.items
            ],
        }


def prorate(monthly: Money, period_start: date, period_end: date) -> Money:
    """
    Scale a monthly price to the days billed within one calendar month.

    Full months are returned unchanged; partial months are charged
    ``monthly * days_billed / days_in_month`` rounded to cents, half up.
    """
    month_days = days_in_month(period_start)
    billed_days = inclusive_days(period_start, period_end)
    if billed_days >= month_days:
        return monthly
    return Money(monthly.amount * Decimal(billed_days) / Decimal(month_days)).quantize()


def _period_suffix(period_start: date, period_end: date) -> str:
    return f"({format_long(period_start)} - {format_long(period_end)})"


def _find_tier(pricing: Iterable, months_elapsed: int):
    for tier in sorted(pricing, key=lambda p: p.interval_start):
        if tier.interval_start <= months_elapsed and (
            tier.interval_end is None or months_elapsed <= tier.interval_end
        ):
            return tier
    return None


def addon_items(addons: Iterable, period_start: date, period_end: date) -> List[BillItemDraft]:
    """
    Charges for booking add-ons active during a period.

    The pricing tier is picked by whole months elapsed since the add-on
    started. Monthly tiers are prorated by the days the add-on is active in
    the period. Full-payment tiers are charged once, in the period where the
    tier begins.
    """
    items = []
    for booking_addon in addons:
        if booking_addon.start_date > period_end:
            continue
        if booking_addon.end_date is not None and booking_addon.end_date < period_start:
            continue

        active_start = max(booking_addon.start_date, period_start)
        active_end = period_end
        if booking_addon.end_date is not None:
            active_end = min(booking_addon.end_date, period_end)

        addon = booking_addon.addon
        elapsed = months_between(booking_addon.start_date, active_start)
        tier = _find_tier(addon.pricing, elapsed)
        if tier is None:
            logger.warning(
                f"No pricing tier for add-on {addon.name} at month {elapsed} "
                f"(booking add-on {booking_addon.id})"
            )
            continue

        if tier.is_full_payment:
            previous_tier = None
            if active_start > booking_addon.start_date:
                previous_day = active_start - timedelta(days=1)
                previous_tier = _find_tier(
                    addon.pricing, months_between(booking_addon.start_date, previous_day)
                )
            if previous_tier is tier:
                continue
            amount = tier.price
        else:
            amount = prorate(tier.price, active_start, active_end)

        items.append(BillItemDraft(
            amount=amount,
            description=f"Add-on: {addon.name} {_period_suffix(active_start, active_end)}",
        ))
    return items


def build_period_draft(
    booking,
    period_start: date,
    period_end: date,
    due_offset_days: int = 0,
    addons: Optional[Iterable] = None
) -> BillDraft:
    """Assemble the draft for one period: room fee, second resident fee, add-ons."""
    suffix = _period_suffix(period_start, period_end)
    items = [BillItemDraft(
        amount=prorate(booking.fee, period_start, period_end),
        description=f"Room fee {suffix}",
    )]
    if booking.second_resident_fee is not None and booking.second_resident_fee.is_positive():
        items.append(BillItemDraft(
            amount=prorate(booking.second_resident_fee, period_start, period_end),
            description=f"Second resident fee {suffix}",
        ))
    items.extend(addon_items(
        booking.addons if addons is None else addons, period_start, period_end
    ))

    return BillDraft(
        booking_id=booking.id,
        period_start=period_start,
        period_end=period_end,
        due_date=add_days(period_start, due_offset_days),
        description=f"Bill for {month_label(period_start)}",
        items=items,
    )


def next_period_start(booking, existing_bills: Iterable) -> date:
    """Day after the latest billed period, or the booking start if none."""
    period_ends = [bill.period_end for bill in existing_bills if bill.period_end is not None]
    if not period_ends:
        return booking.start_date
    return max(period_ends) + timedelta(days=1)


def generate_next_periodic_bill(
    booking,
    existing_bills: Iterable,
    as_of: date,
    due_offset_days: int = 0,
    addons: Optional[Iterable] = None
) -> Optional[BillDraft]:
    """
    Next uncovered billing period for a rolling booking, if it has arrived.

    Args:
        booking: Booking (ORM row or any object with the same attributes)
        existing_bills: The booking's bills; those without a period are ignored
        as_of: Reference date, usually today
        due_offset_days: Days after period start the bill falls due
        addons: Booking add-ons; defaults to ``booking.addons``

    Returns:
        BillDraft, or None when nothing is due yet or the period is covered
    """
    if not booking.is_rolling:
        return None
    if booking.end_date is not None and booking.end_date < as_of:
        return None

    existing_bills = list(existing_bills)
    start = next_period_start(booking, existing_bills)

    if as_of < start:
        return None
    if booking.end_date is not None and booking.end_date < start:
        return None
    if any(bill.period_start == start for bill in existing_bills):
        logger.debug(f"Booking {booking.id}: period starting {start} already billed")
        return None

    end = end_of_month(start)
    if booking.end_date is not None and booking.end_date < end:
        end = booking.end_date

    return build_period_draft(booking, start, end, due_offset_days, addons)


def fixed_term_end(booking) -> date:
    """Last day of a fixed-duration booking."""
    return add_months(booking.start_date, booking.duration_months) - timedelta(days=1)


def generate_initial_bills(
    booking,
    as_of: date,
    due_offset_days: int = 0,
    addons: Optional[Iterable] = None
) -> List[BillDraft]:
    """
    Bills to create when a booking is first saved.

    Fixed-duration bookings are billed upfront for every calendar month of
    the term. Rolling bookings get every period from the start date through
    the period containing ``as_of``, built by applying the periodic generator
    until it has nothing left to add.
    """
    drafts: List[BillDraft] = []

    if not booking.is_rolling:
        if not booking.duration_months:
            raise ValueError(f"Booking {booking.id} is not rolling and has no duration")
        term_end = fixed_term_end(booking)
        start = booking.start_date
        while start <= term_end:
            end = min(end_of_month(start), term_end)
            drafts.append(build_period_draft(booking, start, end, due_offset_days, addons))
            start = end + timedelta(days=1)
        return drafts

    while True:
        draft = generate_next_periodic_bill(booking, drafts, as_of, due_offset_days, addons)
        if draft is None:
            return drafts
        drafts.append(draft)
