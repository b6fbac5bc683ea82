"""
Booking routes that affect billing.
"""

from flask import Blueprint, jsonify

from web.utils.request_helpers import get_payload, get_services

bookings_bp = Blueprint('bookings', __name__, url_prefix='/api/bookings')


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


@bookings_bp.route('', methods=['POST'])
def create_booking():
    """Create a booking together with its initial bills."""
    data = get_payload()
    services = get_services()
    booking = services.bookings.create_booking(
        room_id=data.get('room_id'),
        start_date=data.get('start_date'),
        fee=data.get('fee'),
        tenant_id=data.get('tenant_id'),
        is_rolling=_truthy(data.get('is_rolling', False)),
        duration_months=data.get('duration_months'),
        second_resident_fee=data.get('second_resident_fee'),
    )
    bills = services.bills.list_bills(booking.id)
    return jsonify({
        'booking': booking.to_dict(),
        'bills': [bill.to_dict() for bill in bills],
    }), 201


@bookings_bp.route('/<int:booking_id>/end-of-stay', methods=['POST'])
def schedule_end_of_stay(booking_id):
    data = get_payload()
    booking = get_services().bookings.schedule_end_of_stay(booking_id, data.get('end_date'))
    return jsonify(booking.to_dict())
