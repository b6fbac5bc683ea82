"""
Payment routes - submit, preview and edit payments.
"""

from flask import Blueprint, jsonify, request

from billing.payments import ProofFile
from billing.validators import parse_id
from web.utils.request_helpers import date_arg, get_payload, get_services

payments_bp = Blueprint('payments', __name__, url_prefix='/api')


@payments_bp.route('/bookings/<int:booking_id>/payments', methods=['POST'])
def submit_payment(booking_id):
    """
    Record a payment against a booking.

    Accepts JSON, or multipart form data with the proof file in ``proof``.
    """
    data = get_payload()

    proof = None
    upload = request.files.get('proof')
    if upload is not None and upload.filename:
        proof = ProofFile(filename=upload.filename, data=upload.read())

    status_id = data.get('status_id')
    payment = get_services().payments.submit_payment(
        booking_id=booking_id,
        amount=data.get('amount'),
        payment_date=data.get('payment_date'),
        proof=proof,
        status_id=parse_id(status_id, 'status_id') if status_id not in (None, '') else None,
    )
    return jsonify(payment.to_dict()), 201


@payments_bp.route('/bookings/<int:booking_id>/payments/simulate', methods=['POST'])
def simulate_payment(booking_id):
    """Show how a payment would be allocated without recording it."""
    data = get_payload()
    result = get_services().payments.simulate_payment(
        booking_id, data.get('amount'), as_of=date_arg('as_of', data)
    )
    return jsonify(result.to_dict())


@payments_bp.route('/payments/<int:payment_id>')
def get_payment(payment_id):
    return jsonify(get_services().payments.get_payment(payment_id).to_dict())


@payments_bp.route('/payments/<int:payment_id>', methods=['PUT'])
def update_payment(payment_id):
    """Edit a payment. Bill allocations are left as they were."""
    data = get_payload()
    status_id = data.get('status_id')
    payment = get_services().payments.update_payment(
        payment_id,
        amount=data.get('amount'),
        payment_date=data.get('payment_date'),
        status_id=parse_id(status_id, 'status_id') if status_id not in (None, '') else None,
    )
    return jsonify(payment.to_dict())
