"""
Deposit routes.
"""

from flask import Blueprint, jsonify

from web.utils.request_helpers import get_payload, get_services

deposits_bp = Blueprint('deposits', __name__, url_prefix='/api/deposits')


@deposits_bp.route('', methods=['POST'])
def create_deposit():
    data = get_payload()
    deposit = get_services().deposits.create_deposit(data.get('booking_id'), data.get('amount'))
    return jsonify(deposit.to_dict()), 201


@deposits_bp.route('/<int:deposit_id>')
def get_deposit(deposit_id):
    return jsonify(get_services().deposits.get_deposit(deposit_id).to_dict())


@deposits_bp.route('/<int:deposit_id>', methods=['PUT'])
def update_deposit(deposit_id):
    data = get_payload()
    deposit = get_services().deposits.update_deposit(
        deposit_id, amount=data.get('amount'), booking_id=data.get('booking_id')
    )
    return jsonify(deposit.to_dict())


@deposits_bp.route('/<int:deposit_id>/status', methods=['POST'])
def update_deposit_status(deposit_id):
    """Move a deposit forward: HELD, APPLIED, REFUNDED, PARTIALLY_REFUNDED or FORFEITED."""
    data = get_payload()
    deposit = get_services().deposits.update_deposit_status(
        deposit_id, data.get('status'), refunded_amount=data.get('refunded_amount')
    )
    return jsonify(deposit.to_dict())


@deposits_bp.route('/<int:deposit_id>', methods=['DELETE'])
def delete_deposit(deposit_id):
    get_services().deposits.delete_deposit(deposit_id)
    return jsonify({'success': True, 'deleted': deposit_id})
