"""
Ledger routes - manual income and expense entries.
"""

from flask import Blueprint, jsonify, request

from web.utils.request_helpers import get_payload, get_services

transactions_bp = Blueprint('transactions', __name__, url_prefix='/api/transactions')


@transactions_bp.route('', methods=['POST'])
def create_transaction():
    data = get_payload()
    transaction = get_services().transactions.create_transaction(
        data.get('type'),
        data.get('amount'),
        data.get('category'),
        transaction_date=data.get('date'),
        description=data.get('description'),
        location_id=data.get('location_id'),
        booking_id=data.get('booking_id'),
    )
    return jsonify(transaction.to_dict()), 201


@transactions_bp.route('')
def list_transactions():
    """Entries filtered by ``?type=``, ``?location_id=``, ``?start=`` and ``?end=``."""
    transactions = get_services().transactions.list_transactions(
        entry_type=request.args.get('type'),
        location_id=request.args.get('location_id'),
        start=request.args.get('start'),
        end=request.args.get('end'),
    )
    return jsonify({'transactions': [t.to_dict() for t in transactions]})


@transactions_bp.route('/<int:transaction_id>')
def get_transaction(transaction_id):
    return jsonify(get_services().transactions.get_transaction(transaction_id).to_dict())


@transactions_bp.route('/<int:transaction_id>', methods=['PUT'])
def update_transaction(transaction_id):
    data = get_payload()
    transaction = get_services().transactions.update_transaction(
        transaction_id,
        entry_type=data.get('type'),
        amount=data.get('amount'),
        category=data.get('category'),
        transaction_date=data.get('date'),
        description=data.get('description'),
        location_id=data.get('location_id'),
    )
    return jsonify(transaction.to_dict())


@transactions_bp.route('/<int:transaction_id>', methods=['DELETE'])
def delete_transaction(transaction_id):
    get_services().transactions.delete_transaction(transaction_id)
    return jsonify({'success': True, 'deleted': transaction_id})
