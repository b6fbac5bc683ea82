"""
Bill routes - listing, manual bills and bill items.
"""

from flask import Blueprint, jsonify

from billing.exceptions import ValidationError
from web.utils.request_helpers import date_arg, get_payload, get_services

bills_bp = Blueprint('bills', __name__, url_prefix='/api')


@bills_bp.route('/bookings/<int:booking_id>/bills')
def list_bills(booking_id):
    bills = get_services().bills.list_bills(booking_id)
    return jsonify({'bills': [bill.to_dict(include_items=True) for bill in bills]})


@bills_bp.route('/bookings/<int:booking_id>/bills/unpaid')
def unpaid_bills(booking_id):
    """Outstanding bills as of ``?as_of=`` (default today) and their total."""
    result = get_services().bills.get_unpaid_bills(booking_id, as_of=date_arg('as_of'))
    return jsonify({
        'total': result['total'].to_string(),
        'bills': [bill.to_dict(include_items=True) for bill in result['bills']],
    })


@bills_bp.route('/bills', methods=['POST'])
def create_bill():
    data = get_payload()
    items = data.get('items')
    if not isinstance(items, list):
        raise ValidationError("items must be a list", field='items')
    bill = get_services().bills.create_bill(
        booking_id=data.get('booking_id'),
        due_date=data.get('due_date'),
        description=data.get('description', ''),
        items=items,
    )
    return jsonify(bill.to_dict(include_items=True)), 201


@bills_bp.route('/bills/<int:bill_id>')
def get_bill(bill_id):
    return jsonify(get_services().bills.get_bill(bill_id).to_dict(include_items=True))


@bills_bp.route('/bills/<int:bill_id>', methods=['DELETE'])
def delete_bill(bill_id):
    get_services().bills.delete_bill(bill_id)
    return jsonify({'success': True, 'deleted': bill_id})


@bills_bp.route('/bills/<int:bill_id>/items', methods=['POST'])
def add_bill_item(bill_id):
    data = get_payload()
    item = get_services().bills.add_bill_item(
        bill_id, data.get('amount'), data.get('description', '')
    )
    return jsonify(item.to_dict()), 201


@bills_bp.route('/bill-items/<int:item_id>', methods=['PUT'])
def update_bill_item(item_id):
    data = get_payload()
    item = get_services().bills.update_bill_item(
        item_id, amount=data.get('amount'), description=data.get('description')
    )
    return jsonify(item.to_dict())


@bills_bp.route('/bill-items/<int:item_id>', methods=['DELETE'])
def delete_bill_item(item_id):
    get_services().bills.delete_bill_item(item_id)
    return jsonify({'success': True, 'deleted': item_id})


@bills_bp.route('/bills/<int:bill_id>/remind', methods=['POST'])
def send_reminder(bill_id):
    """Email the tenant a reminder for one bill now."""
    reminders = get_services().reminders
    if reminders is None:
        return jsonify({'error': 'mail_not_configured', 'message': 'No mailer configured'}), 503
    return jsonify(reminders.send_bill_reminder(bill_id))
