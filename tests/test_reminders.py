from datetime import date

import pytest

from billing.exceptions import BillNotFound, ValidationError
from common.config import BillingConfig
from common.models import Bill
from scheduler.reminders import BillReminderJob, render_reminder

from conftest import FakeMailer


@pytest.fixture
def reminder_config():
    return BillingConfig(audit_log_path=None, reminder_days_ahead=7, reminder_page_size=2)


def test_reminds_unpaid_bills_in_window(session_manager, reminder_config, factory, mailer, today):
    booking_id = factory.booking(tenant_email='ana@example.com')
    due_soon = factory.bill(booking_id, date(2024, 3, 5), '310.00', paid='10.00')
    factory.bill(booking_id, date(2024, 3, 6), '50.00', paid='50.00')
    factory.bill(booking_id, date(2024, 3, 20), '310.00')

    report = BillReminderJob(session_manager, mailer, reminder_config, today=today).run()

    assert report.start == date(2024, 3, 1)
    assert report.end == date(2024, 3, 8)
    assert report.sent == [due_soon]
    [message] = mailer.sent
    assert message['to'] == 'ana@example.com'
    assert 'Outstanding: 300.00' in message['body']


def test_tenants_without_email_are_skipped(session_manager, reminder_config, factory, mailer, today):
    booking_id = factory.booking(tenant_email=None)
    bill_id = factory.bill(booking_id, date(2024, 3, 2), '310.00')

    report = BillReminderJob(session_manager, mailer, reminder_config, today=today).run()

    assert report.skipped == [bill_id]
    assert mailer.sent == []


def test_failed_send_does_not_stop_the_run(session_manager, reminder_config, factory, today):
    bounced = factory.booking(tenant_email='gone@example.com')
    fine = factory.booking(tenant_email='here@example.com')
    bounced_bills = [factory.bill(bounced, date(2024, 3, d), '10.00') for d in (2, 3)]
    fine_bills = [factory.bill(fine, date(2024, 3, d), '10.00') for d in (2, 4)]
    mailer = FakeMailer(fail_for={'gone@example.com'})

    report = BillReminderJob(session_manager, mailer, reminder_config, today=today).run(
        target_date=date(2024, 3, 1)
    )

    assert sorted(report.sent) == sorted(fine_bills)
    assert sorted(report.failed) == sorted(bounced_bills)
    assert 'bounced' in report.failed[bounced_bills[0]]
    data = report.to_dict()
    assert data['sent'] == 2
    assert data['failed'] == 2
    assert data['window'] == {'start': '2024-03-01', 'end': '2024-03-08'}


def test_send_single_reminder(session_manager, reminder_config, factory, mailer, today):
    booking_id = factory.booking(tenant_email='ana@example.com')
    bill_id = factory.bill(booking_id, date(2024, 4, 1), '310.00', description='Bill for April 2024')

    result = BillReminderJob(session_manager, mailer, reminder_config, today=today).send_bill_reminder(bill_id)

    assert result['to'] == 'ana@example.com'
    assert result['subject'] == 'Payment reminder: Bill for April 2024 due 1 April 2024'
    assert len(mailer.sent) == 1


def test_single_reminder_errors(session_manager, reminder_config, factory, mailer, today):
    job = BillReminderJob(session_manager, mailer, reminder_config, today=today)
    paid = factory.bill(factory.booking(), date(2024, 3, 1), '10.00', paid='10.00')
    no_email = factory.bill(factory.booking(tenant_email=None), date(2024, 3, 1), '10.00')

    with pytest.raises(BillNotFound):
        job.send_bill_reminder(999)
    with pytest.raises(ValidationError):
        job.send_bill_reminder(paid)
    with pytest.raises(ValidationError):
        job.send_bill_reminder(no_email)
    assert mailer.sent == []


def test_render_reminder(session_manager, factory):
    booking_id = factory.booking()
    bill_id = factory.bill(booking_id, date(2024, 3, 5), '310.00', description='Bill for March 2024')

    with session_manager.session_scope() as s:
        message = render_reminder(s.get(Bill, bill_id))

    assert message['subject'] == 'Payment reminder: Bill for March 2024 due 5 March 2024'
    assert message['body'].startswith('Dear Alex Tenant,')
    assert 'Amount: 310.00' in message['body']
