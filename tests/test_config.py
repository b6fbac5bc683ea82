import pytest

from common import engine as engine_module
from common.config import BillingConfig, DatabaseConfig, DatabaseType
from common.config_loader import AppConfig, ConfigSection, resolve_env
from scheduler.config import SchedulerConfig


def test_resolve_env(monkeypatch):
    monkeypatch.setenv('BILLING_TEST_HOST', 'db.internal')
    monkeypatch.delenv('BILLING_TEST_MISSING', raising=False)

    assert resolve_env('${BILLING_TEST_HOST}:5432') == 'db.internal:5432'
    assert resolve_env('${BILLING_TEST_MISSING:-fallback}') == 'fallback'
    assert resolve_env('${BILLING_TEST_MISSING}') == ''
    assert resolve_env(42) == 42


def test_config_section_env_keys(monkeypatch):
    monkeypatch.setenv('BILLING_TEST_SECRET', 's3cret')
    section = ConfigSection({'flask': {'secret_key_env': 'BILLING_TEST_SECRET', 'port': 5000}})

    assert section.flask.secret_key_env == 's3cret'
    assert section.flask.port == 5000
    assert section.flask.missing is None
    assert section.get('nothing', 'default') == 'default'
    assert 'flask' in section


def test_app_config_loads_every_yaml(tmp_path):
    (tmp_path / 'billing.yaml').write_text('billing:\n  due_offset_days: 3\n')
    (tmp_path / 'app.yaml').write_text('app:\n  name: Test\n')

    config = AppConfig(str(tmp_path))

    assert sorted(config.get_config_files()) == ['app', 'billing']
    assert config.app.app.name == 'Test'
    assert config.get_raw_config('billing') == {'billing': {'due_offset_days': 3}}
    assert config.get_raw_config('absent') == {}
    assert config.absent.anything is None


def test_billing_config_from_dict(monkeypatch):
    monkeypatch.setenv('BILLING_STORAGE_ROOT', '/srv/proofs')

    config = BillingConfig.from_dict({'billing': {
        'due_offset_days': 5,
        'payments': {'timeout_seconds': 10},
        'income_categories': {'deposit': 'deposits-retained'},
        'reminders': {'days_ahead': 3},
        'storage': {'root': '${BILLING_STORAGE_ROOT:-data/uploads}'},
        'audit_log_path': None,
    }})

    assert config.due_offset_days == 5
    assert config.payment_timeout_seconds == 10.0
    assert config.rent_category == 'rent'
    assert config.deposit_category == 'deposits-retained'
    assert config.reminder_days_ahead == 3
    assert config.reminder_page_size == 50
    assert config.storage.root == '/srv/proofs'
    assert config.storage.key_prefix == 'booking-payments'
    assert config.audit_log_path is None


def test_billing_config_defaults():
    config = BillingConfig.from_dict({})
    assert config == BillingConfig()


def test_scheduler_config_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv('BILLING_TEST_WEBHOOK', 'https://hooks.example.com/abc')
    scheduler_file = tmp_path / 'scheduler.yaml'
    scheduler_file.write_text(
        'scheduler:\n'
        '  engine:\n'
        '    timezone: Europe/London\n'
        '    executor:\n'
        '      max_workers: 4\n'
        '  jobs:\n'
        '    recurring_billing:\n'
        '      cron: "0 2 1 * *"\n'
        '    bill_reminders:\n'
        '      enabled: false\n'
    )
    alerts_file = tmp_path / 'alerts.yaml'
    alerts_file.write_text(
        'alerts:\n'
        '  slack:\n'
        '    enabled: true\n'
        '    webhook_url: ${BILLING_TEST_WEBHOOK}\n'
        '  email:\n'
        '    smtp_host: smtp.example.com\n'
        '    smtp_port: "2525"\n'
    )

    config = SchedulerConfig.from_yaml(str(scheduler_file), str(alerts_file))

    assert config.timezone == 'Europe/London'
    assert config.executor_max_workers == 4
    billing_job = config.get_job('recurring_billing')
    assert billing_job.cron == '0 2 1 * *'
    assert billing_job.display_name == 'Recurring Billing'
    assert [j.job_name for j in config.get_enabled_jobs()] == ['recurring_billing']
    assert config.alerts.slack.webhook_url == 'https://hooks.example.com/abc'
    assert config.alerts.email.smtp_port == 2525
    assert not config.alerts.email.enabled


def test_scheduler_config_missing_files_keep_defaults(tmp_path):
    config = SchedulerConfig.from_yaml(str(tmp_path / 'none.yaml'), str(tmp_path / 'none2.yaml'))

    assert config.timezone == 'UTC'
    assert sorted(config.jobs) == ['bill_reminders', 'recurring_billing']


def test_scheduler_config_from_env(monkeypatch):
    monkeypatch.setenv('BILLING_CRON', '30 1 * * *')
    monkeypatch.setenv('SLACK_WEBHOOK_URL', 'https://hooks.example.com/env')

    config = SchedulerConfig.from_env()

    assert config.get_job('recurring_billing').cron == '30 1 * * *'
    assert config.alerts.slack.enabled
    assert SchedulerConfig().get_job('recurring_billing').cron == '5 0 * * *'


def test_get_engine_prefers_database_url(monkeypatch):
    seen = []

    def fake_create(config):
        seen.append(config)
        return 'engine'

    monkeypatch.setattr(engine_module, 'create_engine_from_config', fake_create)
    monkeypatch.setenv('DATABASE_URL', 'sqlite://')

    assert engine_module.get_engine() == 'engine'
    assert engine_module.get_engine(db_url='sqlite:///explicit.db') == 'engine'
    assert seen == ['sqlite://', 'sqlite:///explicit.db']


def test_unsupported_database_type_is_rejected():
    config = DatabaseConfig(db_type=DatabaseType.SQLITE, database='')
    assert engine_module._build_connection_string(config) == 'sqlite://'

    config.db_type = 'oracle'
    with pytest.raises(ValueError):
        engine_module._build_connection_string(config)
