from datetime import date

import pytest
from click.testing import CliRunner

from cli import main as cli_main
from cli.main import cli
from common.config import BillingConfig
from common.engine import create_engine_from_config
from common.session import SessionManager
from scheduler import jobs
from scheduler.config import SchedulerConfig

from conftest import Factory


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_main, 'get_billing_config', lambda: BillingConfig(audit_log_path=None))
    monkeypatch.setattr(cli_main, 'get_scheduler_config', SchedulerConfig)
    return f"sqlite:///{tmp_path / 'billing.db'}"


@pytest.fixture
def seeded(runner, db_url):
    """A file database with one rolling booking billed for January."""
    result = runner.invoke(cli, ['--db-url', db_url, 'db', 'init'])
    assert result.exit_code == 0, result.output

    engine = create_engine_from_config(db_url)
    factory = Factory(SessionManager(engine))
    booking_id = factory.booking()
    factory.monthly_bill(booking_id, 2024, 1)
    yield factory, booking_id
    engine.dispose()


def test_db_init(runner, db_url):
    result = runner.invoke(cli, ['--db-url', db_url, 'db', 'init'])

    assert result.exit_code == 0
    assert 'Database tables created' in result.output


def test_billing_run(runner, db_url, seeded):
    factory, booking_id = seeded

    result = runner.invoke(cli, ['--db-url', db_url, 'billing', 'run', '--as-of', '2024-02-01'])

    assert result.exit_code == 0, result.output
    assert 'Created 1 bill(s) across 1 booking(s)' in result.output
    assert [b.period_start for b in factory.bills_for(booking_id)] == [date(2024, 1, 1), date(2024, 2, 1)]


def test_billing_run_rejects_bad_date(runner, db_url):
    result = runner.invoke(cli, ['--db-url', db_url, 'billing', 'run', '--as-of', 'February'])

    assert result.exit_code == 2
    assert '--as-of' in result.output


def test_strict_run_exits_nonzero_on_failure(monkeypatch, runner, db_url, seeded):
    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(jobs, 'generate_next_periodic_bill', broken)

    lenient = runner.invoke(cli, ['--db-url', db_url, 'billing', 'run', '--as-of', '2024-02-01'])
    strict = runner.invoke(cli, ['--db-url', db_url, 'billing', 'run', '--as-of', '2024-02-01', '--strict'])

    assert lenient.exit_code == 0
    assert strict.exit_code == 1


def test_billing_preview(runner, db_url, seeded):
    factory, booking_id = seeded

    result = runner.invoke(cli, ['--db-url', db_url, 'billing', 'preview', '--as-of', '2024-02-01'])

    assert result.exit_code == 0, result.output
    assert '1 bill(s) would be created' in result.output
    assert len(factory.bills_for(booking_id)) == 1


def test_jobs_list(runner, db_url):
    result = runner.invoke(cli, ['jobs', 'list'])

    assert result.exit_code == 0
    assert 'recurring_billing' in result.output
    assert 'bill_reminders' in result.output
    assert 'Timezone: UTC' in result.output


def test_remind_requires_smtp(runner, db_url):
    result = runner.invoke(cli, ['--db-url', db_url, 'billing', 'remind'])

    assert result.exit_code == 1
    assert 'SMTP is not configured' in result.output
