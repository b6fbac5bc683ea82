"""
Command-line interface for the billing back-office (click + rich).
"""

import logging
import signal
import sys

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def get_session_manager(ctx):
    """Session manager for the database selected on the command line or in config."""
    from common.engine import get_engine
    from common.session import SessionManager

    if 'session_manager' not in ctx.obj:
        ctx.obj['session_manager'] = SessionManager(get_engine('backend', ctx.obj.get('db_url')))
    return ctx.obj['session_manager']


def get_billing_config():
    from common.config import BillingConfig
    return BillingConfig.from_config()


def get_scheduler_config():
    from scheduler.config import SchedulerConfig
    return SchedulerConfig.from_yaml()


def _parse_date_option(value, name):
    from billing.exceptions import ValidationError
    from billing.validators import parse_date

    try:
        return parse_date(value, name, required=False)
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint=f"--{name.replace('_', '-')}")


@click.group()
@click.version_option(version='1.0.0', prog_name='billing')
@click.option('--db-url', envvar='DATABASE_URL', default=None,
              help='SQLAlchemy database URL (defaults to config/database.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.pass_context
def cli(ctx, db_url, verbose):
    """Billing back-office - run billing jobs and manage the scheduler."""
    ctx.ensure_object(dict)
    ctx.obj['db_url'] = db_url
    _setup_logging(verbose)


# =============================================================================
# Database Commands
# =============================================================================

@cli.group()
def db():
    """Manage the billing database."""
    pass


@db.command('init')
@click.pass_context
def db_init(ctx):
    """Create all billing tables."""
    from common.models import create_tables

    session_manager = get_session_manager(ctx)
    create_tables(session_manager.engine)
    console.print("[green]Database tables created[/green]")


# =============================================================================
# Billing Commands
# =============================================================================

@cli.group()
def billing():
    """Run billing jobs by hand."""
    pass


@billing.command('run')
@click.option('--as-of', help='Billing date (YYYY-MM-DD, default today)')
@click.option('--strict', is_flag=True, help='Exit with status 1 if any booking failed')
@click.pass_context
def billing_run(ctx, as_of, strict):
    """Generate due periodic bills for open rolling bookings."""
    from scheduler.jobs import RecurringBillingJob

    as_of = _parse_date_option(as_of, 'as_of')
    job = RecurringBillingJob(get_session_manager(ctx), get_billing_config())

    console.print("[yellow]Running recurring billing...[/yellow]")
    report = job.run(as_of=as_of, triggered_by='cli')

    table = Table(title=f"Billing run {report.run_id} ({report.as_of})")
    table.add_column("Booking", style="cyan")
    table.add_column("Outcome", style="green")
    table.add_column("Bill", style="magenta")
    table.add_column("Error", style="red")

    for outcome in report.outcomes:
        style = {'processed': 'green', 'failed': 'red'}.get(outcome.outcome, 'dim')
        table.add_row(
            str(outcome.booking_id),
            f"[{style}]{outcome.outcome}[/{style}]",
            str(outcome.bill_id) if outcome.bill_id else '-',
            outcome.error or '',
        )
    console.print(table)

    if report.failed_booking_ids:
        console.print(f"[red]{report.error}[/red]")
        if strict:
            sys.exit(1)
    else:
        console.print(
            f"[green]Created {report.bills_created} bill(s) across "
            f"{report.bookings_processed} booking(s)[/green]"
        )


@billing.command('preview')
@click.option('--as-of', help='Billing date (YYYY-MM-DD, default today)')
@click.pass_context
def billing_preview(ctx, as_of):
    """Show the bills a run would create, without writing."""
    from scheduler.jobs import RecurringBillingJob

    as_of = _parse_date_option(as_of, 'as_of')
    job = RecurringBillingJob(get_session_manager(ctx), get_billing_config())
    preview = job.preview(as_of=as_of)

    table = Table(title=f"Billing preview for {preview['as_of']}")
    table.add_column("Booking", style="cyan")
    table.add_column("Status", style="yellow")
    table.add_column("Period", style="blue")
    table.add_column("Amount", style="green", justify="right")

    for entry in preview['results']:
        bill = entry.get('bill')
        table.add_row(
            str(entry['booking_id']),
            entry['status'],
            f"{bill['period_start']} - {bill['period_end']}" if bill else entry.get('reason', ''),
            bill['amount'] if bill else '',
        )
    console.print(table)
    console.print(f"{preview['would_create']} bill(s) would be created")


@billing.command('remind')
@click.option('--target-date', help='Start of the reminder window (YYYY-MM-DD, default today)')
@click.pass_context
def billing_remind(ctx, target_date):
    """Email tenants about unpaid bills falling due soon."""
    from scheduler.alert_manager import SMTPMailer
    from scheduler.reminders import BillReminderJob

    target = _parse_date_option(target_date, 'target_date')
    mailer = SMTPMailer(get_scheduler_config().alerts.email)
    if not mailer.is_configured():
        console.print("[red]SMTP is not configured (see config/alerts.yaml)[/red]")
        sys.exit(1)

    job = BillReminderJob(get_session_manager(ctx), mailer, get_billing_config())
    report = job.run(target_date=target)

    console.print(
        f"Window {report.start} - {report.end}: "
        f"[green]{len(report.sent)} sent[/green], "
        f"[yellow]{len(report.skipped)} skipped[/yellow], "
        f"[red]{len(report.failed)} failed[/red]"
    )


# =============================================================================
# Daemon Commands
# =============================================================================

@cli.group()
def daemon():
    """Manage the scheduler daemon process."""
    pass


@daemon.command('start')
@click.pass_context
def daemon_start(ctx):
    """Start the scheduler in the foreground. Ctrl+C to stop."""
    from billing.audit import setup_audit_logging
    from scheduler.alert_manager import AlertManager, SMTPMailer
    from scheduler.engine import SchedulerEngine

    config = get_scheduler_config()
    billing_config = get_billing_config()
    setup_audit_logging(billing_config.audit_log_path)

    mailer = SMTPMailer(config.alerts.email)
    engine = SchedulerEngine(
        config,
        get_session_manager(ctx),
        billing_config=billing_config,
        alert_manager=AlertManager(config.alerts),
        mailer=mailer if mailer.is_configured() else None,
    )

    console.print("[yellow]Starting scheduler...[/yellow]")
    engine.start()

    def signal_handler(signum, frame):
        console.print("\n[yellow]Shutting down...[/yellow]")
        engine.stop(wait=config.wait_for_jobs)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    console.print("[green]Scheduler running. Press Ctrl+C to stop.[/green]")
    engine.wait()


# =============================================================================
# Jobs Commands
# =============================================================================

@cli.group()
def jobs():
    """Inspect scheduled jobs."""
    pass


@jobs.command('list')
def list_jobs():
    """List configured jobs and their schedules."""
    config = get_scheduler_config()

    table = Table(title="Scheduled Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Cron", style="yellow")
    table.add_column("Enabled", style="green")

    for name, job in sorted(config.jobs.items()):
        enabled = "[green]Yes[/green]" if job.enabled else "[red]No[/red]"
        table.add_row(name, job.display_name, job.cron, enabled)

    console.print(table)
    console.print(f"Timezone: {config.timezone}")


# =============================================================================
# Alerts Commands
# =============================================================================

@cli.group()
def alerts():
    """Alert channel utilities."""
    pass


@alerts.command('test')
def test_alerts():
    """Send a test alert through every configured channel."""
    from scheduler.alert_manager import AlertManager

    manager = AlertManager(get_scheduler_config().alerts)
    results = manager.test_alerts()
    if not results:
        console.print("[yellow]No alert channels enabled[/yellow]")
        return

    for channel, ok in results.items():
        status = "[green]OK[/green]" if ok else "[red]FAILED[/red]"
        console.print(f"{channel}: {status}")


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
