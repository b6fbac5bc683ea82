"""
In-process scheduler for the billing jobs.

``SchedulerEngine`` wraps an APScheduler ``BackgroundScheduler``: it
registers each enabled job from ``SchedulerConfig`` on its cron schedule,
and exposes ``run_job_now`` for the CLI and the cron endpoints, so a run
behaves the same (history row, alerts) whoever triggered it.
"""

import logging
import threading
import time
from datetime import date, datetime
from typing import Optional, Dict, Any, Callable, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import (
    EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_STARTED, EVENT_SCHEDULER_SHUTDOWN
)

from common.config import BillingConfig
from common.session import SessionManager
from scheduler.alert_manager import AlertManager, AlertContext, Mailer
from scheduler.config import SchedulerConfig, JobDefinition
from scheduler.jobs import RecurringBillingJob, JOB_NAME as BILLING_JOB_NAME
from scheduler.reminders import BillReminderJob

logger = logging.getLogger(__name__)

REMINDER_JOB_NAME = 'bill_reminders'


class SchedulerEngine:
    """
    Runs the recurring billing and bill reminder jobs.

    Args:
        config: Job schedules and APScheduler settings
        session_manager: Database access shared by every run
        billing_config: Settings handed to the jobs
        alert_manager: Told about every billing run; optional
        mailer: Needed by the reminder job, which is not scheduled without one
        today: Clock for runs that do not name a date
    """

    def __init__(
        self,
        config: SchedulerConfig,
        session_manager: SessionManager,
        billing_config: Optional[BillingConfig] = None,
        alert_manager: Optional[AlertManager] = None,
        mailer: Optional[Mailer] = None,
        today: Callable[[], date] = date.today
    ):
        self.config = config
        self.session_manager = session_manager
        self.billing_config = billing_config or BillingConfig()
        self.alert_manager = alert_manager
        self.mailer = mailer
        self.today = today

        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        self._stopped = threading.Event()
        # One run at a time, whatever triggered it
        self._run_lock = threading.Lock()

        self._runners: Dict[str, Callable[..., Dict[str, Any]]] = {
            BILLING_JOB_NAME: self._run_recurring_billing,
            REMINDER_JOB_NAME: self._run_bill_reminders,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self):
        """Build the APScheduler instance; jobs live in memory and are re-registered on start."""
        self._scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': ThreadPoolExecutor(max_workers=self.config.executor_max_workers)},
            job_defaults={
                'coalesce': self.config.coalesce,
                'max_instances': self.config.max_instances,
                'misfire_grace_time': self.config.misfire_grace_time,
            },
            timezone=self.config.timezone,
        )
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_listener(self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN)

    def start(self):
        from scheduler import __version__

        if self._running:
            logger.warning("Scheduler already running")
            return

        if self._scheduler is None:
            self.initialize()
        self._register_jobs()

        self._scheduler.start()
        self._running = True
        self._stopped.clear()
        logger.info(f"Billing scheduler v{__version__} started ({self.config.timezone})")

    def stop(self, wait: bool = True):
        """Shut down; with ``wait`` a job that is running finishes first."""
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        self._scheduler.shutdown(wait=wait)
        self._running = False
        self._stopped.set()
        logger.info("Billing scheduler stopped")

    def wait(self, poll_seconds: float = 1.0):
        """Block the calling thread until ``stop()``."""
        while self._running and not self._stopped.wait(timeout=poll_seconds):
            pass

    @property
    def is_running(self) -> bool:
        return self._running

    def _register_jobs(self):
        for job_def in self.config.get_enabled_jobs():
            if job_def.job_name not in self._runners:
                logger.warning(f"Ignoring unknown job in config: {job_def.job_name}")
                continue
            if job_def.job_name == REMINDER_JOB_NAME and self.mailer is None:
                logger.info("Bill reminders not scheduled: no mailer configured")
                continue

            try:
                trigger = self.create_trigger(job_def)
            except ValueError as e:
                logger.error(f"Job {job_def.job_name} not scheduled: {e}")
                continue

            self._scheduler.add_job(
                func=self._execute_job,
                trigger=trigger,
                id=f"job_{job_def.job_name}",
                name=job_def.display_name,
                kwargs={'job_name': job_def.job_name},
                replace_existing=True,
            )
            logger.info(f"Scheduled {job_def.job_name} at '{job_def.cron}'")

    def create_trigger(self, job_def: JobDefinition) -> CronTrigger:
        """CronTrigger for the job's five-field crontab expression."""
        try:
            return CronTrigger.from_crontab(job_def.cron, timezone=self.config.timezone)
        except ValueError as e:
            raise ValueError(f"Invalid cron expression for {job_def.job_name}: '{job_def.cron}' ({e})")

    def _execute_job(self, job_name: str):
        """APScheduler entry point; a crash is logged here, alerts were sent by the runner."""
        try:
            self.run_job_now(job_name, triggered_by='scheduler')
        except Exception as e:
            logger.exception(f"Scheduled run of {job_name} crashed: {e}")

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_job_now(self, job_name: str, triggered_by: str = 'cli', **kwargs) -> Dict[str, Any]:
        """
        Run a job synchronously in the calling thread.

        ``kwargs`` (``as_of`` for billing, ``target_date`` for reminders)
        override the job's configured ``default_args``; None values are
        ignored. Returns the job's report as a dict.
        """
        runner = self._runners.get(job_name)
        if runner is None:
            raise ValueError(f"Job not found: {job_name}")

        job_def = self.config.get_job(job_name)
        args = dict(job_def.default_args) if job_def else {}
        args.update({key: value for key, value in kwargs.items() if value is not None})

        with self._run_lock:
            return runner(triggered_by=triggered_by, **args)

    def _run_recurring_billing(self, triggered_by: str, as_of: Optional[date] = None) -> Dict[str, Any]:
        job = RecurringBillingJob(self.session_manager, self.billing_config, today=self.today)
        started = time.monotonic()
        try:
            report = job.run(as_of=as_of, triggered_by=triggered_by)
        except Exception as e:
            if self.alert_manager:
                self.alert_manager.send_failure_alert(AlertContext(
                    job_name=BILLING_JOB_NAME,
                    run_id=None,
                    status='failed',
                    as_of=str(as_of or self.today()),
                    error_message=str(e),
                    duration_seconds=time.monotonic() - started,
                ))
            raise

        if self.alert_manager:
            context = AlertContext(
                job_name=BILLING_JOB_NAME,
                run_id=report.run_id,
                status=report.status,
                as_of=report.as_of.isoformat(),
                bookings_processed=report.bookings_processed,
                bills_created=report.bills_created,
                failed_booking_ids=report.failed_booking_ids,
                error_message=report.error,
                duration_seconds=report.duration_seconds,
            )
            if report.failed_booking_ids:
                self.alert_manager.send_partial_alert(context)
            else:
                self.alert_manager.send_success_alert(context)

        return report.to_dict()

    def _run_bill_reminders(self, triggered_by: str, target_date: Optional[date] = None) -> Dict[str, Any]:
        if self.mailer is None:
            raise ValueError("No mailer configured for bill reminders")
        logger.info(f"Running bill reminders (triggered by {triggered_by})")
        job = BillReminderJob(self.session_manager, self.mailer, self.billing_config, today=self.today)
        return job.run(target_date=target_date).to_dict()

    # ------------------------------------------------------------------
    # Events and status
    # ------------------------------------------------------------------

    def _on_job_event(self, event):
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Job {event.job_id} raised: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its run time")
        else:
            logger.debug(f"Job {event.job_id} done")

    def _on_scheduler_event(self, event):
        logger.info("APScheduler started" if event.code == EVENT_SCHEDULER_STARTED else "APScheduler shut down")

    def get_jobs(self) -> List[Dict[str, Any]]:
        if self._scheduler is None:
            return []
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if isinstance(
                    getattr(job, 'next_run_time', None), datetime) else None,
                'trigger': str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'jobs_scheduled': len(self._scheduler.get_jobs()) if self._scheduler else 0,
            'timezone': self.config.timezone,
        }
