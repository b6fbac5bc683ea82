"""
Scheduler and alerting configuration.

Read from ``config/scheduler.yaml`` and ``config/alerts.yaml``; string values
may use ``${VAR}`` placeholders. ``SchedulerConfig.from_env`` covers
deployments that only set environment variables.
"""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from common.config_loader import BACKEND_DIR, resolve_env


def _env(key: str, default: Any = None, cast: type = None) -> Any:
    """Environment variable with an optional cast; bools accept true/1/yes/on."""
    value = os.environ.get(key)
    if value is None:
        return default
    if cast is bool:
        return value.lower() in ('true', '1', 'yes', 'on')
    return cast(value) if cast else value


def _read_yaml(path: Path, root_key: str) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return data.get(root_key) or {}


@dataclass
class JobDefinition:
    """One scheduled job: a registered job name and its cron expression."""
    job_name: str
    display_name: str
    cron: str
    enabled: bool = True
    default_args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlackConfig:
    """Slack incoming-webhook alerts; ``on_*`` pick which outcomes are posted."""
    enabled: bool = False
    webhook_url: str = ''
    channel: str = '#billing-alerts'
    username: str = 'Billing Scheduler'
    on_failure: bool = True
    on_partial: bool = True
    on_success: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SlackConfig':
        defaults = cls()
        return cls(
            enabled=bool(data.get('enabled', defaults.enabled)),
            webhook_url=resolve_env(data.get('webhook_url', defaults.webhook_url)) or '',
            channel=data.get('channel', defaults.channel),
            username=data.get('username', defaults.username),
            on_failure=bool(data.get('on_failure', defaults.on_failure)),
            on_partial=bool(data.get('on_partial', defaults.on_partial)),
            on_success=bool(data.get('on_success', defaults.on_success)),
        )


@dataclass
class EmailConfig:
    """
    SMTP settings.

    Used for email alerts (``enabled``, ``to_addresses``, ``min_severity``)
    and as the outbound server for tenant bill reminders.
    """
    enabled: bool = False
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    use_tls: bool = True
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)
    min_severity: str = 'error'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailConfig':
        defaults = cls()
        port = resolve_env(data.get('smtp_port', defaults.smtp_port))
        return cls(
            enabled=bool(data.get('enabled', defaults.enabled)),
            smtp_host=resolve_env(data.get('smtp_host', '')) or '',
            smtp_port=int(port) if port else defaults.smtp_port,
            smtp_user=resolve_env(data.get('smtp_user', '')) or '',
            smtp_password=resolve_env(data.get('smtp_password', '')) or '',
            use_tls=bool(data.get('use_tls', defaults.use_tls)),
            from_address=resolve_env(data.get('from_address', '')) or '',
            to_addresses=list(data.get('to_addresses') or []),
            min_severity=data.get('min_severity', defaults.min_severity),
        )


@dataclass
class AlertsConfig:
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


DEFAULT_JOBS = {
    'recurring_billing': JobDefinition(
        job_name='recurring_billing',
        display_name='Recurring Billing',
        cron='5 0 * * *',
    ),
    'bill_reminders': JobDefinition(
        job_name='bill_reminders',
        display_name='Bill Reminders',
        cron='0 9 * * *',
    ),
}


@dataclass
class SchedulerConfig:
    """APScheduler settings, job schedules and alert channels."""
    timezone: str = 'UTC'
    coalesce: bool = True               # Fold missed runs into one
    max_instances: int = 1              # Never overlap a job with itself
    misfire_grace_time: int = 3600      # Seconds a late run may still start
    executor_max_workers: int = 2

    # Let running jobs finish on shutdown
    wait_for_jobs: bool = True

    jobs: Dict[str, JobDefinition] = field(default_factory=lambda: copy.deepcopy(DEFAULT_JOBS))
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @classmethod
    def from_yaml(cls, scheduler_path: Optional[str] = None,
                  alerts_path: Optional[str] = None) -> 'SchedulerConfig':
        """
        Load from YAML, keeping defaults for anything a file leaves out.

        Paths default to ``scheduler.yaml`` and ``alerts.yaml`` in
        ``backend/config``. Missing files are not an error.
        """
        config_dir = BACKEND_DIR / 'config'
        sched = _read_yaml(Path(scheduler_path or config_dir / 'scheduler.yaml'), 'scheduler')
        alerts = _read_yaml(Path(alerts_path or config_dir / 'alerts.yaml'), 'alerts')

        config = cls()

        engine = sched.get('engine') or {}
        job_defaults = engine.get('job_defaults') or {}
        config.timezone = resolve_env(engine.get('timezone', config.timezone)) or config.timezone
        config.coalesce = job_defaults.get('coalesce', config.coalesce)
        config.max_instances = job_defaults.get('max_instances', config.max_instances)
        config.misfire_grace_time = job_defaults.get('misfire_grace_time', config.misfire_grace_time)
        config.executor_max_workers = (engine.get('executor') or {}).get(
            'max_workers', config.executor_max_workers
        )
        config.wait_for_jobs = sched.get('wait_for_jobs', config.wait_for_jobs)

        for name, job in (sched.get('jobs') or {}).items():
            config.jobs[name] = cls._job_from_dict(name, job or {})

        if 'slack' in alerts:
            config.alerts.slack = SlackConfig.from_dict(alerts['slack'] or {})
        if 'email' in alerts:
            config.alerts.email = EmailConfig.from_dict(alerts['email'] or {})

        return config

    @staticmethod
    def _job_from_dict(name: str, data: Dict[str, Any]) -> JobDefinition:
        known = DEFAULT_JOBS.get(name)
        return JobDefinition(
            job_name=name,
            display_name=data.get('display_name', known.display_name if known else name),
            cron=data.get('cron', known.cron if known else '0 0 * * *'),
            enabled=data.get('enabled', True),
            default_args=dict(data.get('default_args') or {}),
        )

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        """Defaults overridden by SCHEDULER_*, BILLING_CRON, REMINDER_CRON and SLACK_* variables."""
        config = cls()
        config.timezone = _env('SCHEDULER_TIMEZONE', config.timezone)
        config.executor_max_workers = _env('SCHEDULER_MAX_WORKERS', config.executor_max_workers, int)

        for job_name, variable in (('recurring_billing', 'BILLING_CRON'), ('bill_reminders', 'REMINDER_CRON')):
            cron = _env(variable)
            if cron:
                config.jobs[job_name].cron = cron

        webhook = _env('SLACK_WEBHOOK_URL')
        if webhook:
            config.alerts.slack = SlackConfig(
                enabled=True,
                webhook_url=webhook,
                channel=_env('SLACK_CHANNEL', SlackConfig.channel),
            )
        return config

    def get_job(self, name: str) -> Optional[JobDefinition]:
        return self.jobs.get(name)

    def get_enabled_jobs(self) -> List[JobDefinition]:
        return [job for job in self.jobs.values() if job.enabled]
