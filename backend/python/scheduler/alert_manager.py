"""
Outbound mail and billing-run alerts.

``Mailer`` is the mail interface the reminder job depends on; ``SMTPMailer``
implements it. ``AlertManager`` tells operators about billing runs through
Slack (incoming webhook) and email, each channel deciding which outcomes it
wants to hear about.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.text import MIMEText
from typing import Dict, Any, List, Optional, Sequence, Union

import requests

from scheduler.config import AlertsConfig, SlackConfig, EmailConfig

logger = logging.getLogger(__name__)

FAILURE = 'failed'
PARTIAL = 'partial_success'
SUCCESS = 'success'

# Email channels send an outcome when its severity reaches min_severity
SEVERITY = {SUCCESS: 'info', PARTIAL: 'error', FAILURE: 'critical'}
SEVERITY_RANK = {'info': 0, 'warning': 1, 'error': 2, 'critical': 3}


class Mailer(ABC):
    """Sends plain-text email."""

    @abstractmethod
    def send_mail(self, to: Union[str, Sequence[str]], subject: str, body: str) -> None:
        """Deliver one message; transport errors propagate to the caller."""


class SMTPMailer(Mailer):
    """Mailer on an SMTP relay, with STARTTLS and login when configured."""

    def __init__(self, config: EmailConfig, timeout: int = 30):
        self.config = config
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.config.smtp_host and self.config.from_address)

    def send_mail(self, to: Union[str, Sequence[str]], subject: str, body: str) -> None:
        recipients = [to] if isinstance(to, str) else list(to)

        msg = MIMEText(body, 'plain', 'utf-8')
        msg['Subject'] = subject
        msg['From'] = self.config.from_address
        msg['To'] = ', '.join(recipients)

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.smtp_user and self.config.smtp_password:
                smtp.login(self.config.smtp_user, self.config.smtp_password)
            smtp.sendmail(self.config.from_address, recipients, msg.as_string())

        logger.debug(f"Mail '{subject}' sent to {len(recipients)} recipient(s)")


@dataclass
class AlertContext:
    """What happened in one billing job run."""
    job_name: str
    run_id: Optional[int]
    status: str
    as_of: Optional[str] = None
    bookings_processed: int = 0
    bills_created: int = 0
    failed_booking_ids: List[int] = field(default_factory=list)
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Display values for the message templates."""
        return {
            'job_name': self.job_name,
            'run_id': 'N/A' if self.run_id is None else self.run_id,
            'status': self.status,
            'as_of': self.as_of or 'N/A',
            'bookings_processed': self.bookings_processed,
            'bills_created': self.bills_created,
            'failed_count': len(self.failed_booking_ids),
            'failed_booking_ids': ', '.join(map(str, self.failed_booking_ids)) or 'none',
            'error_message': self.error_message or 'N/A',
            'duration': 'N/A' if self.duration_seconds is None else f"{self.duration_seconds:.1f}",
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }


class AlertChannel(ABC):
    """One destination for alerts."""

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    def accepts(self, status: str) -> bool:
        """Whether this channel wants alerts for a run ending in ``status``."""

    @abstractmethod
    def send(self, context: AlertContext, message: str) -> bool:
        """Deliver ``message``; False when it could not be sent."""


class SlackAlertChannel(AlertChannel):
    """Posts an attachment to a Slack incoming webhook."""

    COLORS = {FAILURE: 'danger', PARTIAL: 'warning', SUCCESS: 'good'}

    def __init__(self, config: SlackConfig):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.webhook_url)

    def accepts(self, status: str) -> bool:
        return {
            FAILURE: self.config.on_failure,
            PARTIAL: self.config.on_partial,
            SUCCESS: self.config.on_success,
        }.get(status, True)

    def send(self, context: AlertContext, message: str) -> bool:
        if not self.is_configured():
            return False

        payload = {
            'username': self.config.username,
            'channel': self.config.channel,
            'attachments': [{
                'color': self.COLORS.get(context.status, '#808080'),
                'title': f"Billing job: {context.job_name}",
                'text': message,
                'fields': [
                    {'title': 'Status', 'value': context.status.upper(), 'short': True},
                    {'title': 'As of', 'value': context.as_of or 'N/A', 'short': True},
                    {'title': 'Bills created', 'value': str(context.bills_created), 'short': True},
                    {'title': 'Failed', 'value': str(len(context.failed_booking_ids)), 'short': True},
                ],
                'footer': f"Run ID: {context.run_id}",
                'ts': int(context.timestamp.timestamp()),
            }],
        }

        try:
            response = requests.post(self.config.webhook_url, json=payload, timeout=30)
        except requests.RequestException as e:
            logger.error(f"Slack alert for {context.job_name} not sent: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Slack rejected alert for {context.job_name}: {response.status_code} {response.text}")
            return False
        return True


class EmailAlertChannel(AlertChannel):
    """Mails the alert to the configured operator addresses."""

    def __init__(self, config: EmailConfig, mailer: Optional[Mailer] = None):
        self.config = config
        self.mailer = mailer or SMTPMailer(config)

    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.smtp_host and self.config.to_addresses)

    def accepts(self, status: str) -> bool:
        wanted = SEVERITY_RANK.get(self.config.min_severity, SEVERITY_RANK['error'])
        return SEVERITY_RANK[SEVERITY.get(status, 'critical')] >= wanted

    def send(self, context: AlertContext, message: str) -> bool:
        if not self.is_configured():
            return False

        lines = [
            f"Billing job {context.job_name}: {context.status.upper()}",
            '',
            f"Run ID: {context.run_id}",
            f"As of: {context.as_of}",
            f"Time: {context.timestamp:%Y-%m-%d %H:%M:%S}",
            '',
            message,
        ]
        if context.error_message:
            lines += ['', 'Error Details', '-------------', context.error_message]

        try:
            self.mailer.send_mail(
                self.config.to_addresses,
                f"[{context.status.upper()}] Billing job: {context.job_name}",
                '\n'.join(lines) + '\n',
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email alert for {context.job_name} not sent: {e}")
            return False
        return True


class AlertManager:
    """Formats run outcomes and hands them to every interested channel."""

    TEMPLATES = {
        FAILURE: "Job '{job_name}' failed.\nError: {error_message}",
        PARTIAL: (
            "Job '{job_name}' finished with {failed_count} failed booking(s) "
            "out of {bookings_processed}.\n"
            "Failed bookings: {failed_booking_ids}\n"
            "Error: {error_message}"
        ),
        SUCCESS: (
            "Job '{job_name}' completed successfully.\n"
            "Created {bills_created} bill(s) across {bookings_processed} booking(s) in {duration}s."
        ),
    }

    def __init__(self, config: AlertsConfig, mailer: Optional[Mailer] = None):
        self.config = config
        self.channels: List[AlertChannel] = []
        if config.slack.enabled:
            self.channels.append(SlackAlertChannel(config.slack))
        if config.email.enabled:
            self.channels.append(EmailAlertChannel(config.email, mailer))

        logger.info(f"Alerting through {len(self.channels)} channel(s)")

    def send_failure_alert(self, context: AlertContext):
        self._dispatch(FAILURE, context)

    def send_partial_alert(self, context: AlertContext):
        self._dispatch(PARTIAL, context)

    def send_success_alert(self, context: AlertContext):
        self._dispatch(SUCCESS, context)

    def _dispatch(self, status: str, context: AlertContext):
        context.status = status
        message = self.TEMPLATES[status].format(**context.to_dict())
        for channel in self.channels:
            if channel.is_configured() and channel.accepts(status):
                channel.send(context, message)

    def test_alerts(self) -> Dict[str, bool]:
        """Send a test message through every enabled channel; result per channel class."""
        context = AlertContext(
            job_name='test_job',
            run_id=None,
            status='test',
            error_message='This is a test alert',
        )
        return {
            type(channel).__name__: channel.is_configured()
            and channel.send(context, "This is a test alert from the billing scheduler")
            for channel in self.channels
        }
