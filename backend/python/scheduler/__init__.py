"""
Billing Job Scheduler

Runs the property back-office's periodic jobs with:
- Daily recurring billing for rolling bookings
- Bill reminder emails for upcoming due dates
- Run history in the billing database
- Slack/email alerts on failed or partial runs
- CLI and cron endpoint triggers
"""

__version__ = '1.0.0'
