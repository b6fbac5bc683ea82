"""
Configuration dataclasses for the billing engine.
Typed views over the YAML sections loaded by common.config_loader.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Any

from common.config_loader import resolve_env


class DatabaseType(Enum):
    """Supported database types"""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


@dataclass
class DatabaseConfig:
    """
    Database connection configuration.
    PostgreSQL in production, SQLite for local runs and tests.
    """
    db_type: DatabaseType
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    sslmode: str = 'prefer'

    # Connection pool settings
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True

    def __repr__(self) -> str:
        """Safe representation without password"""
        return (f"DatabaseConfig(db_type={self.db_type.value}, host={self.host}, "
                f"database={self.database}, username={self.username})")

    @classmethod
    def from_config(cls, db_name: str = 'backend') -> 'DatabaseConfig':
        """Build from the ``database`` YAML section."""
        from common.config_loader import get_config

        db_cfg = getattr(get_config().database, db_name)
        if db_cfg is None:
            raise ValueError(f"Database config not found: {db_name}")

        db_type = DatabaseType(db_cfg.get('type', 'postgresql'))
        pool = db_cfg.pool
        return cls(
            db_type=db_type,
            database=db_cfg.name,
            host=db_cfg.host,
            port=db_cfg.port or (5432 if db_type == DatabaseType.POSTGRESQL else None),
            username=db_cfg.username,
            password=db_cfg.password_env,
            sslmode=db_cfg.get('sslmode', 'prefer'),
            pool_size=pool.size if pool else 5,
            max_overflow=pool.max_overflow if pool else 10,
        )


@dataclass
class StorageConfig:
    """Object storage for payment proofs."""
    root: str = 'data/uploads'
    key_prefix: str = 'booking-payments'


@dataclass
class BillingConfig:
    """
    Billing engine settings.

    Attributes:
        due_offset_days: Days after period start a generated bill falls due
        payment_timeout_seconds: Upper bound on a payment transaction
        income_categories: Ledger category per income source
        reminder_days_ahead: Reminder window for unpaid bills
        reminder_page_size: Bills fetched per page by the reminder job
        audit_log_path: Rotating audit log location
    """
    due_offset_days: int = 0
    payment_timeout_seconds: float = 30.0
    income_categories: Dict[str, str] = field(default_factory=lambda: {
        'rent': 'rent',
        'deposit': 'deposit',
    })
    reminder_days_ahead: int = 7
    reminder_page_size: int = 50
    audit_log_path: Optional[str] = 'logs/billing_audit.log'
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def rent_category(self) -> str:
        return self.income_categories.get('rent', 'rent')

    @property
    def deposit_category(self) -> str:
        return self.income_categories.get('deposit', 'deposit')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BillingConfig':
        billing = data.get('billing', data) or {}
        payments = billing.get('payments', {}) or {}
        reminders = billing.get('reminders', {}) or {}
        storage = billing.get('storage', {}) or {}
        defaults = cls()

        return cls(
            due_offset_days=int(billing.get('due_offset_days', defaults.due_offset_days)),
            payment_timeout_seconds=float(
                payments.get('timeout_seconds', defaults.payment_timeout_seconds)
            ),
            income_categories={
                **defaults.income_categories,
                **(billing.get('income_categories') or {}),
            },
            reminder_days_ahead=int(reminders.get('days_ahead', defaults.reminder_days_ahead)),
            reminder_page_size=int(reminders.get('page_size', defaults.reminder_page_size)),
            audit_log_path=resolve_env(billing.get('audit_log_path', defaults.audit_log_path)),
            storage=StorageConfig(
                root=resolve_env(storage.get('root', StorageConfig.root)),
                key_prefix=storage.get('key_prefix', StorageConfig.key_prefix),
            ),
        )

    @classmethod
    def from_config(cls) -> 'BillingConfig':
        """Load from ``billing.yaml`` through the unified config loader."""
        from common.config_loader import get_config

        return cls.from_dict(get_config().get_raw_config('billing'))
