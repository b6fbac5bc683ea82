"""
SQLAlchemy engines for the billing database.

PostgreSQL (psycopg2) in production; SQLite for local runs and the test
suite. Engine creation is retried while the server refuses connections.
"""

import os
import time
import urllib.parse
import logging
from typing import Union

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .config import DatabaseConfig, DatabaseType


logger = logging.getLogger(__name__)

_MEMORY_URLS = ('sqlite://', 'sqlite:///:memory:')


def _engine_kwargs(url: str, db_config: DatabaseConfig = None) -> dict:
    if url.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        if url in _MEMORY_URLS:
            # every session must see the same in-memory database
            kwargs['poolclass'] = StaticPool
        return kwargs

    if db_config is None:
        return {'pool_pre_ping': True}
    return {
        'pool_size': db_config.pool_size,
        'max_overflow': db_config.max_overflow,
        'pool_timeout': db_config.pool_timeout,
        'pool_recycle': db_config.pool_recycle,
        'pool_pre_ping': db_config.pool_pre_ping,
    }


def create_engine_from_config(
    db_config: Union[DatabaseConfig, str],
    retries: int = 3,
    retry_delay: int = 5
) -> Engine:
    """
    Build an engine and check it can connect.

    Args:
        db_config: A DatabaseConfig, or a ready SQLAlchemy URL
        retries: Connection attempts before giving up
        retry_delay: Seconds between attempts

    Raises:
        ValueError: Unsupported database type
        OperationalError: Still unreachable after ``retries`` attempts
    """
    if isinstance(db_config, str):
        url, kwargs = db_config, _engine_kwargs(db_config)
    else:
        url = _build_connection_string(db_config)
        kwargs = _engine_kwargs(url, db_config)

    for attempt in range(1, retries + 1):
        engine = create_engine(url, **kwargs)
        try:
            with engine.connect():
                pass
        except OperationalError as e:
            engine.dispose()
            logger.error(f"Database connection attempt {attempt}/{retries} failed: {e}")
            if attempt == retries:
                raise
            time.sleep(retry_delay)
            continue

        logger.info(f"Connected to {engine.dialect.name} database")
        return engine

    raise ValueError("retries must be at least 1")


def _build_connection_string(db_config: DatabaseConfig) -> str:
    if db_config.db_type == DatabaseType.SQLITE:
        if db_config.database in (None, '', ':memory:'):
            return 'sqlite://'
        return f"sqlite:///{db_config.database}"

    if db_config.db_type == DatabaseType.POSTGRESQL:
        username = urllib.parse.quote_plus(db_config.username or '')
        password = urllib.parse.quote_plus(db_config.password or '')
        return (
            f"postgresql+psycopg2://{username}:{password}"
            f"@{db_config.host}:{db_config.port}/{db_config.database}"
            f"?sslmode={db_config.sslmode}"
        )

    supported = ', '.join(t.value for t in DatabaseType)
    raise ValueError(f"Unsupported database type: {db_config.db_type} (supported: {supported})")


def get_engine(db_name: str = 'backend', db_url: str = None) -> Engine:
    """
    Engine for a configured database.

    An explicit ``db_url``, then ``$DATABASE_URL``, win over the
    ``database.yaml`` section named ``db_name``.
    """
    url = db_url or os.environ.get('DATABASE_URL')
    if url:
        return create_engine_from_config(url)
    return create_engine_from_config(DatabaseConfig.from_config(db_name))
