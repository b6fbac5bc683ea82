"""
Transaction scopes for the billing services.

Every service write runs in ``SessionManager.transaction``: it either joins
the session a caller passes in or opens its own, and can be bounded in time.
"""

import logging
import time
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine

from billing.exceptions import TransactionTimeout


logger = logging.getLogger(__name__)


class TransactionDeadline:
    """
    Wall-clock deadline for a unit of work.

    ``check()`` raises TransactionTimeout once the deadline has passed, so
    callers can abort before commit.
    """

    def __init__(self, timeout_seconds: Optional[float]):
        self.timeout_seconds = timeout_seconds
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def expired(self) -> bool:
        return self.timeout_seconds is not None and self.elapsed > self.timeout_seconds

    def check(self, stage: str = 'commit'):
        if self.expired():
            raise TransactionTimeout(
                f"Transaction exceeded {self.timeout_seconds}s before {stage} "
                f"(elapsed {self.elapsed:.2f}s)"
            )


class SessionManager:
    """
    Opens sessions on one engine and owns their transaction boundaries.

    Sessions are created with ``expire_on_commit=False`` so entities returned
    by a service stay readable after its transaction has committed.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def session_scope(self, timeout_seconds: Optional[float] = None) -> Generator[Session, None, None]:
        """
        One transaction: commit when the block exits cleanly, roll back and
        re-raise otherwise.

        Args:
            timeout_seconds: Abort with TransactionTimeout instead of
                committing once the block has run longer than this. On
                PostgreSQL ``statement_timeout`` is set to the same bound.

        Example:
            with session_manager.session_scope() as session:
                booking = session.get(Booking, 1)
        """
        session = self.Session()
        deadline = TransactionDeadline(timeout_seconds)
        try:
            if timeout_seconds is not None and self.engine.dialect.name == 'postgresql':
                session.execute(
                    text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}")
                )
            yield session
            deadline.check()
            session.commit()

        except Exception as e:
            session.rollback()
            logger.warning(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

        finally:
            session.close()

    @contextmanager
    def transaction(
        self,
        session: Optional[Session] = None,
        timeout_seconds: Optional[float] = None
    ) -> Generator[Session, None, None]:
        """
        Join ``session`` when given, otherwise open a ``session_scope``.

        A joined block only flushes; commit and rollback stay with the
        caller. The timeout covers the work inside this block either way.
        """
        if session is None:
            with self.session_scope(timeout_seconds=timeout_seconds) as own_session:
                yield own_session
            return

        deadline = TransactionDeadline(timeout_seconds)
        yield session
        session.flush()
        deadline.check()
