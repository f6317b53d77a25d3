"""
UnitOfWork -- one transaction per operation, retried on write conflicts.

Responsibility:
    Runs a callable against a fresh session, commits on success and rolls
    back on any exception.  Conflicts between concurrent writers (stale
    version counter, PostgreSQL serialization failure or deadlock, SQLite
    "database is locked") are retried with linear backoff.  Domain errors
    are never retried.

Architecture position:
    Kernel > Services -- the transaction owner for the TextbookKernel
    facade.  Services themselves only flush.

Invariants enforced:
    - A failed attempt leaves nothing behind: rollback happens before the
      next attempt starts, and the callable re-reads all state.
    - Exhausted retries raise OptimisticLockError.

Failure modes:
    - OptimisticLockError after ``max_attempts`` conflicting attempts.
    - Any TextbookKernelError raised by the callable, unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from textbook_kernel.exceptions import ConcurrencyError, OptimisticLockError
from textbook_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

# PostgreSQL serialization_failure, deadlock_detected
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


def is_write_conflict(exc: BaseException) -> bool:
    """True for errors caused by a concurrent writer rather than bad input."""
    if isinstance(exc, (StaleDataError, ConcurrencyError)):
        return True
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _RETRYABLE_PGCODES:
            return True
        message = str(exc.orig).lower()
        return "database is locked" in message or "deadlock" in message
    return False


class UnitOfWork:
    """
    Transaction runner.

    Usage:
        uow = UnitOfWork(get_session_factory())
        doc = uow.run(lambda s: DispatchService(s, ...).issue(...), operation="issue_dispatch")
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_attempts: int = 5,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def run(self, work: Callable[[Session], T], *, operation: str = "operation") -> T:
        """
        Execute ``work(session)`` in its own transaction.

        Returns:
            Whatever ``work`` returns.  It must not return ORM instances
            that the caller will use after the session closes; services
            return DTOs for this reason.
        """
        last_conflict: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            session = self._session_factory()
            try:
                result = work(session)
                session.commit()
                if attempt > 1:
                    logger.info(
                        "unit_of_work_succeeded_after_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                return result
            except Exception as exc:
                session.rollback()
                if not is_write_conflict(exc):
                    raise
                last_conflict = exc
                logger.warning(
                    "unit_of_work_conflict",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                        "conflict_type": type(exc).__name__,
                    },
                )
            finally:
                session.close()
            self._sleep(self._backoff_seconds * attempt)

        logger.error(
            "unit_of_work_retries_exhausted",
            extra={"operation": operation, "max_attempts": self._max_attempts},
        )
        if isinstance(last_conflict, OptimisticLockError):
            raise last_conflict
        raise OptimisticLockError(operation, "retries exhausted") from last_conflict
