"""
Named counters for requisition reqIds and challan serial numbers.

Each counter is one locked row in ``sequence_counters``.  The next value is
read and bumped under SELECT ... FOR UPDATE (BEGIN IMMEDIATE on SQLite), so
two transactions can never be handed the same number, and a rolled-back
transaction gives its number back.  MAX(existing) + 1 is never used.

Counter names:
    ``requisition``                              reqId counter (REQ0001, ...)
    ``challan:<LEVEL>:<code>:<YYYYMMDD>``        one issuer's challans for one day
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:

    REQUISITION = "requisition"

    def __init__(self, session: Session):
        self._session = session

    def _counter(self, name: str, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _first_use(self, name: str) -> SequenceCounter | None:
        """Insert the counter at 1; None if a concurrent transaction inserted it first."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=1)
        self._session.add(counter)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Allocate the next value (1 on first use); the row stays locked until commit."""
        counter = self._counter(name, lock=True)
        if counter is None:
            created = self._first_use(name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
                return value
            counter = self._counter(name, lock=True)
            if counter is None:
                raise RuntimeError(f"Sequence counter {name!r} vanished after an insert race")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated", extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        """Last value handed out, or None for an unused name."""
        counter = self._counter(name, lock=False)
        return None if counter is None else counter.current_value
