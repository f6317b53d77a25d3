"""
StockLedger -- per-(level, owner, book) stock balances.

Responsibility:
    The single source of truth for how many copies of a book exist at each
    hierarchy node.  Every mutation locks the balance row, validates the
    result, updates the balance and appends a StockMovement, all inside
    the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Called directly for
    corrections and backlog entries, and by DispatchService for dispatch
    decrements and receipt increments.

Invariants enforced:
    - No balance is ever negative.  The check and the write happen on the
      same locked row in the same transaction; the CHECK constraint backs
      it up.
    - Corrections (``upsert``) only raise a balance.  Decrements happen
      only through dispatch.
    - Every change to a balance has exactly one StockMovement whose
      after_quantity equals the new balance.
    - Multi-row operations lock rows in (level, owner, book) order so
      concurrent dispatches cannot deadlock on each other.

Failure modes:
    - InsufficientStockError: delta would take the balance below zero.
    - StockCorrectionError: correction would lower the balance.
    - InvalidQuantityError: non-integer or negative quantity.
    - BookNotFoundError: unknown book.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from textbook_kernel.db.types import (
    is_non_negative_quantity,
    is_positive_quantity,
    is_whole_quantity,
)
from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.hierarchy import NodeRef
from textbook_kernel.domain.stock import StockReason, apply_delta
from textbook_kernel.exceptions import (
    BookNotFoundError,
    InvalidQuantityError,
    StockCorrectionError,
)
from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.audit_event import AuditAction
from textbook_kernel.models.catalog import Book
from textbook_kernel.models.stock import StockEntry, StockMovement
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

StockKey = tuple[NodeRef, UUID]


def _sort_key(key: StockKey) -> tuple[str, str, str]:
    owner, book_id = key
    return (owner.level.value, owner.code, str(book_id))


class StockLedger(BaseService[StockEntry]):
    """
    Usage:
        ledger = StockLedger(session, clock)
        ledger.record_backlog(state_node, book_id, 500, actor_id="u1")
        ledger.adjust(state_node, book_id, -60, reason=StockReason.DISPATCH, reference=challan_no)
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._auditor = AuditorService(session, self.clock)

    # Reads

    def get(self, owner: NodeRef, book_id: UUID) -> int:
        """Current balance, 0 if no row exists.  Not locked."""
        quantity = self.session.execute(
            select(StockEntry.quantity).where(
                StockEntry.level == owner.level.value,
                StockEntry.owner_id == owner.code,
                StockEntry.book_id == book_id,
            )
        ).scalar_one_or_none()
        return quantity or 0

    # Locking

    def _select_locked(self, owner: NodeRef, book_id: UUID) -> StockEntry | None:
        return self.session.execute(
            select(StockEntry)
            .where(
                StockEntry.level == owner.level.value,
                StockEntry.owner_id == owner.code,
                StockEntry.book_id == book_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_entry(self, owner: NodeRef, book_id: UUID, create: bool = False) -> StockEntry | None:
        """
        Lock a balance row, optionally creating it at zero.

        Creation races are resolved the same way as SequenceService: insert
        under a savepoint and re-read on IntegrityError.
        """
        entry = self._select_locked(owner, book_id)
        if entry is not None or not create:
            return entry

        if self.session.get(Book, book_id) is None:
            raise BookNotFoundError(str(book_id))

        savepoint = self.session.begin_nested()
        try:
            entry = StockEntry(
                level=owner.level.value,
                owner_id=owner.code,
                book_id=book_id,
                quantity=0,
            )
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
            return entry
        except IntegrityError:
            logger.debug(
                "stock_entry_race_retry",
                extra={"owner": str(owner), "book_id": str(book_id)},
            )
            savepoint.rollback()
            entry = self._select_locked(owner, book_id)
            if entry is None:
                raise
            return entry

    def lock_entries(self, keys: Iterable[StockKey], create: bool = False) -> dict[StockKey, StockEntry | None]:
        """Lock several rows in a fixed global order."""
        return {
            key: self.lock_entry(key[0], key[1], create=create)
            for key in sorted(set(keys), key=_sort_key)
        }

    # Mutations

    def _move(
        self,
        entry: StockEntry,
        owner: NodeRef,
        delta: int,
        reason: StockReason,
        reference: str | None,
        actor_id: str | None,
    ) -> int:
        new_quantity = apply_delta(owner, entry.book_id, entry.quantity, delta)
        if delta == 0:
            return new_quantity
        entry.quantity = new_quantity
        self.session.add(StockMovement(
            level=owner.level.value,
            owner_id=owner.code,
            book_id=entry.book_id,
            reason=reason.value,
            delta=delta,
            after_quantity=new_quantity,
            reference=reference,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
        ))
        self.session.flush()
        logger.info(
            "stock_adjusted",
            extra={
                "owner": str(owner),
                "book_id": str(entry.book_id),
                "delta": delta,
                "after_quantity": new_quantity,
                "reason": reason.value,
                "reference": reference,
            },
        )
        return new_quantity

    def apply_locked(
        self,
        entry: StockEntry,
        delta: int,
        reason: StockReason,
        reference: str | None = None,
        actor_id: str | None = None,
    ) -> int:
        """Apply ``delta`` to a row the caller already locked."""
        owner = NodeRef.of(entry.level, entry.owner_id)
        return self._move(entry, owner, delta, reason, reference, actor_id)

    def adjust(
        self,
        owner: NodeRef,
        book_id: UUID,
        delta: int,
        reason: StockReason | None = None,
        reference: str | None = None,
        actor_id: str | None = None,
    ) -> int:
        """
        Atomically apply ``delta`` and return the new balance.

        ``reason`` defaults to RECEIPT for increments and DISPATCH for
        decrements.

        Raises:
            InsufficientStockError: the result would be negative.
        """
        if not is_whole_quantity(delta):
            raise InvalidQuantityError("delta", delta, minimum=0)
        if reason is None:
            reason = StockReason.RECEIPT if delta > 0 else StockReason.DISPATCH
        entry = self.lock_entry(owner, book_id, create=delta > 0)
        if entry is None:
            # Nothing on hand: reuse the negative check with a zero balance
            apply_delta(owner, book_id, 0, delta)
            return 0
        return self._move(entry, owner, delta, reason, reference, actor_id)

    def upsert(self, owner: NodeRef, book_id: UUID, quantity: int, actor_id: str) -> int:
        """
        Correction entry: set the balance to ``quantity``.

        Idempotent: repeating the same correction changes nothing.

        Raises:
            StockCorrectionError: ``quantity`` is below the current balance.
        """
        if not is_non_negative_quantity(quantity):
            raise InvalidQuantityError("quantity", quantity, minimum=0)
        existing = self._select_locked(owner, book_id)
        entry = existing or self.lock_entry(owner, book_id, create=True)
        current = entry.quantity
        if quantity < current:
            raise StockCorrectionError(
                owner.level.value, owner.code, str(book_id), current, quantity,
            )
        if quantity == current:
            return current

        reason = StockReason.CORRECTION if existing is not None else StockReason.OPENING
        result = self._move(entry, owner, quantity - current, reason, None, actor_id)
        self._auditor.record(
            "StockEntry", f"{owner}/{book_id}", AuditAction.STOCK_CORRECTED, actor_id,
            {"previous": current, "quantity": result, "reason": reason},
        )
        return result

    def record_backlog(
        self,
        owner: NodeRef,
        book_id: UUID,
        quantity: int,
        actor_id: str,
        reference: str | None = None,
    ) -> int:
        """Add manually counted backlog/opening stock to the existing balance."""
        if not is_positive_quantity(quantity):
            raise InvalidQuantityError("quantity", quantity)
        entry = self.lock_entry(owner, book_id, create=True)
        previous = entry.quantity
        result = self._move(entry, owner, quantity, StockReason.BACKLOG, reference, actor_id)
        self._auditor.record(
            "StockEntry", f"{owner}/{book_id}", AuditAction.BACKLOG_RECORDED, actor_id,
            {"previous": previous, "added": quantity, "quantity": result, "reference": reference},
        )
        return result
