"""
Module: textbook_kernel.models.stock
Responsibility: ORM persistence for stock balances and the stock movement
    journal.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One balance row per (level, owner_id, book_id).
    - quantity >= 0 (CHECK constraint backs the StockLedger check).
    - ``version`` is the mapper's version_id_col: a flush against a row that
      another transaction already changed raises StaleDataError.
    - StockMovement rows are append-only; after_quantity equals the balance
      immediately after the movement.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import Base, TrackedBase
from textbook_kernel.db.types import OwnerCode, Quantity


class StockEntry(TrackedBase):
    """Current balance of one book at one hierarchy node."""

    __tablename__ = "stock_entries"

    __table_args__ = (
        UniqueConstraint("level", "owner_id", "book_id", name="uq_stock_owner_book"),
        CheckConstraint("quantity >= 0", name="ck_stock_non_negative"),
        Index("idx_stock_book", "book_id"),
    )

    level: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[OwnerCode] = mapped_column(nullable=False)
    book_id: Mapped[UUID] = mapped_column(ForeignKey("books.id"), nullable=False)
    quantity: Mapped[Quantity] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class StockMovement(Base):
    """One change to a stock balance."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movement_owner_book", "level", "owner_id", "book_id"),
        Index("idx_movement_reference", "reference"),
    )

    level: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[OwnerCode] = mapped_column(nullable=False)
    book_id: Mapped[UUID] = mapped_column(ForeignKey("books.id"), nullable=False)
    # OPENING, RECEIPT, DISPATCH, CORRECTION, BACKLOG
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    delta: Mapped[Quantity] = mapped_column(nullable=False)
    after_quantity: Mapped[Quantity] = mapped_column(nullable=False)
    # Challan number or other caller reference
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
