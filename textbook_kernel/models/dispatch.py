"""
Module: textbook_kernel.models.dispatch
Responsibility: ORM persistence for dispatch documents (challans) and their
    line items.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - challan_no is unique.
    - idempotency_key is unique: the same (requisitions, destination, line
      set) issued twice on one day yields one document.  A cancelled
      document swaps its key for a released one.
    - Line quantity > 0; packaging columns are either all NULL or all set.
    - 0 <= counted_quantity <= quantity.  The counted part is what the line
      added to the requisition's ``received``; the rest forwards copies the
      source already held for that requisition.
    - A document and its lines are written in the same transaction as the
      source stock decrement.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from textbook_kernel.db.base import Base, TrackedBase
from textbook_kernel.db.types import OwnerCode, Quantity


class DispatchDocument(TrackedBase):
    """Physical transfer of books from one node to a lower-tier node."""

    __tablename__ = "dispatch_documents"

    __table_args__ = (
        Index("idx_dispatch_source", "source_level", "source_owner"),
        Index("idx_dispatch_destination", "destination_level", "destination_owner"),
        Index("idx_dispatch_status", "status"),
    )

    challan_no: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    source_level: Mapped[str] = mapped_column(String(20), nullable=False)
    source_owner: Mapped[OwnerCode] = mapped_column(nullable=False)
    destination_level: Mapped[str] = mapped_column(String(20), nullable=False)
    destination_owner: Mapped[OwnerCode] = mapped_column(nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    vehicle_no: Mapped[str | None] = mapped_column(String(30), nullable=True)
    agency: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    issued_by: Mapped[str] = mapped_column(String(100), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)
    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    receipt_recorded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    receipt_recorded_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list[DispatchLine]] = relationship(
        back_populates="document",
        order_by="DispatchLine.line_no",
        cascade="all, delete-orphan",
    )


class DispatchLine(Base):
    """One book line on a challan, fulfilling one requisition."""

    __tablename__ = "dispatch_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_dispatch_line_quantity_positive"),
        CheckConstraint(
            "counted_quantity >= 0 AND counted_quantity <= quantity",
            name="ck_dispatch_line_counted_within_quantity",
        ),
        CheckConstraint(
            "(boxes IS NULL AND packets IS NULL AND loose IS NULL) OR "
            "(boxes IS NOT NULL AND packets IS NOT NULL AND loose IS NOT NULL)",
            name="ck_dispatch_line_packaging_complete",
        ),
        Index("idx_dispatch_line_requisition", "requisition_id"),
        Index("idx_dispatch_line_document", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(ForeignKey("dispatch_documents.id"), nullable=False)
    line_no: Mapped[int] = mapped_column(nullable=False)
    requisition_id: Mapped[UUID] = mapped_column(ForeignKey("requisitions.id"), nullable=False)
    book_id: Mapped[UUID] = mapped_column(ForeignKey("books.id"), nullable=False)
    quantity: Mapped[Quantity] = mapped_column(nullable=False)
    counted_quantity: Mapped[Quantity] = mapped_column(nullable=False)
    boxes: Mapped[int | None] = mapped_column(nullable=True)
    packets: Mapped[int | None] = mapped_column(nullable=True)
    loose: Mapped[int | None] = mapped_column(nullable=True)

    document: Mapped[DispatchDocument] = relationship(back_populates="lines")

    @property
    def forwarded_quantity(self) -> int:
        return self.quantity - self.counted_quantity
