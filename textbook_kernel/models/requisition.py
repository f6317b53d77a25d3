"""
Module: textbook_kernel.models.requisition
Responsibility: ORM persistence for requisition lines and requisition windows.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity > 0 and never changes after creation.
    - 0 <= received <= quantity (CHECK constraint).
    - (req_id, book_id) is unique: one line per book per request.
    - ``version`` is the mapper's version_id_col.
    - block_code / district_code are copied from the school at creation so
      scope queries never join on names.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import TrackedBase
from textbook_kernel.db.types import OwnerCode, Quantity


class Requisition(TrackedBase):
    """One (school, book, quantity) request line."""

    __tablename__ = "requisitions"

    __table_args__ = (
        UniqueConstraint("req_id", "book_id", name="uq_requisition_line"),
        CheckConstraint("quantity > 0", name="ck_requisition_quantity_positive"),
        CheckConstraint(
            "received >= 0 AND received <= quantity",
            name="ck_requisition_received_bounds",
        ),
        Index("idx_requisition_school", "school_udise"),
        Index("idx_requisition_block", "block_code", "status"),
        Index("idx_requisition_district", "district_code", "status"),
    )

    req_id: Mapped[str] = mapped_column(String(30), nullable=False)
    school_udise: Mapped[OwnerCode] = mapped_column(ForeignKey("schools.udise"), nullable=False)
    # SCHOOL or PRIVATE_SCHOOL
    school_level: Mapped[str] = mapped_column(String(20), nullable=False)
    block_code: Mapped[OwnerCode] = mapped_column(nullable=False)
    district_code: Mapped[OwnerCode] = mapped_column(nullable=False)
    book_id: Mapped[UUID] = mapped_column(ForeignKey("books.id"), nullable=False)
    quantity: Mapped[Quantity] = mapped_column(nullable=False)
    received: Mapped[Quantity] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    awaiting_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    remarks_by_block: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    remarks_by_district: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    remarks_by_state: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class RequisitionWindow(TrackedBase):
    """Period during which one level may submit or review requisitions."""

    __tablename__ = "requisition_windows"

    level: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False)
