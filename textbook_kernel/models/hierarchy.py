"""
Module: textbook_kernel.models.hierarchy
Responsibility: ORM persistence for the administrative hierarchy (districts,
    blocks / inspectorates, schools) and per-class enrollment.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Nodes are identified by code (district code, block code, UDISE); names
      are display data and never used for joins.
    - Every block belongs to exactly one district; every school to exactly
      one block and that block's district.
"""

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import TrackedBase
from textbook_kernel.db.types import OwnerCode, Quantity


class District(TrackedBase):
    __tablename__ = "districts"

    code: Mapped[OwnerCode] = mapped_column(unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class Block(TrackedBase):
    """Block / inspectorate of schools (IS)."""

    __tablename__ = "blocks"

    __table_args__ = (
        Index("idx_blocks_district", "district_code"),
    )

    code: Mapped[OwnerCode] = mapped_column(unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    district_code: Mapped[OwnerCode] = mapped_column(
        ForeignKey("districts.code"), nullable=False,
    )


class School(TrackedBase):
    """Government or private school, identified by UDISE code."""

    __tablename__ = "schools"

    __table_args__ = (
        Index("idx_schools_block", "block_code"),
        Index("idx_schools_district", "district_code"),
    )

    udise: Mapped[OwnerCode] = mapped_column(unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    block_code: Mapped[OwnerCode] = mapped_column(ForeignKey("blocks.code"), nullable=False)
    district_code: Mapped[OwnerCode] = mapped_column(ForeignKey("districts.code"), nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ClassEnrollment(TrackedBase):
    """Number of students in one class at one school."""

    __tablename__ = "class_enrollments"

    __table_args__ = (
        UniqueConstraint("school_udise", "class_name", name="uq_class_enrollment"),
    )

    school_udise: Mapped[OwnerCode] = mapped_column(ForeignKey("schools.udise"), nullable=False)
    class_name: Mapped[str] = mapped_column(String(20), nullable=False)
    students: Mapped[Quantity] = mapped_column(nullable=False, default=0)
