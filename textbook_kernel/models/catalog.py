"""
Module: textbook_kernel.models.catalog
Responsibility: ORM persistence for the textbook catalog.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A book is never deleted or re-keyed while a requisition, stock entry
      or dispatch line references it (foreign keys + CatalogService check).
    - (class_name, subject, category, title, academic_year) is unique.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import TrackedBase


class Book(TrackedBase):
    """
    One catalog entry.

    ``is_enabled`` hides a book from new requisitions without touching any
    existing requisition, stock or challan that references it.
    """

    __tablename__ = "books"

    __table_args__ = (
        UniqueConstraint(
            "class_name", "subject", "category", "title", "academic_year",
            name="uq_books_identity",
        ),
        Index("idx_books_class_subject", "class_name", "subject"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    class_name: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Book {self.class_name}/{self.subject}: {self.title}>"
