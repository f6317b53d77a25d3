"""
CatalogSelector -- book listing, search and cascading filter values.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_, select

from textbook_kernel.domain.dtos import BookInfo
from textbook_kernel.exceptions import BookNotFoundError, ValidationError
from textbook_kernel.models.catalog import Book
from textbook_kernel.selectors.base import BaseSelector

_DISTINCT_COLUMNS = {
    "class_name": Book.class_name,
    "subject": Book.subject,
    "category": Book.category,
    "academic_year": Book.academic_year,
}


@dataclass(frozen=True)
class BookFilter:
    class_name: str | None = None
    subject: str | None = None
    category: str | None = None
    academic_year: str | None = None
    enabled_only: bool = False


class CatalogSelector(BaseSelector[Book]):

    def get(self, book_id: UUID) -> BookInfo:
        book = self.session.get(Book, book_id)
        if book is None:
            raise BookNotFoundError(str(book_id))
        return BookInfo.from_model(book)

    def list_books(self, book_filter: BookFilter | None = None) -> list[BookInfo]:
        f = book_filter or BookFilter()
        stmt = select(Book).order_by(Book.class_name, Book.subject, Book.title)
        if f.class_name is not None:
            stmt = stmt.where(Book.class_name == f.class_name)
        if f.subject is not None:
            stmt = stmt.where(Book.subject == f.subject)
        if f.category is not None:
            stmt = stmt.where(Book.category == f.category)
        if f.academic_year is not None:
            stmt = stmt.where(Book.academic_year == f.academic_year)
        if f.enabled_only:
            stmt = stmt.where(Book.is_enabled == True)  # noqa: E712
        return [BookInfo.from_model(b) for b in self.session.execute(stmt).scalars()]

    def search(self, query: str) -> list[BookInfo]:
        """Case-insensitive substring match on title, subject and category."""
        text = (query or "").strip()
        if not text:
            return []
        pattern = f"%{text.lower()}%"
        stmt = (
            select(Book)
            .where(or_(
                Book.title.ilike(pattern),
                Book.subject.ilike(pattern),
                Book.category.ilike(pattern),
            ))
            .order_by(Book.class_name, Book.title)
        )
        return [BookInfo.from_model(b) for b in self.session.execute(stmt).scalars()]

    def distinct_values(self, column: str) -> list[str]:
        try:
            col = _DISTINCT_COLUMNS[column]
        except KeyError:
            raise ValidationError(
                f"Unknown catalog column {column!r}; expected one of {sorted(_DISTINCT_COLUMNS)}"
            ) from None
        return list(self.session.execute(select(col).distinct().order_by(col)).scalars())

    def subjects_for_class(self, class_name: str) -> list[str]:
        stmt = (
            select(Book.subject).distinct()
            .where(Book.class_name == class_name)
            .order_by(Book.subject)
        )
        return list(self.session.execute(stmt).scalars())

    def categories_for(self, class_name: str, subject: str) -> list[str]:
        stmt = (
            select(Book.category).distinct()
            .where(Book.class_name == class_name, Book.subject == subject)
            .order_by(Book.category)
        )
        return list(self.session.execute(stmt).scalars())
