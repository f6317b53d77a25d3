"""
CatalogService -- write side of the textbook catalog.

Responsibility:
    Registers, edits, enables/disables and deletes books.

Invariants enforced:
    - A book referenced by any requisition, stock balance, stock movement
      or dispatch line is never deleted, and its identifying fields
      (class, subject, category, academic year) and rate never change.
      Only the title and the enabled flag remain editable.
    - Disabled books stay in the catalog; they just cannot be requested.

Failure modes:
    - BookNotFoundError, BookReferencedError, ValidationError.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.dtos import BookInfo
from textbook_kernel.exceptions import (
    BookNotFoundError,
    BookReferencedError,
    MissingSelectionError,
    ValidationError,
)
from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.audit_event import AuditAction
from textbook_kernel.models.catalog import Book
from textbook_kernel.models.dispatch import DispatchLine
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.models.stock import StockEntry, StockMovement
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.base import BaseService

logger = get_logger("services.catalog")

_EDITABLE_FIELDS = frozenset({"title", "class_name", "subject", "category", "rate", "academic_year"})
# Fields frozen once anything references the book
_KEYED_FIELDS = frozenset({"class_name", "subject", "category", "rate", "academic_year"})


def _clean_rate(rate: object) -> Decimal:
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"rate must be a number, got {rate!r}") from None
    if value < 0:
        raise ValidationError(f"rate must not be negative, got {rate!r}")
    return value


class CatalogService(BaseService[Book]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._auditor = AuditorService(session, self.clock)

    def _get(self, book_id: UUID) -> Book:
        book = self.session.get(Book, book_id)
        if book is None:
            raise BookNotFoundError(str(book_id))
        return book

    def is_referenced(self, book_id: UUID) -> bool:
        for model in (Requisition, StockEntry, StockMovement, DispatchLine):
            if self.session.execute(
                select(exists().where(model.book_id == book_id))
            ).scalar():
                return True
        return False

    def register_book(
        self,
        title: str,
        class_name: str,
        subject: str,
        category: str,
        rate: Decimal | int | str,
        academic_year: str,
        actor_id: str,
    ) -> BookInfo:
        fields = {
            "title": title,
            "class_name": class_name,
            "subject": subject,
            "category": category,
            "academic_year": academic_year,
        }
        for name, value in fields.items():
            if value is None or not str(value).strip():
                raise MissingSelectionError(name)
        fields = {k: str(v).strip() for k, v in fields.items()}

        duplicate = self.session.execute(
            select(Book).where(
                Book.class_name == fields["class_name"],
                Book.subject == fields["subject"],
                Book.category == fields["category"],
                Book.title == fields["title"],
                Book.academic_year == fields["academic_year"],
            )
        ).scalar_one_or_none()
        if duplicate is not None:
            raise ValidationError(
                f"Book already registered: {fields['title']} "
                f"({fields['class_name']}, {fields['academic_year']})"
            )

        book = Book(rate=_clean_rate(rate), is_enabled=True, **fields)
        self.session.add(book)
        self.session.flush()
        self._auditor.record("Book", book.id, AuditAction.BOOK_REGISTERED, actor_id, fields)
        logger.info("book_registered", extra={"book_id": str(book.id), "title": book.title})
        return BookInfo.from_model(book)

    def update_book(self, book_id: UUID, actor_id: str, **changes: object) -> BookInfo:
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown book fields: {sorted(unknown)}")
        book = self._get(book_id)

        if "rate" in changes:
            changes["rate"] = _clean_rate(changes["rate"])
        effective = {k: v for k, v in changes.items() if getattr(book, k) != v}
        if not effective:
            return BookInfo.from_model(book)
        if _KEYED_FIELDS & set(effective) and self.is_referenced(book_id):
            raise BookReferencedError(str(book_id))

        for key, value in effective.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingSelectionError(key)
            setattr(book, key, value)
        self.session.flush()
        self._auditor.record("Book", book.id, AuditAction.BOOK_UPDATED, actor_id, effective)
        logger.info(
            "book_updated",
            extra={"book_id": str(book.id), "fields": sorted(effective)},
        )
        return BookInfo.from_model(book)

    def toggle_status(self, book_id: UUID, actor_id: str) -> BookInfo:
        book = self._get(book_id)
        book.is_enabled = not book.is_enabled
        self.session.flush()
        self._auditor.record(
            "Book", book.id, AuditAction.BOOK_STATUS_TOGGLED, actor_id,
            {"is_enabled": book.is_enabled},
        )
        logger.info(
            "book_status_toggled",
            extra={"book_id": str(book.id), "is_enabled": book.is_enabled},
        )
        return BookInfo.from_model(book)

    def delete_book(self, book_id: UUID, actor_id: str) -> None:
        book = self._get(book_id)
        if self.is_referenced(book_id):
            raise BookReferencedError(str(book_id))
        self._auditor.record(
            "Book", book.id, AuditAction.BOOK_DELETED, actor_id, {"title": book.title},
        )
        self.session.delete(book)
        self.session.flush()
        logger.info("book_deleted", extra={"book_id": str(book_id)})
