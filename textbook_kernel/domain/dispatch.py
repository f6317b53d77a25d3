"""
Dispatch documents (``textbook_kernel.domain.dispatch``).

Responsibility
--------------
Pure rules for challans: the document status lifecycle, packaging
arithmetic, line validation, challan number formatting, the idempotency key
for issuance, and the ``DispatchPlan`` used while a dispatcher edits
quantities before issuing.

Architecture position
---------------------
**Kernel domain layer** -- pure functions and frozen value objects.  ZERO I/O.

Document lifecycle
------------------
::

    GENERATED --> IN_TRANSIT --> DELIVERED
        |             |
        +-------------+--> CANCELLED

Cancellation returns the copies to the source's stock but never reduces
``received``.  Only DELIVERED documents may be used for the destination's
receipt entry.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from uuid import UUID

from textbook_kernel.db.types import is_non_negative_quantity, is_positive_quantity
from textbook_kernel.domain.hierarchy import NodeRef
from textbook_kernel.exceptions import (
    ExceedsPendingQuantityError,
    InvalidQuantityError,
    InvalidTransitionError,
    MissingSelectionError,
    PackagingMismatchError,
    ValidationError,
)
from textbook_kernel.utils.hashing import hash_payload


class DocumentStatus(str, Enum):
    GENERATED = "GENERATED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


DOCUMENT_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.GENERATED: frozenset({
        DocumentStatus.IN_TRANSIT,
        DocumentStatus.CANCELLED,
    }),
    DocumentStatus.IN_TRANSIT: frozenset({
        DocumentStatus.DELIVERED,
        DocumentStatus.CANCELLED,
    }),
    DocumentStatus.DELIVERED: frozenset(),
    DocumentStatus.CANCELLED: frozenset(),
}


def check_document_transition(
    challan_no: str,
    current: DocumentStatus,
    target: DocumentStatus,
) -> bool:
    """
    Validate a document status change.

    Returns False when ``current == target`` (a repeated, no-op request),
    True when the change is permitted.

    Raises:
        InvalidTransitionError: The change is not in DOCUMENT_TRANSITIONS.
    """
    if current is target:
        return False
    if target not in DOCUMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(
            "DispatchDocument", challan_no, current.value, target.value,
        )
    return True


@dataclass(frozen=True)
class PackagingBreakdown:
    """Boxes, packets and loose copies making up one dispatched line."""

    boxes: int = 0
    packets: int = 0
    loose: int = 0

    def __post_init__(self) -> None:
        for name in ("boxes", "packets", "loose"):
            value = getattr(self, name)
            if not is_non_negative_quantity(value):
                raise InvalidQuantityError(name, value, minimum=0)

    def total(self, books_per_box: int, books_per_packet: int) -> int:
        return self.boxes * books_per_box + self.packets * books_per_packet + self.loose

    def check(self, book_id: UUID | str, quantity: int, books_per_box: int, books_per_packet: int) -> None:
        packaged = self.total(books_per_box, books_per_packet)
        if packaged != quantity:
            raise PackagingMismatchError(str(book_id), packaged, quantity)


@dataclass(frozen=True)
class DispatchLineRequest:
    """One requested line: ship ``quantity`` copies against a requisition."""

    requisition_id: UUID
    quantity: int
    packaging: PackagingBreakdown | None = None


def validate_line_requests(lines: list[DispatchLineRequest] | tuple[DispatchLineRequest, ...]) -> None:
    """
    Shape checks done before any row is read.

    Raises:
        MissingSelectionError: No lines.
        InvalidQuantityError: A quantity is not a positive whole number.
        ValidationError: The same requisition appears on two lines.
    """
    if not lines:
        raise MissingSelectionError("lines")
    seen: set[UUID] = set()
    for line in lines:
        if line.requisition_id is None:
            raise MissingSelectionError("requisition_id")
        if not is_positive_quantity(line.quantity):
            raise InvalidQuantityError("quantity", line.quantity)
        if line.requisition_id in seen:
            raise ValidationError(
                f"Requisition {line.requisition_id} appears on more than one line"
            )
        seen.add(line.requisition_id)


def dispatch_idempotency_key(
    source: NodeRef,
    destination: NodeRef,
    lines: list[DispatchLineRequest] | tuple[DispatchLineRequest, ...],
    issued_on: date,
    client_token: str | None = None,
) -> str:
    """
    Deterministic key for (requisitions, destination, line set, issue day).

    Line order does not matter.  The same partial quantity sent again on a
    later day is a new document; a caller that wants two identical
    documents on the same day passes distinct ``client_token`` values.
    """
    payload = {
        "source": str(source),
        "destination": str(destination),
        "lines": sorted(
            [str(line.requisition_id), line.quantity] for line in lines
        ),
        "issued_on": issued_on.isoformat(),
        "client_token": client_token,
    }
    return hash_payload(payload)


def released_idempotency_key(key: str) -> str:
    """Key a cancelled document keeps, so its line set can be issued again."""
    return hash_payload({"released": key})


def challan_sequence_name(source: NodeRef, issued_on: date) -> str:
    """Counter name for one issuer on one day."""
    return f"challan:{source.level.value}:{source.code}:{issued_on:%Y%m%d}"


def format_challan_no(
    source: NodeRef,
    destination: NodeRef,
    issued_on: date,
    sequence: int,
    label: str = "TEXTBOOK",
    width: int = 5,
) -> str:
    """
    Human-traceable challan number.

    ``STATE-16/TEXTBOOK/2024/0601/DISTRICT-1601/00001``: issuer, document
    label, year, month-day, destination and the issuer's daily sequence.
    Uniqueness comes from the (issuer, day) sequence.
    """
    return (
        f"{source.level.value}-{source.code}/{label}/"
        f"{issued_on:%Y}/{issued_on:%m%d}/"
        f"{destination.level.value}-{destination.code}/{sequence:0{width}d}"
    )


@dataclass(frozen=True)
class PlanLine:
    """
    One requisition inside a dispatch plan.

    ``original_pending`` is ``quantity - received`` at planning time and is
    frozen for the life of the plan.  ``forwardable`` counts copies the
    source already holds for the requisition; they are sent first and do
    not reduce the pending figure.
    """

    requisition_id: UUID
    req_id: str
    school_code: str
    book_id: UUID
    requested: int
    received: int
    original_pending: int
    available_stock: int
    dispatch_quantity: int
    forwardable: int = 0

    @property
    def max_quantity(self) -> int:
        return self.original_pending + self.forwardable

    @property
    def remaining_after_dispatch(self) -> int:
        return self.original_pending - max(0, self.dispatch_quantity - self.forwardable)


@dataclass(frozen=True)
class DispatchPlan:
    """
    Server-built snapshot a dispatcher edits before issuing.

    Edits re-derive the pending figure but a line can never exceed its
    frozen original pending plus the copies the source already holds for
    it.  The issuance transaction re-reads everything under lock, so a
    stale plan can only fail, never over-dispatch.
    """

    source: NodeRef
    lines: tuple[PlanLine, ...]

    def line_for(self, requisition_id: UUID) -> PlanLine:
        for line in self.lines:
            if line.requisition_id == requisition_id:
                return line
        raise MissingSelectionError(f"requisition {requisition_id}")

    def with_quantity(self, requisition_id: UUID, quantity: int) -> DispatchPlan:
        """Return a copy with one line's dispatch quantity changed."""
        if not is_non_negative_quantity(quantity):
            raise InvalidQuantityError("quantity", quantity, minimum=0)
        line = self.line_for(requisition_id)
        if quantity > line.max_quantity:
            raise ExceedsPendingQuantityError(
                str(requisition_id), line.max_quantity, quantity,
            )
        updated = tuple(
            replace(existing, dispatch_quantity=quantity)
            if existing.requisition_id == requisition_id
            else existing
            for existing in self.lines
        )
        return replace(self, lines=updated)

    def total_for_book(self, book_id: UUID) -> int:
        return sum(line.dispatch_quantity for line in self.lines if line.book_id == book_id)

    def shortfalls(self) -> dict[UUID, int]:
        """Books whose planned total exceeds the stock seen at planning time."""
        result: dict[UUID, int] = {}
        available = {line.book_id: line.available_stock for line in self.lines}
        for book_id, stock in available.items():
            planned = self.total_for_book(book_id)
            if planned > stock:
                result[book_id] = planned - stock
        return result

    def to_line_requests(self) -> tuple[DispatchLineRequest, ...]:
        """Lines with a positive quantity, ready for issuance."""
        return tuple(
            DispatchLineRequest(line.requisition_id, line.dispatch_quantity)
            for line in self.lines
            if line.dispatch_quantity > 0
        )
