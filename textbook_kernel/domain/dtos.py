"""
DTOs -- immutable read models handed across the service boundary.

Responsibility:
    Frozen dataclasses returned by services and selectors.  Callers never
    receive ORM instances, so nothing they hold can lazily load or be
    mutated after the unit of work closes.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` class methods are the
    ORM-to-DTO boundary converters and are only invoked from services and
    selectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from textbook_kernel.domain.dispatch import DocumentStatus, PackagingBreakdown
from textbook_kernel.domain.hierarchy import Level, NodeRef
from textbook_kernel.domain.requisition import (
    INACTIVE_STATUSES,
    RequisitionStatus,
    is_urgent,
    view_label,
)

if TYPE_CHECKING:
    from textbook_kernel.models.audit_event import AuditEvent
    from textbook_kernel.models.catalog import Book
    from textbook_kernel.models.dispatch import DispatchDocument, DispatchLine
    from textbook_kernel.models.hierarchy import School
    from textbook_kernel.models.requisition import Requisition
    from textbook_kernel.models.stock import StockEntry, StockMovement


@dataclass(frozen=True)
class BookInfo:
    id: UUID
    title: str
    class_name: str
    subject: str
    category: str
    rate: Decimal
    academic_year: str
    is_enabled: bool

    @classmethod
    def from_model(cls, model: Book) -> BookInfo:
        return cls(
            id=model.id,
            title=model.title,
            class_name=model.class_name,
            subject=model.subject,
            category=model.category,
            rate=Decimal(model.rate),
            academic_year=model.academic_year,
            is_enabled=model.is_enabled,
        )


@dataclass(frozen=True)
class SchoolInfo:
    udise: str
    name: str
    block_code: str
    district_code: str
    is_private: bool

    @property
    def level(self) -> Level:
        return Level.PRIVATE_SCHOOL if self.is_private else Level.SCHOOL

    @property
    def node(self) -> NodeRef:
        return NodeRef(self.level, self.udise)

    @classmethod
    def from_model(cls, model: School) -> SchoolInfo:
        return cls(
            udise=model.udise,
            name=model.name,
            block_code=model.block_code,
            district_code=model.district_code,
            is_private=model.is_private,
        )


@dataclass(frozen=True)
class StockBalance:
    level: Level
    owner_id: str
    book_id: UUID
    quantity: int

    @property
    def owner(self) -> NodeRef:
        return NodeRef(self.level, self.owner_id)

    @classmethod
    def from_model(cls, model: StockEntry) -> StockBalance:
        return cls(
            level=Level(model.level),
            owner_id=model.owner_id,
            book_id=model.book_id,
            quantity=model.quantity,
        )


@dataclass(frozen=True)
class StockMovementInfo:
    level: Level
    owner_id: str
    book_id: UUID
    reason: str
    delta: int
    after_quantity: int
    reference: str | None
    occurred_at: datetime

    @classmethod
    def from_model(cls, model: StockMovement) -> StockMovementInfo:
        return cls(
            level=Level(model.level),
            owner_id=model.owner_id,
            book_id=model.book_id,
            reason=model.reason,
            delta=model.delta,
            after_quantity=model.after_quantity,
            reference=model.reference,
            occurred_at=model.occurred_at,
        )


@dataclass(frozen=True)
class RequisitionInfo:
    """
    One requisition line as seen by callers.

    ``status`` is always canonical; level-facing views call
    ``label_for(viewer_level)``.
    """

    id: UUID
    req_id: str
    school_udise: str
    school_level: Level
    block_code: str
    district_code: str
    book_id: UUID
    quantity: int
    received: int
    status: RequisitionStatus
    awaiting_level: Level | None
    remarks_by_block: str | None
    remarks_by_district: str | None
    remarks_by_state: str | None
    created_by: str
    submitted_at: datetime

    @property
    def pending_quantity(self) -> int:
        return max(0, self.quantity - self.received)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def label(self) -> str:
        return view_label(self.status, self.awaiting_level)

    def is_urgent_for(self, viewer_level: Level) -> bool:
        return is_urgent(self.status, self.awaiting_level, viewer_level)

    @classmethod
    def from_model(cls, model: Requisition) -> RequisitionInfo:
        return cls(
            id=model.id,
            req_id=model.req_id,
            school_udise=model.school_udise,
            school_level=Level(model.school_level),
            block_code=model.block_code,
            district_code=model.district_code,
            book_id=model.book_id,
            quantity=model.quantity,
            received=model.received,
            status=RequisitionStatus(model.status),
            awaiting_level=Level(model.awaiting_level) if model.awaiting_level else None,
            remarks_by_block=model.remarks_by_block,
            remarks_by_district=model.remarks_by_district,
            remarks_by_state=model.remarks_by_state,
            created_by=model.created_by,
            submitted_at=model.submitted_at,
        )


@dataclass(frozen=True)
class DispatchLineInfo:
    requisition_id: UUID
    book_id: UUID
    quantity: int
    counted_quantity: int
    packaging: PackagingBreakdown | None

    @property
    def forwarded_quantity(self) -> int:
        return self.quantity - self.counted_quantity

    @classmethod
    def from_model(cls, model: DispatchLine) -> DispatchLineInfo:
        packaging = None
        if model.boxes is not None:
            packaging = PackagingBreakdown(model.boxes, model.packets, model.loose)
        return cls(
            requisition_id=model.requisition_id,
            book_id=model.book_id,
            quantity=model.quantity,
            counted_quantity=model.counted_quantity,
            packaging=packaging,
        )


@dataclass(frozen=True)
class DispatchDocumentInfo:
    id: UUID
    challan_no: str
    source: NodeRef
    destination: NodeRef
    academic_year: str
    vehicle_no: str | None
    agency: str | None
    status: DocumentStatus
    issued_by: str
    issued_at: datetime
    receipt_recorded_at: datetime | None
    lines: tuple[DispatchLineInfo, ...]

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def requisition_ids(self) -> tuple[UUID, ...]:
        return tuple(line.requisition_id for line in self.lines)

    @classmethod
    def from_model(cls, model: DispatchDocument) -> DispatchDocumentInfo:
        return cls(
            id=model.id,
            challan_no=model.challan_no,
            source=NodeRef(Level(model.source_level), model.source_owner),
            destination=NodeRef(Level(model.destination_level), model.destination_owner),
            academic_year=model.academic_year,
            vehicle_no=model.vehicle_no,
            agency=model.agency,
            status=DocumentStatus(model.status),
            issued_by=model.issued_by,
            issued_at=model.issued_at,
            receipt_recorded_at=model.receipt_recorded_at,
            lines=tuple(DispatchLineInfo.from_model(line) for line in model.lines),
        )


@dataclass(frozen=True)
class WindowStatus:
    """Whether a level may currently submit or review requisitions."""

    level: Level
    is_open: bool
    has_started: bool
    has_ended: bool
    starts_at: datetime | None
    ends_at: datetime | None
    message: str


@dataclass(frozen=True)
class AuditEventInfo:
    entity_type: str
    entity_id: str
    action: str
    actor_id: str
    occurred_at: datetime
    payload: dict
    payload_hash: str

    @classmethod
    def from_model(cls, model: AuditEvent) -> AuditEventInfo:
        return cls(
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            action=model.action,
            actor_id=model.actor_id,
            occurred_at=model.occurred_at,
            payload=dict(model.payload or {}),
            payload_hash=model.payload_hash,
        )
