"""
Module: textbook_kernel.models.audit_event
Responsibility: ORM persistence for the audit trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit rows are append-only.
    - payload_hash = SHA-256 of the canonical JSON payload.
    - There is no global hash chain: audit writes never serialize
      otherwise-independent transactions.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Catalog and hierarchy
    BOOK_REGISTERED = "book_registered"
    BOOK_UPDATED = "book_updated"
    BOOK_STATUS_TOGGLED = "book_status_toggled"
    BOOK_DELETED = "book_deleted"

    # Requisition lifecycle
    REQUISITION_CREATED = "requisition_created"
    REQUISITION_APPROVED = "requisition_approved"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_COMPLETED = "requisition_completed"
    REMARKS_UPDATED = "remarks_updated"
    WINDOW_SET = "requisition_window_set"

    # Stock
    STOCK_CORRECTED = "stock_corrected"
    BACKLOG_RECORDED = "backlog_recorded"

    # Dispatch lifecycle
    DISPATCH_ISSUED = "dispatch_issued"
    DISPATCH_STATUS_CHANGED = "dispatch_status_changed"
    RECEIPT_RECORDED = "receipt_recorded"


class AuditEvent(Base):
    """
    One audited action.

    ``entity_id`` is a string so that UUIDs, challan numbers and
    (level/owner/book) keys can all be recorded.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>"
