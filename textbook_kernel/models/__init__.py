"""ORM models for the textbook kernel."""

from textbook_kernel.models.audit_event import AuditAction, AuditEvent
from textbook_kernel.models.catalog import Book
from textbook_kernel.models.dispatch import DispatchDocument, DispatchLine
from textbook_kernel.models.hierarchy import Block, ClassEnrollment, District, School
from textbook_kernel.models.requisition import Requisition, RequisitionWindow
from textbook_kernel.models.stock import StockEntry, StockMovement
from textbook_kernel.models.sequence import SequenceCounter

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Block",
    "Book",
    "ClassEnrollment",
    "DispatchDocument",
    "DispatchLine",
    "District",
    "Requisition",
    "RequisitionWindow",
    "School",
    "SequenceCounter",
    "StockEntry",
    "StockMovement",
]
