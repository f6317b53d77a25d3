"""Services for the textbook kernel (write side)."""

from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.catalog_service import CatalogService
from textbook_kernel.services.dispatch_service import DispatchService
from textbook_kernel.services.hierarchy_service import HierarchyService
from textbook_kernel.services.kernel import TextbookKernel
from textbook_kernel.services.reference_data_loader import ReferenceDataLoader
from textbook_kernel.services.requisition_service import RequisitionService
from textbook_kernel.services.requisition_window_service import RequisitionWindowService
from textbook_kernel.services.sequence_service import SequenceService
from textbook_kernel.services.stock_ledger import StockLedger
from textbook_kernel.services.unit_of_work import UnitOfWork

__all__ = [
    "AuditorService",
    "CatalogService",
    "DispatchService",
    "HierarchyService",
    "ReferenceDataLoader",
    "RequisitionService",
    "RequisitionWindowService",
    "SequenceService",
    "StockLedger",
    "TextbookKernel",
    "UnitOfWork",
]
