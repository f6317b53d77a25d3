"""Read side of the kernel: listings, lookups and reconciliation reports."""

from textbook_kernel.selectors.catalog_selector import BookFilter, CatalogSelector
from textbook_kernel.selectors.dispatch_selector import DispatchFilter, DispatchSelector
from textbook_kernel.selectors.hierarchy_selector import HierarchySelector
from textbook_kernel.selectors.reconciliation_reporter import ReconciliationReporter
from textbook_kernel.selectors.requisition_selector import RequisitionFilter, RequisitionSelector
from textbook_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "BookFilter",
    "CatalogSelector",
    "DispatchFilter",
    "DispatchSelector",
    "HierarchySelector",
    "ReconciliationReporter",
    "RequisitionFilter",
    "RequisitionSelector",
    "StockSelector",
]
