"""
Reconciliation report value objects and arithmetic.

All ratios are computed with Decimal and ROUND_HALF_UP.  A zero
denominator yields 0, never NaN or an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from textbook_kernel.domain.hierarchy import NodeRef

_HUNDRED = Decimal(100)


def fulfillment_percent(received: int, requested: int) -> int:
    """Whole-number percentage of ``requested`` covered by ``received``."""
    if requested <= 0:
        return 0
    ratio = Decimal(received) * _HUNDRED / Decimal(requested)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def fulfillment_rate(distributed: int, requisitioned: int) -> Decimal:
    """Percentage with two decimal places, for the overall summary."""
    if requisitioned <= 0:
        return Decimal("0.00")
    ratio = Decimal(distributed) * _HUNDRED / Decimal(requisitioned)
    return ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RollupRow:
    """
    One scope's reconciliation figures.

    requirement: copies requested on non-rejected requisitions, plus copies
        already received against rejected ones.
    dispatched: copies received against the requisitions in scope.
    available_stock: copies on hand at the scope's own ledger.
    """

    scope: NodeRef
    name: str
    school_count: int
    enrollment: int
    requirement: int
    dispatched: int
    available_stock: int

    @property
    def shortfall(self) -> int:
        return max(0, self.requirement - self.dispatched)

    @property
    def fulfillment_percent(self) -> int:
        return fulfillment_percent(self.dispatched, self.requirement)


@dataclass(frozen=True)
class DetailedRow:
    """Per-book figures inside a scope."""

    book_id: UUID
    class_name: str
    subject: str
    title: str
    requirement: int
    dispatched: int
    available_stock: int

    @property
    def fulfillment_percent(self) -> int:
        return fulfillment_percent(self.dispatched, self.requirement)


@dataclass(frozen=True)
class ReportSummary:
    total_schools: int
    total_blocks: int
    total_enrollment: int
    total_books_requisitioned: int
    total_books_distributed: int
    pending_requisitions: int
    overall_fulfillment_rate: Decimal


@dataclass(frozen=True)
class RequisitionStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    completed: int = 0
    rejected: int = 0
