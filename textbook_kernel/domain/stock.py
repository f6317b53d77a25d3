"""
Stock arithmetic (``textbook_kernel.domain.stock``).

Pure checks shared by the StockLedger and the dispatch builder.  ZERO I/O.
"""

from __future__ import annotations

from enum import Enum

from textbook_kernel.db.types import is_whole_quantity
from textbook_kernel.domain.hierarchy import NodeRef
from textbook_kernel.exceptions import InsufficientStockError, InvalidQuantityError


class StockReason(str, Enum):
    """Why a stock balance moved."""

    OPENING = "OPENING"
    RECEIPT = "RECEIPT"
    DISPATCH = "DISPATCH"
    CORRECTION = "CORRECTION"
    BACKLOG = "BACKLOG"
    CANCELLATION = "CANCELLATION"


def apply_delta(owner: NodeRef, book_id: object, current: int, delta: int) -> int:
    """
    New balance after ``delta``.

    Raises:
        InvalidQuantityError: ``delta`` is not a whole number.
        InsufficientStockError: the result would be negative.
    """
    if not is_whole_quantity(delta):
        raise InvalidQuantityError("delta", delta, minimum=-current)
    result = current + delta
    if result < 0:
        raise InsufficientStockError(
            owner.level.value, owner.code, str(book_id), current, -delta,
        )
    return result
