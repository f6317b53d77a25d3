"""
Module: textbook_kernel.db.types
Responsibility: Annotated column type aliases and quantity validation helpers
    shared by every model and service.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Quantities are whole, non-negative integers.  ``bool`` is rejected even
      though it subclasses ``int``.
"""

from typing import Annotated

from sqlalchemy import BigInteger, String

# Whole copies of a book
Quantity = Annotated[int, BigInteger]

# Hierarchy owner identifiers (state code, district code, block code, UDISE)
OwnerCode = Annotated[str, String(32)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Remark text
LongText = Annotated[str, String(4000)]


def is_whole_quantity(value: object) -> bool:
    """True when ``value`` is an ``int`` (and not a ``bool``)."""
    return isinstance(value, int) and not isinstance(value, bool)


def is_positive_quantity(value: object) -> bool:
    return is_whole_quantity(value) and value > 0


def is_non_negative_quantity(value: object) -> bool:
    return is_whole_quantity(value) and value >= 0
