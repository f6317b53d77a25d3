"""
Canonical JSON and payload digests.

Audit rows store the canonical form of their payload next to its SHA-256,
and dispatch idempotency keys are digests of the requested line set, so
both must come out byte-identical in every process.

Canonical form:
    - object keys sorted, no insignificant whitespace
    - Decimal as its normalized string (12.50 and 12.5 agree)
    - date/datetime as ISO 8601, UUID as its hex string
    - Enum members as their value, sets as sorted lists
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, date):  # datetime is a date subclass
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=canonicalize_json)
    raise TypeError(f"{type(obj).__name__} has no canonical JSON form")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_canonical(payload: dict | None) -> dict:
    """JSON-safe copy of ``payload`` holding exactly what ``hash_payload`` digests."""
    return json.loads(canonicalize_json(payload or {}))


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical form (64 characters)."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()
