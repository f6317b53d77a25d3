"""
Hierarchy domain types (``textbook_kernel.domain.hierarchy``).

Responsibility
--------------
The administrative tiers and the (level, code) identity of a node.  Names
are display data only; every join in the kernel goes through ``NodeRef``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Level(str, Enum):
    """One tier of the hierarchy."""

    STATE = "STATE"
    DISTRICT = "DISTRICT"
    BLOCK = "BLOCK"
    SCHOOL = "SCHOOL"
    PRIVATE_SCHOOL = "PRIVATE_SCHOOL"

    @property
    def rank(self) -> int:
        """Distance from the top of the hierarchy (STATE = 0)."""
        return _RANKS[self]

    def is_above(self, other: Level) -> bool:
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str | Level) -> Level:
        """Accept enum members, canonical names, and the "IS" alias for BLOCK."""
        if isinstance(value, Level):
            return value
        normalized = str(value).strip().upper()
        if normalized in ("IS", "INSPECTORATE"):
            return cls.BLOCK
        return cls(normalized)


_RANKS: dict[Level, int] = {
    Level.STATE: 0,
    Level.DISTRICT: 1,
    Level.BLOCK: 2,
    Level.SCHOOL: 3,
    Level.PRIVATE_SCHOOL: 3,
}

SCHOOL_LEVELS: frozenset[Level] = frozenset({Level.SCHOOL, Level.PRIVATE_SCHOOL})

# Levels that can act as an approval gate or reject a requisition
GATE_LEVELS: tuple[Level, ...] = (Level.BLOCK, Level.DISTRICT, Level.STATE)


@dataclass(frozen=True)
class NodeRef:
    """Identity of a hierarchy node: (level, owner code)."""

    level: Level
    code: str

    def __str__(self) -> str:
        return f"{self.level.value}/{self.code}"

    @classmethod
    def of(cls, level: str | Level, code: str) -> NodeRef:
        return cls(Level.parse(level), str(code))


@dataclass(frozen=True)
class HierarchyNode:
    """A resolved node with its denormalized display name and parent."""

    ref: NodeRef
    name: str
    parent: NodeRef | None = None

    @property
    def level(self) -> Level:
        return self.ref.level

    @property
    def code(self) -> str:
        return self.ref.code


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation and from which node.

    ``actor_id`` is an opaque user identifier used for the audit trail;
    ``node`` is the hierarchy position that determines what the actor may do.
    """

    node: NodeRef
    actor_id: str

    @property
    def level(self) -> Level:
        return self.node.level
