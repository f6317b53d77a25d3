"""
Requisition lifecycle (``textbook_kernel.domain.requisition``).

Responsibility
--------------
Pure state machine for a single requisition line.  Defines the canonical
status enum, the approval chain, and the approve/reject/fulfil transition
functions.  Services load the row under lock, call these functions, and
persist the result.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over value objects.  ZERO I/O.

Lifecycle
---------
A new requisition is PENDING and waits on the first gate of the approval
chain (BLOCK by default).  Each gate approval hands it to the next gate; the
final gate's approval makes it APPROVED.  Any gate may reject while it is
waiting on them, and a gate in the chain (or STATE) may reject an APPROVED
line that is not yet COMPLETED.  Rejection is reversible: the rejecting
level, or any level above it, may re-approve.  COMPLETED is reached only by
fulfilment (``received >= quantity``) and is terminal.

The "PENDING_BLOCK_APPROVAL" / "PENDING_DISTRICT_APPROVAL" values seen in
block- and district-facing views are labels derived from
(PENDING, awaiting_level); they are accepted as input and normalized.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from textbook_kernel.domain.hierarchy import GATE_LEVELS, Level
from textbook_kernel.exceptions import InvalidTransitionError, NotCurrentApproverError


class RequisitionStatus(str, Enum):
    """Canonical requisition statuses."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED_BY_BLOCK = "REJECTED_BY_BLOCK"
    REJECTED_BY_DISTRICT = "REJECTED_BY_DISTRICT"
    REJECTED_BY_STATE = "REJECTED_BY_STATE"
    COMPLETED = "COMPLETED"

    @property
    def is_rejected(self) -> bool:
        return self in REJECTED_STATUSES

    @classmethod
    def parse(cls, value: str | RequisitionStatus) -> RequisitionStatus:
        """Normalize a status or a view label to the canonical enum."""
        if isinstance(value, RequisitionStatus):
            return value
        normalized = str(value).strip().upper()
        if normalized.startswith("PENDING_") and normalized.endswith("_APPROVAL"):
            return cls.PENDING
        return cls(normalized)


REJECTED_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.REJECTED_BY_BLOCK,
    RequisitionStatus.REJECTED_BY_DISTRICT,
    RequisitionStatus.REJECTED_BY_STATE,
})

# Excluded from activeRequisitionsFor(school)
INACTIVE_STATUSES: frozenset[RequisitionStatus] = REJECTED_STATUSES | {
    RequisitionStatus.COMPLETED,
}

_REJECTED_BY: dict[Level, RequisitionStatus] = {
    Level.BLOCK: RequisitionStatus.REJECTED_BY_BLOCK,
    Level.DISTRICT: RequisitionStatus.REJECTED_BY_DISTRICT,
    Level.STATE: RequisitionStatus.REJECTED_BY_STATE,
}


def rejected_status_for(level: Level) -> RequisitionStatus:
    """REJECTED_BY_<level> for a gate level."""
    try:
        return _REJECTED_BY[level]
    except KeyError:
        raise ValueError(f"{level.value} cannot reject requisitions") from None


def rejecting_level(status: RequisitionStatus) -> Level | None:
    for level, rejected in _REJECTED_BY.items():
        if rejected is status:
            return level
    return None


@dataclass(frozen=True)
class ApprovalChain:
    """
    Ordered approval gates, bottom-up (e.g. BLOCK -> DISTRICT -> STATE).

    Guarantees:
        - At least one gate.
        - Only BLOCK/DISTRICT/STATE, each at most once, strictly ascending
          the hierarchy.
    """

    gates: tuple[Level, ...] = (Level.BLOCK, Level.DISTRICT)

    def __post_init__(self) -> None:
        if not self.gates:
            raise ValueError("Approval chain needs at least one gate")
        for gate in self.gates:
            if gate not in GATE_LEVELS:
                raise ValueError(f"{gate.value} cannot be an approval gate")
        ranks = [gate.rank for gate in self.gates]
        if any(later >= earlier for earlier, later in zip(ranks, ranks[1:])):
            raise ValueError(
                "Approval gates must be distinct and ordered bottom-up: "
                + " -> ".join(g.value for g in self.gates)
            )

    @property
    def first(self) -> Level:
        return self.gates[0]

    @property
    def final(self) -> Level:
        return self.gates[-1]

    def next_after(self, level: Level) -> Level | None:
        """The next gate strictly above ``level``, or None past the final gate."""
        for gate in self.gates:
            if gate.is_above(level):
                return gate
        return None

    def is_overseer(self, level: Level) -> bool:
        """Levels that may reject or re-approve outside the normal queue."""
        return level in self.gates or level is Level.STATE


@dataclass(frozen=True)
class RequisitionState:
    """Snapshot of the fields the state machine reads."""

    status: RequisitionStatus
    awaiting_level: Level | None
    quantity: int
    received: int

    @property
    def pending_quantity(self) -> int:
        return max(0, self.quantity - self.received)


@dataclass(frozen=True)
class TransitionResult:
    status: RequisitionStatus
    awaiting_level: Level | None
    changed: bool


def initial_state(chain: ApprovalChain) -> TransitionResult:
    return TransitionResult(RequisitionStatus.PENDING, chain.first, True)


def _unchanged(state: RequisitionState) -> TransitionResult:
    return TransitionResult(state.status, state.awaiting_level, False)


def approve(
    state: RequisitionState,
    actor_level: Level,
    chain: ApprovalChain,
    requisition_id: str = "",
) -> TransitionResult:
    """
    Apply an approval by ``actor_level``.

    - PENDING awaiting actor -> next gate (still PENDING) or APPROVED.
    - REJECTED_BY_X re-approved by X or a level above X -> APPROVED when the
      actor is at or above the final gate, otherwise PENDING at the next gate.
    - APPROVED approved again by an overseer -> no change.

    Raises:
        NotCurrentApproverError: PENDING but waiting on another level.
        InvalidTransitionError: COMPLETED, or re-approval from below.
    """
    target = RequisitionStatus.APPROVED.value
    status = state.status

    if status is RequisitionStatus.PENDING:
        if state.awaiting_level is not actor_level:
            raise NotCurrentApproverError(
                requisition_id,
                actor_level.value,
                state.awaiting_level.value if state.awaiting_level else None,
                target,
            )
        next_gate = chain.next_after(actor_level)
        if next_gate is None:
            return TransitionResult(RequisitionStatus.APPROVED, None, True)
        return TransitionResult(RequisitionStatus.PENDING, next_gate, True)

    if status is RequisitionStatus.APPROVED:
        if chain.is_overseer(actor_level):
            return _unchanged(state)
        raise InvalidTransitionError(
            "Requisition", requisition_id, status.value, target,
            reason=f"{actor_level.value} is not an approval gate",
        )

    if status.is_rejected:
        rejected_by = rejecting_level(status)
        if not chain.is_overseer(actor_level) or rejected_by.is_above(actor_level):
            raise InvalidTransitionError(
                "Requisition", requisition_id, status.value, target,
                reason=f"only {rejected_by.value} or a higher level may re-approve",
            )
        if not chain.final.is_above(actor_level):
            return TransitionResult(RequisitionStatus.APPROVED, None, True)
        return TransitionResult(
            RequisitionStatus.PENDING, chain.next_after(actor_level), True,
        )

    raise InvalidTransitionError(
        "Requisition", requisition_id, status.value, target,
        reason="completed requisitions are closed",
    )


def reject(
    state: RequisitionState,
    actor_level: Level,
    chain: ApprovalChain,
    requisition_id: str = "",
) -> TransitionResult:
    """
    Apply a rejection by ``actor_level``.

    ``received`` is never touched: a partially fulfilled line can be rejected
    for its remainder.

    Raises:
        NotCurrentApproverError: PENDING but waiting on another level.
        InvalidTransitionError: COMPLETED, already rejected by another level,
            or the actor is not an overseer.
    """
    if actor_level not in GATE_LEVELS:
        raise InvalidTransitionError(
            "Requisition", requisition_id, state.status.value, "REJECTED",
            reason=f"{actor_level.value} cannot reject requisitions",
        )
    target = rejected_status_for(actor_level)
    status = state.status

    if status is RequisitionStatus.PENDING:
        if state.awaiting_level is not actor_level:
            raise NotCurrentApproverError(
                requisition_id,
                actor_level.value,
                state.awaiting_level.value if state.awaiting_level else None,
                target.value,
            )
        return TransitionResult(target, None, True)

    if status is RequisitionStatus.APPROVED:
        if not chain.is_overseer(actor_level):
            raise InvalidTransitionError(
                "Requisition", requisition_id, status.value, target.value,
                reason=f"{actor_level.value} is not an approval gate",
            )
        return TransitionResult(target, None, True)

    if status is target:
        return _unchanged(state)

    raise InvalidTransitionError(
        "Requisition", requisition_id, status.value, target.value,
        reason="requisition is closed" if status is RequisitionStatus.COMPLETED
        else "already rejected; re-approve first",
    )


def settle_fulfillment(state: RequisitionState) -> RequisitionStatus:
    """COMPLETED once an APPROVED line is fully received; otherwise unchanged."""
    if state.status is RequisitionStatus.APPROVED and state.received >= state.quantity:
        return RequisitionStatus.COMPLETED
    return state.status


def view_label(status: RequisitionStatus, awaiting_level: Level | None) -> str:
    """Label used by level-facing views, e.g. PENDING_BLOCK_APPROVAL."""
    if status is RequisitionStatus.PENDING and awaiting_level is not None:
        return f"PENDING_{awaiting_level.value}_APPROVAL"
    return status.value


def is_urgent(status: RequisitionStatus, awaiting_level: Level | None, viewer_level: Level) -> bool:
    """True when the requisition is waiting on ``viewer_level``'s approval."""
    return status is RequisitionStatus.PENDING and awaiting_level is viewer_level
