"""
RequisitionService -- create, review and fulfil requisition lines.

Responsibility:
    Persists the requisition state machine.  Every transition loads the row
    with ``SELECT ... FOR UPDATE``, asks ``domain.requisition`` for the next
    state, writes it, and records an audit event, all in the caller's
    transaction.

Architecture position:
    Kernel > Services -- imperative shell around the pure state machine.

Invariants enforced:
    - quantity never changes after creation.
    - received only changes through ``apply_dispatch`` (called by
      DispatchService) and only increases.
    - COMPLETED is set automatically once an APPROVED line is fully
      received, and by nothing else.
    - Creation is idempotent per (reqId, book): an identical retry returns
      the existing line.
    - Remarks are replace-only and independent of status.  Writing the same
      text twice changes nothing.

Failure modes:
    - ValidationError family for malformed input, disabled books, closed
      windows, duplicates and out-of-scope actors.
    - NotCurrentApproverError / InvalidTransitionError for illegal moves.
    - RequisitionNotFoundError, BookNotFoundError, NodeNotFoundError.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from textbook_kernel.db.types import is_non_negative_quantity, is_positive_quantity
from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.dtos import RequisitionInfo
from textbook_kernel.domain.hierarchy import SCHOOL_LEVELS, Actor, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.requisition import (
    RequisitionState,
    RequisitionStatus,
    TransitionResult,
    approve,
    initial_state,
    reject,
    rejecting_level,
    settle_fulfillment,
)
from textbook_kernel.exceptions import (
    BookNotFoundError,
    DisabledBookError,
    DuplicateRequisitionError,
    InvalidQuantityError,
    InvalidTransitionError,
    MissingSelectionError,
    RequisitionNotFoundError,
    ValidationError,
)
from textbook_kernel.logging_config import LogContext, get_logger
from textbook_kernel.models.audit_event import AuditAction
from textbook_kernel.models.catalog import Book
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.selectors.hierarchy_selector import HierarchySelector
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.base import BaseService
from textbook_kernel.services.requisition_window_service import RequisitionWindowService
from textbook_kernel.services.sequence_service import SequenceService

logger = get_logger("services.requisition")

_REMARK_FIELDS: dict[Level, str] = {
    Level.BLOCK: "remarks_by_block",
    Level.DISTRICT: "remarks_by_district",
    Level.STATE: "remarks_by_state",
}

# Levels whose approve/reject actions are subject to a window
_REVIEW_WINDOW_LEVELS = frozenset({Level.BLOCK, Level.DISTRICT})


def _state_of(model: Requisition) -> RequisitionState:
    return RequisitionState(
        status=RequisitionStatus(model.status),
        awaiting_level=Level(model.awaiting_level) if model.awaiting_level else None,
        quantity=model.quantity,
        received=model.received,
    )


class RequisitionService(BaseService[Requisition]):

    def __init__(self, session: Session, policy: FulfillmentPolicy, clock: Clock | None = None):
        super().__init__(session, clock)
        self._policy = policy
        self._hierarchy = HierarchySelector(session, policy)
        self._windows = RequisitionWindowService(session, self.clock)
        self._sequences = SequenceService(session)
        self._auditor = AuditorService(session, self.clock)

    # Loading

    def lock(self, requisition_id: UUID) -> Requisition:
        """Load one requisition with a row lock."""
        model = self.session.execute(
            select(Requisition)
            .where(Requisition.id == requisition_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return model

    def lock_many(self, requisition_ids: Iterable[UUID]) -> dict[UUID, Requisition]:
        """Lock several requisitions in id order."""
        return {rid: self.lock(rid) for rid in sorted(set(requisition_ids), key=str)}

    def _check_window(self, level: Level) -> None:
        if self._policy.enforce_windows:
            self._windows.assert_open(level)

    def _school_node(self, model: Requisition) -> NodeRef:
        return NodeRef(Level(model.school_level), model.school_udise)

    # Creation

    def next_req_id(self) -> str:
        """Allocate the next REQ0001-style identifier."""
        return self._policy.format_req_id(
            self._sequences.next_value(SequenceService.REQUISITION)
        )

    def create(
        self,
        school_udise: str,
        book_id: UUID,
        quantity: int,
        actor: Actor,
        req_id: str | None = None,
    ) -> RequisitionInfo:
        """
        Create one requisition line.

        A retry with the same (req_id, book, school, quantity) returns the
        line created the first time.
        """
        return self.create_batch(school_udise, [(book_id, quantity)], actor, req_id)[0]

    def create_batch(
        self,
        school_udise: str,
        lines: list[tuple[UUID, int]],
        actor: Actor,
        req_id: str | None = None,
    ) -> list[RequisitionInfo]:
        """Create one request (shared reqId) with one line per book."""
        if not school_udise:
            raise MissingSelectionError("school")
        if not lines:
            raise MissingSelectionError("book")
        book_ids = [book_id for book_id, _ in lines]
        if len(set(book_ids)) != len(book_ids):
            raise ValidationError("Each book may appear only once per request")
        for book_id, quantity in lines:
            if book_id is None:
                raise MissingSelectionError("book")
            if not is_positive_quantity(quantity):
                raise InvalidQuantityError("quantity", quantity)

        school = self._hierarchy.get_school(school_udise)
        self._hierarchy.require_within(school.node, actor.node)
        if actor.level in SCHOOL_LEVELS:
            self._check_window(actor.level)

        if req_id is None:
            req_id = self.next_req_id()
        else:
            req_id = req_id.strip()
            if not req_id:
                raise MissingSelectionError("req_id")
            other_school = self.session.execute(
                select(Requisition.school_udise)
                .where(Requisition.req_id == req_id, Requisition.school_udise != school.udise)
                .limit(1)
            ).scalar_one_or_none()
            if other_school is not None:
                raise DuplicateRequisitionError(req_id, str(book_ids[0]))

        with LogContext.bind(actor_id=actor.actor_id, actor_level=actor.level.value):
            return [
                self._create_line(req_id, school.udise, school.level, school.block_code,
                                  school.district_code, book_id, quantity, actor)
                for book_id, quantity in lines
            ]

    def _existing_line(self, req_id: str, book_id: UUID) -> Requisition | None:
        return self.session.execute(
            select(Requisition).where(
                Requisition.req_id == req_id, Requisition.book_id == book_id,
            )
        ).scalar_one_or_none()

    def _same_or_duplicate(
        self, existing: Requisition, school_udise: str, quantity: int,
    ) -> RequisitionInfo:
        if existing.school_udise != school_udise or existing.quantity != quantity:
            raise DuplicateRequisitionError(existing.req_id, str(existing.book_id))
        logger.info(
            "requisition_create_replayed",
            extra={"req_id": existing.req_id, "requisition_id": str(existing.id)},
        )
        return RequisitionInfo.from_model(existing)

    def _create_line(
        self,
        req_id: str,
        school_udise: str,
        school_level: Level,
        block_code: str,
        district_code: str,
        book_id: UUID,
        quantity: int,
        actor: Actor,
    ) -> RequisitionInfo:
        existing = self._existing_line(req_id, book_id)
        if existing is not None:
            return self._same_or_duplicate(existing, school_udise, quantity)

        book = self.session.get(Book, book_id)
        if book is None:
            raise BookNotFoundError(str(book_id))
        if not book.is_enabled:
            raise DisabledBookError(str(book_id))

        start = initial_state(self._policy.approval_chain)
        model = Requisition(
            req_id=req_id,
            school_udise=school_udise,
            school_level=school_level.value,
            block_code=block_code,
            district_code=district_code,
            book_id=book_id,
            quantity=quantity,
            received=0,
            status=start.status.value,
            awaiting_level=start.awaiting_level.value,
            created_by=actor.actor_id,
            submitted_at=self.clock.now(),
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(model)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Concurrent retry of the same request won the insert
            savepoint.rollback()
            existing = self._existing_line(req_id, book_id)
            if existing is None:
                raise
            return self._same_or_duplicate(existing, school_udise, quantity)

        self._auditor.record(
            "Requisition", model.id, AuditAction.REQUISITION_CREATED, actor.actor_id,
            {"req_id": req_id, "school": school_udise, "book_id": book_id, "quantity": quantity},
        )
        logger.info(
            "requisition_created",
            extra={
                "requisition_id": str(model.id),
                "req_id": req_id,
                "udise": school_udise,
                "book_id": str(book_id),
                "quantity": quantity,
            },
        )
        return RequisitionInfo.from_model(model)

    # Review

    def _apply_transition(
        self,
        model: Requisition,
        result: TransitionResult,
        action: AuditAction,
        actor: Actor,
    ) -> None:
        previous = model.status
        model.status = result.status.value
        model.awaiting_level = result.awaiting_level.value if result.awaiting_level else None
        settled = settle_fulfillment(_state_of(model))
        model.status = settled.value
        self.session.flush()
        self._auditor.record(
            "Requisition", model.id, action, actor.actor_id,
            {
                "from": previous,
                "to": model.status,
                "awaiting_level": model.awaiting_level,
                "actor_level": actor.level,
            },
        )
        logger.info(
            "requisition_transitioned",
            extra={
                "requisition_id": str(model.id),
                "from_status": previous,
                "to_status": model.status,
                "awaiting_level": model.awaiting_level,
            },
        )

    def _review(
        self,
        requisition_id: UUID,
        actor: Actor,
        remarks: str | None,
        decide,
        action: AuditAction,
    ) -> RequisitionInfo:
        with LogContext.bind(
            actor_id=actor.actor_id,
            actor_level=actor.level.value,
            requisition_id=str(requisition_id),
        ):
            model = self.lock(requisition_id)
            self._hierarchy.require_within(self._school_node(model), actor.node)
            if actor.level in _REVIEW_WINDOW_LEVELS:
                self._check_window(actor.level)

            result = decide(
                _state_of(model), actor.level, self._policy.approval_chain, str(model.id),
            )
            if result.changed:
                self._apply_transition(model, result, action, actor)
            if remarks is not None:
                self._write_remarks(model, actor, remarks)
            return RequisitionInfo.from_model(model)

    def approve(self, requisition_id: UUID, actor: Actor, remarks: str | None = None) -> RequisitionInfo:
        """Approve (or re-approve after a rejection) at the actor's level."""
        return self._review(requisition_id, actor, remarks, approve, AuditAction.REQUISITION_APPROVED)

    def reject(self, requisition_id: UUID, actor: Actor, remarks: str | None = None) -> RequisitionInfo:
        """Reject at the actor's level.  ``received`` is kept."""
        return self._review(requisition_id, actor, remarks, reject, AuditAction.REQUISITION_REJECTED)

    # Remarks

    def _write_remarks(self, model: Requisition, actor: Actor, text: str) -> bool:
        field = _REMARK_FIELDS.get(actor.level)
        if field is None:
            raise ValidationError(f"{actor.level.value} users cannot write review remarks")
        value = text.strip() or None
        if getattr(model, field) == value:
            return False
        setattr(model, field, value)
        self.session.flush()
        self._auditor.record(
            "Requisition", model.id, AuditAction.REMARKS_UPDATED, actor.actor_id,
            {"field": field, "text": value},
        )
        logger.info(
            "requisition_remarks_updated",
            extra={"requisition_id": str(model.id), "field": field},
        )
        return True

    def set_remarks(self, requisition_id: UUID, actor: Actor, text: str) -> RequisitionInfo:
        """Replace the actor level's remark.  Status is untouched."""
        if text is None:
            raise MissingSelectionError("remarks")
        model = self.lock(requisition_id)
        self._hierarchy.require_within(self._school_node(model), actor.node)
        self._write_remarks(model, actor, text)
        return RequisitionInfo.from_model(model)

    def update(
        self,
        requisition_id: UUID,
        actor: Actor,
        status: str | RequisitionStatus | None = None,
        received: int | None = None,
        remarks: str | None = None,
    ) -> RequisitionInfo:
        """
        Generic update entry point used by console forms.

        ``status`` routes to approve/reject; ``received`` is accepted only
        when it matches the stored value, since fulfilment comes from
        dispatch records alone.
        """
        model = self.lock(requisition_id)
        if received is not None:
            if not is_non_negative_quantity(received):
                raise InvalidQuantityError("received", received, minimum=0)
            if received != model.received:
                raise ValidationError(
                    "received changes only through dispatch documents"
                )

        if status is not None:
            target = RequisitionStatus.parse(status)
            if target is RequisitionStatus.APPROVED:
                return self.approve(requisition_id, actor, remarks)
            if target.is_rejected:
                if rejecting_level(target) is not actor.level:
                    raise InvalidTransitionError(
                        "Requisition", str(requisition_id), model.status, target.value,
                        reason=f"{actor.level.value} can only reject as itself",
                    )
                return self.reject(requisition_id, actor, remarks)
            if target.value != model.status:
                raise InvalidTransitionError(
                    "Requisition", str(requisition_id), model.status, target.value,
                    reason="status is derived from approvals and dispatches",
                )

        if remarks is not None:
            return self.set_remarks(requisition_id, actor, remarks)
        return RequisitionInfo.from_model(model)

    # Fulfilment

    def apply_dispatch(
        self,
        model: Requisition,
        quantity: int,
        reference: str,
        actor_id: str,
    ) -> RequisitionStatus:
        """
        Record ``quantity`` copies dispatched against a locked requisition.

        The caller has already checked ``quantity <= quantity - received``.
        """
        model.received += quantity
        status = settle_fulfillment(_state_of(model))
        if status.value != model.status:
            model.status = status.value
            self._auditor.record(
                "Requisition", model.id, AuditAction.REQUISITION_COMPLETED, actor_id,
                {"received": model.received, "reference": reference},
            )
            logger.info(
                "requisition_completed",
                extra={"requisition_id": str(model.id), "received": model.received},
            )
        self.session.flush()
        return status
