"""
DispatchService -- challan issuance, status progression and receipt.

Responsibility:
    Turns approved requisitions into dispatch documents.  Issuance
    decrements the source node's stock, writes the document and its lines,
    and increments each requisition's ``received``, all in the caller's
    transaction so a failure on any line leaves nothing behind.

Architecture position:
    Kernel > Services -- imperative shell.  Uses StockLedger,
    RequisitionService and SequenceService within the same session.

Forwarding:
    A district or block that received copies for a requisition sends them
    on against the same requisition.  Each line is split: copies the
    source already holds for the requisition (DispatchSelector
    .forwarding_credit) are forwarded, and only the rest is counted into
    ``received``.  Forwarding needs no APPROVED status, so copies already
    in the chain still reach a school after its line is completed or
    rejected.

Issuance order:
    1. Shape checks on the lines (no I/O).
    2. Resolve source and destination; destination must be a strictly
       lower tier inside the source's subtree.
    3. Lock requisitions (id order), re-check the idempotency key, split
       each line into forwarded and counted copies, check status (counted
       copies only), scope and packaging.
    4. Lock source stock rows ((level, owner, book) order) and check every
       book's total against its balance, then each line's counted copies
       against its pending quantity, before mutating anything.
    5. Allocate the challan number, decrement stock, write the document,
       lines, requisition increments and audit rows.

Invariants enforced:
    - counted copies <= quantity - received for every line.
    - Sum per book <= source balance; the balance can never go negative.
    - The same (requisitions, destination, line set) on one day yields one
      document.
    - Cancelling returns the copies to the source's stock and leaves
      ``received`` as it is.  Only DELIVERED documents can be received,
      once.

Failure modes:
    - ValidationError family, InsufficientStockError,
      RequisitionNotDispatchableError, InvalidTransitionError,
      DocumentNotDeliveredError, NotFoundError family.
"""

from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.dispatch import (
    DispatchLineRequest,
    DispatchPlan,
    DocumentStatus,
    PlanLine,
    challan_sequence_name,
    check_document_transition,
    dispatch_idempotency_key,
    format_challan_no,
    released_idempotency_key,
    validate_line_requests,
)
from textbook_kernel.domain.dtos import DispatchDocumentInfo
from textbook_kernel.domain.hierarchy import SCHOOL_LEVELS, Actor, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.requisition import RequisitionStatus
from textbook_kernel.domain.stock import StockReason
from textbook_kernel.exceptions import (
    DispatchDocumentNotFoundError,
    DocumentNotDeliveredError,
    ExceedsPendingQuantityError,
    InsufficientStockError,
    InvalidDestinationError,
    MissingSelectionError,
    OutOfScopeError,
    RequisitionNotDispatchableError,
    RequisitionNotFoundError,
)
from textbook_kernel.logging_config import LogContext, get_logger
from textbook_kernel.models.audit_event import AuditAction
from textbook_kernel.models.dispatch import DispatchDocument, DispatchLine
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.selectors.dispatch_selector import DispatchSelector
from textbook_kernel.selectors.hierarchy_selector import HierarchySelector
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.base import BaseService
from textbook_kernel.services.requisition_service import RequisitionService
from textbook_kernel.services.sequence_service import SequenceService
from textbook_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.dispatch")


class DispatchService(BaseService[DispatchDocument]):

    def __init__(self, session: Session, policy: FulfillmentPolicy, clock: Clock | None = None):
        super().__init__(session, clock)
        self._policy = policy
        self._hierarchy = HierarchySelector(session, policy)
        self._documents = DispatchSelector(session)
        self._requisitions = RequisitionService(session, policy, self.clock)
        self._stock = StockLedger(session, self.clock)
        self._sequences = SequenceService(session)
        self._auditor = AuditorService(session, self.clock)

    # Planning

    def plan(self, source: NodeRef, requisition_ids: list[UUID]) -> DispatchPlan:
        """
        Snapshot pending quantities, forwardable copies and source stock for
        a set of requisitions.  Each line starts at
        min(pending + forwardable, available).

        Read-only: nothing is locked or written.
        """
        if not requisition_ids:
            raise MissingSelectionError("requisitions")
        self._hierarchy.resolve(source)
        credit = self._documents.forwarding_credit(source, requisition_ids)
        lines: list[PlanLine] = []
        remaining_stock: dict[UUID, int] = {}
        for rid in requisition_ids:
            model = self.session.get(Requisition, rid)
            if model is None:
                raise RequisitionNotFoundError(str(rid))
            forwardable = credit.get(rid, 0)
            approved = model.status == RequisitionStatus.APPROVED.value
            if not approved and not forwardable:
                raise RequisitionNotDispatchableError(str(rid), model.status)
            # Lines that are not APPROVED can only forward what is in hand
            pending = model.quantity - model.received if approved else 0
            available = self._stock.get(source, model.book_id)
            remaining_stock.setdefault(model.book_id, available)
            proposed = min(pending + forwardable, remaining_stock[model.book_id])
            remaining_stock[model.book_id] -= proposed
            lines.append(PlanLine(
                requisition_id=model.id,
                req_id=model.req_id,
                school_code=model.school_udise,
                book_id=model.book_id,
                requested=model.quantity,
                received=model.received,
                original_pending=pending,
                available_stock=available,
                dispatch_quantity=proposed,
                forwardable=forwardable,
            ))
        return DispatchPlan(source=source, lines=tuple(lines))

    # Issuance

    def _check_route(self, source: NodeRef, destination: NodeRef) -> None:
        if source.level in SCHOOL_LEVELS:
            raise InvalidDestinationError(str(source), str(destination))
        self._hierarchy.resolve(source)
        self._hierarchy.resolve(destination)
        if not source.level.is_above(destination.level):
            raise InvalidDestinationError(str(source), str(destination))
        self._hierarchy.require_within(destination, source)

    def _find_by_key(self, idempotency_key: str) -> DispatchDocument | None:
        return self.session.execute(
            select(DispatchDocument).where(DispatchDocument.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def issue(
        self,
        actor: Actor,
        destination: NodeRef,
        lines: list[DispatchLineRequest],
        academic_year: str | None = None,
        vehicle_no: str | None = None,
        agency: str | None = None,
        client_token: str | None = None,
    ) -> DispatchDocumentInfo:
        """
        Issue a challan from the actor's node to ``destination``.

        All-or-nothing: every check for every line runs before the first
        write, and all writes share the caller's transaction.

        Returns:
            The new document, or the existing one when the same
            (requisitions, destination, line set) was already issued today.
        """
        if destination is None:
            raise MissingSelectionError("destination")
        validate_line_requests(lines)

        source = actor.node
        now = self.clock.now()
        key = dispatch_idempotency_key(source, destination, lines, now.date(), client_token)

        with LogContext.bind(actor_id=actor.actor_id, actor_level=actor.level.value):
            self._check_route(source, destination)

            requisitions = self._requisitions.lock_many(line.requisition_id for line in lines)

            existing = self._find_by_key(key)
            if existing is not None:
                logger.info(
                    "dispatch_issue_replayed",
                    extra={"challan": existing.challan_no, "document_id": str(existing.id)},
                )
                return DispatchDocumentInfo.from_model(existing)

            credit = self._documents.forwarding_credit(source, requisitions)
            counted: dict[UUID, int] = {}
            per_book: dict[UUID, int] = defaultdict(int)
            for line in lines:
                model = requisitions[line.requisition_id]
                counted[model.id] = line.quantity - min(line.quantity, credit[model.id])
                if counted[model.id] and model.status != RequisitionStatus.APPROVED.value:
                    raise RequisitionNotDispatchableError(str(model.id), model.status)
                self._hierarchy.require_within(
                    NodeRef(Level(model.school_level), model.school_udise), destination,
                )
                if line.packaging is not None:
                    line.packaging.check(
                        model.book_id, line.quantity,
                        self._policy.books_per_box, self._policy.books_per_packet,
                    )
                per_book[model.book_id] += line.quantity

            stock_rows = self._stock.lock_entries((source, book_id) for book_id in per_book)
            for (owner, book_id), entry in stock_rows.items():
                available = entry.quantity if entry is not None else 0
                if per_book[book_id] > available:
                    raise InsufficientStockError(
                        owner.level.value, owner.code, str(book_id), available, per_book[book_id],
                    )
            for line in lines:
                model = requisitions[line.requisition_id]
                pending = model.quantity - model.received
                if counted[model.id] > pending:
                    forwardable = line.quantity - counted[model.id]
                    raise ExceedsPendingQuantityError(str(model.id), pending + forwardable, line.quantity)

            sequence = self._sequences.next_value(challan_sequence_name(source, now.date()))
            challan_no = format_challan_no(
                source, destination, now.date(), sequence,
                label=self._policy.document_label, width=self._policy.sequence_width,
            )

            with LogContext.bind(challan_no=challan_no):
                for (owner, book_id), entry in stock_rows.items():
                    self._stock.apply_locked(
                        entry, -per_book[book_id], StockReason.DISPATCH,
                        reference=challan_no, actor_id=actor.actor_id,
                    )

                document = DispatchDocument(
                    challan_no=challan_no,
                    idempotency_key=key,
                    source_level=source.level.value,
                    source_owner=source.code,
                    destination_level=destination.level.value,
                    destination_owner=destination.code,
                    academic_year=academic_year or self._policy.academic_year,
                    vehicle_no=vehicle_no,
                    agency=agency,
                    status=DocumentStatus.GENERATED.value,
                    issued_by=actor.actor_id,
                    issued_at=now,
                )
                for line_no, line in enumerate(lines, start=1):
                    model = requisitions[line.requisition_id]
                    packaging = line.packaging
                    document.lines.append(DispatchLine(
                        line_no=line_no,
                        requisition_id=model.id,
                        book_id=model.book_id,
                        quantity=line.quantity,
                        counted_quantity=counted[model.id],
                        boxes=packaging.boxes if packaging else None,
                        packets=packaging.packets if packaging else None,
                        loose=packaging.loose if packaging else None,
                    ))
                self.session.add(document)
                self.session.flush()

                for line in lines:
                    if counted[line.requisition_id]:
                        self._requisitions.apply_dispatch(
                            requisitions[line.requisition_id], counted[line.requisition_id],
                            challan_no, actor.actor_id,
                        )

                self._auditor.record(
                    "DispatchDocument", challan_no, AuditAction.DISPATCH_ISSUED, actor.actor_id,
                    {
                        "source": str(source),
                        "destination": str(destination),
                        "lines": [
                            {
                                "requisition_id": line.requisition_id,
                                "quantity": line.quantity,
                                "counted": counted[line.requisition_id],
                            }
                            for line in lines
                        ],
                    },
                )
                logger.info(
                    "dispatch_issued",
                    extra={
                        "document_id": str(document.id),
                        "source": str(source),
                        "destination": str(destination),
                        "line_count": len(lines),
                        "total_quantity": sum(per_book.values()),
                        "forwarded_quantity": sum(per_book.values()) - sum(counted.values()),
                    },
                )
                return DispatchDocumentInfo.from_model(document)

    def issue_plan(
        self,
        actor: Actor,
        destination: NodeRef,
        plan: DispatchPlan,
        **kwargs,
    ) -> DispatchDocumentInfo:
        """Issue the positive lines of an edited plan."""
        if plan.source != actor.node:
            raise InvalidDestinationError(str(actor.node), str(plan.source))
        return self.issue(actor, destination, list(plan.to_line_requests()), **kwargs)

    # Lookup

    def _lock_document(self, document_ref: UUID | str) -> DispatchDocument:
        stmt = select(DispatchDocument).with_for_update().execution_options(populate_existing=True)
        if isinstance(document_ref, UUID):
            stmt = stmt.where(DispatchDocument.id == document_ref)
        else:
            stmt = stmt.where(DispatchDocument.challan_no == document_ref)
        document = self.session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise DispatchDocumentNotFoundError(str(document_ref))
        return document

    # Status progression

    def _apply_transition(self, document: DispatchDocument, target: DocumentStatus, actor: Actor) -> bool:
        source = NodeRef(Level(document.source_level), document.source_owner)
        destination = NodeRef(Level(document.destination_level), document.destination_owner)
        if target is DocumentStatus.DELIVERED:
            # Either end of the route may confirm delivery
            if not (self._hierarchy.contains(actor.node, source)
                    or self._hierarchy.contains(actor.node, destination)):
                raise OutOfScopeError(str(destination), str(actor.node))
        else:
            self._hierarchy.require_within(source, actor.node)

        current = DocumentStatus(document.status)
        if not check_document_transition(document.challan_no, current, target):
            return False
        document.status = target.value
        document.status_changed_at = self.clock.now()
        self.session.flush()
        self._auditor.record(
            "DispatchDocument", document.challan_no, AuditAction.DISPATCH_STATUS_CHANGED,
            actor.actor_id, {"from": current, "to": target},
        )
        logger.info(
            "dispatch_status_changed",
            extra={
                "challan": document.challan_no,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return True

    def _transition(
        self,
        document_ref: UUID | str,
        target: DocumentStatus,
        actor: Actor,
    ) -> DispatchDocumentInfo:
        document = self._lock_document(document_ref)
        self._apply_transition(document, target, actor)
        return DispatchDocumentInfo.from_model(document)

    def mark_in_transit(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._transition(document_ref, DocumentStatus.IN_TRANSIT, actor)

    def mark_delivered(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._transition(document_ref, DocumentStatus.DELIVERED, actor)

    def cancel(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        """
        Cancel a GENERATED or IN_TRANSIT document.

        The copies go back to the source's stock as a CANCELLATION movement
        referencing the challan, and the document gives up its idempotency
        key.  ``received`` is not reduced: the counted copies become
        forwarding credit at the source, so sending them again does not
        count them twice.
        """
        document = self._lock_document(document_ref)
        # Issuance reads forwarding credit under these locks
        self._requisitions.lock_many(line.requisition_id for line in document.lines)
        if not self._apply_transition(document, DocumentStatus.CANCELLED, actor):
            return DispatchDocumentInfo.from_model(document)
        document.idempotency_key = released_idempotency_key(document.idempotency_key)

        source = NodeRef(Level(document.source_level), document.source_owner)
        per_book = _quantity_per_book(document)
        with LogContext.bind(actor_id=actor.actor_id, challan_no=document.challan_no):
            stock_rows = self._stock.lock_entries(
                ((source, book_id) for book_id in per_book), create=True,
            )
            for (_, book_id), entry in stock_rows.items():
                self._stock.apply_locked(
                    entry, per_book[book_id], StockReason.CANCELLATION,
                    reference=document.challan_no, actor_id=actor.actor_id,
                )
            logger.info(
                "dispatch_cancel_restocked",
                extra={"source": str(source), "total_quantity": sum(per_book.values())},
            )
        return DispatchDocumentInfo.from_model(document)

    # Receipt

    def record_receipt(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        """
        Credit the destination's stock with a delivered document's lines.

        Idempotent per document: a second call returns the document
        unchanged.

        Raises:
            DocumentNotDeliveredError: the document is not DELIVERED.
        """
        document = self._lock_document(document_ref)
        destination = NodeRef(Level(document.destination_level), document.destination_owner)
        self._hierarchy.require_within(destination, actor.node)

        if document.status != DocumentStatus.DELIVERED.value:
            raise DocumentNotDeliveredError(document.challan_no, document.status)
        if document.receipt_recorded_at is not None:
            return DispatchDocumentInfo.from_model(document)

        self._requisitions.lock_many(line.requisition_id for line in document.lines)
        per_book = _quantity_per_book(document)

        with LogContext.bind(actor_id=actor.actor_id, challan_no=document.challan_no):
            stock_rows = self._stock.lock_entries(
                ((destination, book_id) for book_id in per_book), create=True,
            )
            for (_, book_id), entry in stock_rows.items():
                self._stock.apply_locked(
                    entry, per_book[book_id], StockReason.RECEIPT,
                    reference=document.challan_no, actor_id=actor.actor_id,
                )
            document.receipt_recorded_at = self.clock.now()
            document.receipt_recorded_by = actor.actor_id
            self.session.flush()
            self._auditor.record(
                "DispatchDocument", document.challan_no, AuditAction.RECEIPT_RECORDED,
                actor.actor_id,
                {"destination": str(destination), "books": {str(k): v for k, v in per_book.items()}},
            )
            logger.info(
                "dispatch_receipt_recorded",
                extra={"destination": str(destination), "total_quantity": sum(per_book.values())},
            )
        return DispatchDocumentInfo.from_model(document)


def _quantity_per_book(document: DispatchDocument) -> dict[UUID, int]:
    per_book: dict[UUID, int] = defaultdict(int)
    for line in document.lines:
        per_book[line.book_id] += line.quantity
    return per_book
