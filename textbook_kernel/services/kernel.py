"""
TextbookKernel -- session-free facade over the services and selectors.

Responsibility:
    Exposes the external operations (catalog, hierarchy, requisitions,
    stock, dispatch, reports) to callers that do not manage sessions.
    Every write runs in its own UnitOfWork: one transaction, committed on
    success, rolled back on error, retried on write conflicts.  Reads run
    in a short read-only unit of work and return DTOs.

Architecture position:
    Kernel > Services -- outermost kernel layer.  Configuration arrives as
    a FulfillmentPolicy; the kernel never reads configuration files.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from textbook_kernel.domain.clock import Clock, SystemClock
from textbook_kernel.domain.dispatch import DispatchLineRequest, DispatchPlan
from textbook_kernel.domain.dtos import (
    AuditEventInfo,
    BookInfo,
    DispatchDocumentInfo,
    RequisitionInfo,
    SchoolInfo,
    StockBalance,
    StockMovementInfo,
    WindowStatus,
)
from textbook_kernel.domain.hierarchy import Actor, HierarchyNode, Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.reporting import (
    DetailedRow,
    ReportSummary,
    RequisitionStats,
    RollupRow,
)
from textbook_kernel.domain.requisition import RequisitionStatus
from textbook_kernel.logging_config import LogContext
from textbook_kernel.selectors.catalog_selector import BookFilter, CatalogSelector
from textbook_kernel.selectors.dispatch_selector import DispatchFilter, DispatchSelector
from textbook_kernel.selectors.hierarchy_selector import HierarchySelector
from textbook_kernel.selectors.reconciliation_reporter import ReconciliationReporter
from textbook_kernel.selectors.requisition_selector import RequisitionFilter, RequisitionSelector
from textbook_kernel.selectors.stock_selector import StockSelector
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.catalog_service import CatalogService
from textbook_kernel.services.dispatch_service import DispatchService
from textbook_kernel.services.hierarchy_service import HierarchyService
from textbook_kernel.services.reference_data_loader import ReferenceDataLoader
from textbook_kernel.services.requisition_service import RequisitionService
from textbook_kernel.services.requisition_window_service import RequisitionWindowService
from textbook_kernel.services.stock_ledger import StockLedger
from textbook_kernel.services.unit_of_work import UnitOfWork

T = TypeVar("T")


class TextbookKernel:
    """
    Usage:
        kernel = TextbookKernel(get_session_factory(), build_policy(config))
        line = kernel.create_requisition("16010100101", book.id, 100, school_actor)
        kernel.approve_requisition(line.id, block_actor)
        kernel.approve_requisition(line.id, district_actor)
        doc = kernel.issue_dispatch(state_actor, district_node,
                                    [DispatchLineRequest(line.id, 60)])
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: FulfillmentPolicy | None = None,
        clock: Clock | None = None,
        max_attempts: int = 5,
        backoff_seconds: float = 0.05,
    ):
        self._policy = policy or FulfillmentPolicy()
        self._clock = clock or SystemClock()
        self._uow = UnitOfWork(session_factory, max_attempts, backoff_seconds)

    @property
    def policy(self) -> FulfillmentPolicy:
        return self._policy

    def _run(self, operation: str, work: Callable[[Session], T], actor: Actor | None = None) -> T:
        if actor is None:
            return self._uow.run(work, operation=operation)
        with LogContext.bind(actor_id=actor.actor_id, actor_level=actor.level.value):
            return self._uow.run(work, operation=operation)

    # Catalog

    def register_book(
        self,
        title: str,
        class_name: str,
        subject: str,
        category: str,
        rate: Decimal | int | str,
        actor_id: str,
        academic_year: str | None = None,
    ) -> BookInfo:
        year = academic_year or self._policy.academic_year
        return self._run(
            "register_book",
            lambda s: CatalogService(s, self._clock).register_book(
                title, class_name, subject, category, rate, year, actor_id,
            ),
        )

    def update_book(self, book_id: UUID, actor_id: str, **changes: object) -> BookInfo:
        return self._run(
            "update_book",
            lambda s: CatalogService(s, self._clock).update_book(book_id, actor_id, **changes),
        )

    def toggle_book_status(self, book_id: UUID, actor_id: str) -> BookInfo:
        return self._run(
            "toggle_book_status",
            lambda s: CatalogService(s, self._clock).toggle_status(book_id, actor_id),
        )

    def delete_book(self, book_id: UUID, actor_id: str) -> None:
        self._run(
            "delete_book",
            lambda s: CatalogService(s, self._clock).delete_book(book_id, actor_id),
        )

    def list_books(self, book_filter: BookFilter | None = None) -> list[BookInfo]:
        return self._run("list_books", lambda s: CatalogSelector(s).list_books(book_filter))

    def search_books(self, query: str) -> list[BookInfo]:
        return self._run("search_books", lambda s: CatalogSelector(s).search(query))

    # Hierarchy

    def load_reference_data(
        self,
        districts: list[tuple[str, str]],
        blocks: list[tuple[str, str, str]],
    ) -> tuple[int, int]:
        return self._run(
            "load_reference_data",
            lambda s: ReferenceDataLoader(s, self._policy).load(districts, blocks),
        )

    def register_district(self, code: str, name: str) -> HierarchyNode:
        return self._run(
            "register_district",
            lambda s: HierarchyService(s, self._policy, self._clock).register_district(code, name),
        )

    def register_block(self, code: str, name: str, district_code: str) -> HierarchyNode:
        return self._run(
            "register_block",
            lambda s: HierarchyService(s, self._policy, self._clock).register_block(
                code, name, district_code,
            ),
        )

    def register_school(
        self, udise: str, name: str, block_code: str, is_private: bool = False,
    ) -> SchoolInfo:
        return self._run(
            "register_school",
            lambda s: HierarchyService(s, self._policy, self._clock).register_school(
                udise, name, block_code, is_private,
            ),
        )

    def set_class_enrollment(self, udise: str, class_name: str, students: int) -> int:
        return self._run(
            "set_class_enrollment",
            lambda s: HierarchyService(s, self._policy, self._clock).set_class_enrollment(
                udise, class_name, students,
            ),
        )

    def list_districts(self) -> list[HierarchyNode]:
        return self._run("list_districts", lambda s: HierarchySelector(s, self._policy).list_districts())

    def list_blocks(self, district_code: str | None = None) -> list[HierarchyNode]:
        return self._run(
            "list_blocks",
            lambda s: HierarchySelector(s, self._policy).list_blocks(district_code),
        )

    def list_schools(
        self,
        district_code: str | None = None,
        block_code: str | None = None,
        is_private: bool | None = None,
    ) -> list[SchoolInfo]:
        return self._run(
            "list_schools",
            lambda s: HierarchySelector(s, self._policy).list_schools(
                district_code, block_code, is_private,
            ),
        )

    # Requisition windows

    def set_window(
        self, level: Level, starts_at: datetime, ends_at: datetime, actor: Actor,
    ) -> WindowStatus:
        return self._run(
            "set_window",
            lambda s: RequisitionWindowService(s, self._clock).set_window(
                level, starts_at, ends_at, actor,
            ),
            actor,
        )

    def window_status(self, level: Level) -> WindowStatus:
        return self._run(
            "window_status",
            lambda s: RequisitionWindowService(s, self._clock).check_status(level),
        )

    # Requisitions

    def _requisitions(self, session: Session) -> RequisitionService:
        return RequisitionService(session, self._policy, self._clock)

    def create_requisition(
        self,
        school_udise: str,
        book_id: UUID,
        quantity: int,
        actor: Actor,
        req_id: str | None = None,
    ) -> RequisitionInfo:
        return self._run(
            "create_requisition",
            lambda s: self._requisitions(s).create(school_udise, book_id, quantity, actor, req_id),
            actor,
        )

    def create_requisition_batch(
        self,
        school_udise: str,
        lines: list[tuple[UUID, int]],
        actor: Actor,
        req_id: str | None = None,
    ) -> list[RequisitionInfo]:
        return self._run(
            "create_requisition_batch",
            lambda s: self._requisitions(s).create_batch(school_udise, lines, actor, req_id),
            actor,
        )

    def approve_requisition(
        self, requisition_id: UUID, actor: Actor, remarks: str | None = None,
    ) -> RequisitionInfo:
        return self._run(
            "approve_requisition",
            lambda s: self._requisitions(s).approve(requisition_id, actor, remarks),
            actor,
        )

    def reject_requisition(
        self, requisition_id: UUID, actor: Actor, remarks: str | None = None,
    ) -> RequisitionInfo:
        return self._run(
            "reject_requisition",
            lambda s: self._requisitions(s).reject(requisition_id, actor, remarks),
            actor,
        )

    def set_remarks(self, requisition_id: UUID, actor: Actor, text: str) -> RequisitionInfo:
        return self._run(
            "set_remarks",
            lambda s: self._requisitions(s).set_remarks(requisition_id, actor, text),
            actor,
        )

    def update_requisition(
        self,
        requisition_id: UUID,
        actor: Actor,
        status: str | RequisitionStatus | None = None,
        received: int | None = None,
        remarks: str | None = None,
    ) -> RequisitionInfo:
        return self._run(
            "update_requisition",
            lambda s: self._requisitions(s).update(
                requisition_id, actor, status=status, received=received, remarks=remarks,
            ),
            actor,
        )

    def get_requisition(self, requisition_id: UUID) -> RequisitionInfo:
        return self._run("get_requisition", lambda s: RequisitionSelector(s).get(requisition_id))

    def list_requisitions_by_school(self, udise: str) -> list[RequisitionInfo]:
        return self._run(
            "list_requisitions_by_school",
            lambda s: RequisitionSelector(s).list_by_school(udise),
        )

    def list_requisitions(self, requisition_filter: RequisitionFilter | None = None) -> list[RequisitionInfo]:
        return self._run(
            "list_requisitions",
            lambda s: RequisitionSelector(s).list_all(requisition_filter),
        )

    def requisition_stats(self, scope: NodeRef | None = None) -> RequisitionStats:
        return self._run("requisition_stats", lambda s: RequisitionSelector(s).stats(scope))

    # Stock

    def get_stock(self, owner: NodeRef, book_id: UUID) -> int:
        return self._run("get_stock", lambda s: StockSelector(s).get(owner, book_id))

    def list_stock(
        self,
        level: Level | None = None,
        owner_id: str | None = None,
        book_id: UUID | None = None,
    ) -> list[StockBalance]:
        return self._run(
            "list_stock",
            lambda s: StockSelector(s).list_balances(level, owner_id, book_id),
        )

    def stock_movements(self, owner: NodeRef, book_id: UUID | None = None) -> list[StockMovementInfo]:
        return self._run("stock_movements", lambda s: StockSelector(s).movements(owner, book_id))

    def adjust_stock(
        self,
        owner: NodeRef,
        book_id: UUID,
        delta: int,
        actor_id: str | None = None,
        reference: str | None = None,
    ) -> int:
        return self._run(
            "adjust_stock",
            lambda s: StockLedger(s, self._clock).adjust(
                owner, book_id, delta, reference=reference, actor_id=actor_id,
            ),
        )

    def upsert_stock(self, owner: NodeRef, book_id: UUID, quantity: int, actor_id: str) -> int:
        return self._run(
            "upsert_stock",
            lambda s: StockLedger(s, self._clock).upsert(owner, book_id, quantity, actor_id),
        )

    def record_backlog(
        self,
        owner: NodeRef,
        book_id: UUID,
        quantity: int,
        actor_id: str,
        reference: str | None = None,
    ) -> int:
        return self._run(
            "record_backlog",
            lambda s: StockLedger(s, self._clock).record_backlog(
                owner, book_id, quantity, actor_id, reference,
            ),
        )

    # Dispatch

    def _dispatch(self, session: Session) -> DispatchService:
        return DispatchService(session, self._policy, self._clock)

    def plan_dispatch(self, source: NodeRef, requisition_ids: list[UUID]) -> DispatchPlan:
        return self._run(
            "plan_dispatch",
            lambda s: self._dispatch(s).plan(source, requisition_ids),
        )

    def issue_dispatch(
        self,
        actor: Actor,
        destination: NodeRef,
        lines: list[DispatchLineRequest],
        **kwargs,
    ) -> DispatchDocumentInfo:
        return self._run(
            "issue_dispatch",
            lambda s: self._dispatch(s).issue(actor, destination, lines, **kwargs),
            actor,
        )

    def issue_plan(
        self, actor: Actor, destination: NodeRef, plan: DispatchPlan, **kwargs,
    ) -> DispatchDocumentInfo:
        return self._run(
            "issue_plan",
            lambda s: self._dispatch(s).issue_plan(actor, destination, plan, **kwargs),
            actor,
        )

    def mark_in_transit(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._run(
            "mark_in_transit", lambda s: self._dispatch(s).mark_in_transit(document_ref, actor), actor,
        )

    def mark_delivered(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._run(
            "mark_delivered", lambda s: self._dispatch(s).mark_delivered(document_ref, actor), actor,
        )

    def cancel_dispatch(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._run(
            "cancel_dispatch", lambda s: self._dispatch(s).cancel(document_ref, actor), actor,
        )

    def record_receipt(self, document_ref: UUID | str, actor: Actor) -> DispatchDocumentInfo:
        return self._run(
            "record_receipt", lambda s: self._dispatch(s).record_receipt(document_ref, actor), actor,
        )

    def get_dispatch(self, document_ref: UUID | str) -> DispatchDocumentInfo:
        return self._run("get_dispatch", lambda s: DispatchSelector(s).get(document_ref))

    def list_dispatches(self, dispatch_filter: DispatchFilter | None = None) -> list[DispatchDocumentInfo]:
        return self._run("list_dispatches", lambda s: DispatchSelector(s).list_all(dispatch_filter))

    # Reports

    def _reporter(self, session: Session) -> ReconciliationReporter:
        return ReconciliationReporter(session, self._policy)

    def district_report(self) -> list[RollupRow]:
        return self._run("district_report", lambda s: self._reporter(s).district_wise())

    def block_report(self, district_code: str | None = None) -> list[RollupRow]:
        return self._run("block_report", lambda s: self._reporter(s).block_wise(district_code))

    def school_report(self, block_code: str) -> list[RollupRow]:
        return self._run("school_report", lambda s: self._reporter(s).school_wise(block_code))

    def detailed_report(self, scope: NodeRef) -> list[DetailedRow]:
        return self._run("detailed_report", lambda s: self._reporter(s).detailed(scope))

    def summary(self, scope: NodeRef | None = None) -> ReportSummary:
        return self._run("summary", lambda s: self._reporter(s).summary(scope))

    # Audit

    def audit_history(self, entity_type: str, entity_id: object) -> list[AuditEventInfo]:
        return self._run(
            "audit_history",
            lambda s: [
                AuditEventInfo.from_model(e)
                for e in AuditorService(s, self._clock).history(entity_type, entity_id)
            ],
        )
