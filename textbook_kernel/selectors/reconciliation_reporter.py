"""
ReconciliationReporter -- requirement vs. dispatched vs. stock rollups.

Definitions used by every report:
    requirement:  quantity of every requisition that is not rejected, plus
                  ``received`` of rejected ones (copies already sent stay
                  in the requirement they were sent against).
    dispatched:   sum of ``received`` over the requisitions inside the
                  scope, rejected ones included.  Forwarded copies moving
                  between tiers are not counted again.
    available:    balance held at the scope node's own ledger.
    distributed:  same as dispatched; the summary's name for it.

Reports are built from grouped aggregate queries, one per figure, and
merged in Python keyed by node code.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from textbook_kernel.domain.hierarchy import Level, NodeRef
from textbook_kernel.domain.policy import FulfillmentPolicy
from textbook_kernel.domain.reporting import (
    DetailedRow,
    ReportSummary,
    RequisitionStats,
    RollupRow,
    fulfillment_rate,
)
from textbook_kernel.domain.requisition import REJECTED_STATUSES, RequisitionStatus
from textbook_kernel.models.catalog import Book
from textbook_kernel.models.hierarchy import Block, ClassEnrollment, District, School
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.models.stock import StockEntry
from textbook_kernel.selectors.base import BaseSelector
from textbook_kernel.selectors.requisition_selector import RequisitionSelector, scope_clause

_REJECTED = [s.value for s in REJECTED_STATUSES]

_REQUIREMENT = case(
    (Requisition.status.in_(_REJECTED), Requisition.received),
    else_=Requisition.quantity,
)


def _where(stmt, *clauses):
    for clause in clauses:
        if clause is not None:
            stmt = stmt.where(clause)
    return stmt


def _school_clause(scope: NodeRef | None):
    if scope is None or scope.level is Level.STATE:
        return None
    if scope.level is Level.DISTRICT:
        return School.district_code == scope.code
    if scope.level is Level.BLOCK:
        return School.block_code == scope.code
    return School.udise == scope.code


class ReconciliationReporter(BaseSelector[Requisition]):
    """
    Usage:
        reporter = ReconciliationReporter(session, policy)
        for row in reporter.block_wise(district_code="1601"):
            print(row.name, row.requirement, row.dispatched, row.shortfall)
    """

    def __init__(self, session: Session, policy: FulfillmentPolicy):
        super().__init__(session)
        self._policy = policy

    # Grouped figures

    def _requirement_by(self, column, *clauses) -> dict[str, int]:
        stmt = (
            select(column, func.coalesce(func.sum(_REQUIREMENT), 0))
            .group_by(column)
        )
        stmt = _where(stmt, *clauses)
        return {key: int(total) for key, total in self.session.execute(stmt).all()}

    def _dispatched_by(self, column, *clauses) -> dict[str, int]:
        stmt = (
            select(column, func.coalesce(func.sum(Requisition.received), 0))
            .group_by(column)
        )
        stmt = _where(stmt, *clauses)
        return {key: int(total) for key, total in self.session.execute(stmt).all()}

    def _stock_by_owner(self, level: Level, book_id: UUID | None = None) -> dict[str, int]:
        stmt = (
            select(StockEntry.owner_id, func.coalesce(func.sum(StockEntry.quantity), 0))
            .where(StockEntry.level == level.value)
            .group_by(StockEntry.owner_id)
        )
        if book_id is not None:
            stmt = stmt.where(StockEntry.book_id == book_id)
        return {owner: int(total) for owner, total in self.session.execute(stmt).all()}

    def _schools_by(self, column, *clauses) -> dict[str, int]:
        stmt = _where(select(column, func.count(School.id)).group_by(column), *clauses)
        return {key: int(count) for key, count in self.session.execute(stmt).all()}

    def _enrollment_by(self, column, *clauses) -> dict[str, int]:
        stmt = (
            select(column, func.coalesce(func.sum(ClassEnrollment.students), 0))
            .select_from(ClassEnrollment)
            .join(School, School.udise == ClassEnrollment.school_udise)
            .group_by(column)
        )
        stmt = _where(stmt, *clauses)
        return {key: int(total) for key, total in self.session.execute(stmt).all()}

    def _rollup(self, level: Level, nodes, school_column, requisition_column, *, school_filter=None, requisition_filter=None) -> list[RollupRow]:
        schools = self._schools_by(school_column, school_filter)
        enrollment = self._enrollment_by(school_column, school_filter)
        requirement = self._requirement_by(requisition_column, requisition_filter)
        dispatched = self._dispatched_by(requisition_column, requisition_filter)
        stock = self._stock_by_owner(level)
        return [
            RollupRow(
                scope=NodeRef(level, code),
                name=name,
                school_count=schools.get(code, 0),
                enrollment=enrollment.get(code, 0),
                requirement=requirement.get(code, 0),
                dispatched=dispatched.get(code, 0),
                available_stock=stock.get(code, 0),
            )
            for code, name in nodes
        ]

    # Reports

    def district_wise(self) -> list[RollupRow]:
        districts = self.session.execute(
            select(District.code, District.name).order_by(District.code)
        ).all()
        return self._rollup(
            Level.DISTRICT, districts, School.district_code, Requisition.district_code,
        )

    def block_wise(self, district_code: str | None = None) -> list[RollupRow]:
        stmt = select(Block.code, Block.name).order_by(Block.code)
        school_filter = requisition_filter = None
        if district_code is not None:
            stmt = stmt.where(Block.district_code == district_code)
            school_filter = School.district_code == district_code
            requisition_filter = Requisition.district_code == district_code
        return self._rollup(
            Level.BLOCK, self.session.execute(stmt).all(),
            School.block_code, Requisition.block_code,
            school_filter=school_filter, requisition_filter=requisition_filter,
        )

    def school_wise(self, block_code: str) -> list[RollupRow]:
        """
        One row per school in the block.  Private schools report against
        their own ledger level.
        """
        schools = self.session.execute(
            select(School.udise, School.name, School.is_private)
            .where(School.block_code == block_code)
            .order_by(School.udise)
        ).all()
        enrollment = self._enrollment_by(School.udise, School.block_code == block_code)
        requirement = self._requirement_by(Requisition.school_udise, Requisition.block_code == block_code)
        dispatched = self._dispatched_by(Requisition.school_udise, Requisition.block_code == block_code)
        stock = {
            Level.SCHOOL: self._stock_by_owner(Level.SCHOOL),
            Level.PRIVATE_SCHOOL: self._stock_by_owner(Level.PRIVATE_SCHOOL),
        }
        rows = []
        for udise, name, is_private in schools:
            level = Level.PRIVATE_SCHOOL if is_private else Level.SCHOOL
            rows.append(RollupRow(
                scope=NodeRef(level, udise),
                name=name,
                school_count=1,
                enrollment=enrollment.get(udise, 0),
                requirement=requirement.get(udise, 0),
                dispatched=dispatched.get(udise, 0),
                available_stock=stock[level].get(udise, 0),
            ))
        return rows

    def detailed(self, scope: NodeRef) -> list[DetailedRow]:
        """Per-book figures inside ``scope``, ordered by class then subject."""
        clause = scope_clause(scope)
        requirement = self._requirement_by(Requisition.book_id, clause)
        dispatched = self._dispatched_by(Requisition.book_id, clause)
        stock_rows = self.session.execute(
            select(StockEntry.book_id, StockEntry.quantity).where(
                StockEntry.level == scope.level.value,
                StockEntry.owner_id == scope.code,
            )
        ).all()
        stock = {book_id: int(quantity) for book_id, quantity in stock_rows}

        book_ids = {
            book_id
            for figures in (requirement, dispatched, stock)
            for book_id, quantity in figures.items()
            if quantity > 0
        }
        if not book_ids:
            return []
        books = self.session.execute(
            select(Book).where(Book.id.in_(book_ids)).order_by(Book.class_name, Book.subject, Book.title)
        ).scalars()
        return [
            DetailedRow(
                book_id=book.id,
                class_name=book.class_name,
                subject=book.subject,
                title=book.title,
                requirement=requirement.get(book.id, 0),
                dispatched=dispatched.get(book.id, 0),
                available_stock=stock.get(book.id, 0),
            )
            for book in books
        ]

    def summary(self, scope: NodeRef | None = None) -> ReportSummary:
        school_filter = _school_clause(scope)
        requisition_filter = scope_clause(scope)

        total_schools = self.session.execute(
            _where(select(func.count(School.id)), school_filter)
        ).scalar_one()
        total_blocks = self.session.execute(
            _where(select(func.count(func.distinct(School.block_code))), school_filter)
        ).scalar_one()
        if scope is None or scope.level in (Level.STATE, Level.DISTRICT):
            # Blocks without schools still count at state and district scope
            block_stmt = select(func.count(Block.id))
            if scope is not None and scope.level is Level.DISTRICT:
                block_stmt = block_stmt.where(Block.district_code == scope.code)
            total_blocks = self.session.execute(block_stmt).scalar_one()
        enrollment = self.session.execute(
            _where(
                select(func.coalesce(func.sum(ClassEnrollment.students), 0))
                .join(School, School.udise == ClassEnrollment.school_udise),
                school_filter,
            )
        ).scalar_one()
        requisitioned, distributed = self.session.execute(
            _where(
                select(
                    func.coalesce(func.sum(_REQUIREMENT), 0),
                    func.coalesce(func.sum(Requisition.received), 0),
                ),
                requisition_filter,
            )
        ).one()
        pending = self.session.execute(
            _where(
                select(func.count(Requisition.id))
                .where(Requisition.status == RequisitionStatus.PENDING.value),
                requisition_filter,
            )
        ).scalar_one()
        return ReportSummary(
            total_schools=int(total_schools),
            total_blocks=int(total_blocks),
            total_enrollment=int(enrollment),
            total_books_requisitioned=int(requisitioned),
            total_books_distributed=int(distributed),
            pending_requisitions=int(pending),
            overall_fulfillment_rate=fulfillment_rate(int(distributed), int(requisitioned)),
        )

    def requisition_stats(self, scope: NodeRef | None = None) -> RequisitionStats:
        return RequisitionSelector(self.session).stats(scope)
