"""
RequisitionSelector -- listings and counts over requisition lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from textbook_kernel.domain.dtos import RequisitionInfo
from textbook_kernel.domain.hierarchy import Level, NodeRef
from textbook_kernel.domain.reporting import RequisitionStats
from textbook_kernel.domain.requisition import (
    INACTIVE_STATUSES,
    REJECTED_STATUSES,
    RequisitionStatus,
)
from textbook_kernel.exceptions import RequisitionNotFoundError
from textbook_kernel.models.requisition import Requisition
from textbook_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequisitionFilter:
    status: RequisitionStatus | None = None
    awaiting_level: Level | None = None
    school_udise: str | None = None
    block_code: str | None = None
    district_code: str | None = None
    book_id: UUID | None = None
    req_id: str | None = None


def scope_clause(scope: NodeRef | None):
    """WHERE clause restricting requisitions to a hierarchy subtree."""
    if scope is None or scope.level is Level.STATE:
        return None
    if scope.level is Level.DISTRICT:
        return Requisition.district_code == scope.code
    if scope.level is Level.BLOCK:
        return Requisition.block_code == scope.code
    return Requisition.school_udise == scope.code


class RequisitionSelector(BaseSelector[Requisition]):

    def _list(self, *clauses) -> list[RequisitionInfo]:
        stmt = select(Requisition).order_by(Requisition.submitted_at, Requisition.req_id)
        for clause in clauses:
            if clause is not None:
                stmt = stmt.where(clause)
        return [RequisitionInfo.from_model(r) for r in self.session.execute(stmt).scalars()]

    def get(self, requisition_id: UUID) -> RequisitionInfo:
        model = self.session.get(Requisition, requisition_id)
        if model is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return RequisitionInfo.from_model(model)

    def by_req_id(self, req_id: str) -> list[RequisitionInfo]:
        return self._list(Requisition.req_id == req_id)

    def list_by_school(self, udise: str) -> list[RequisitionInfo]:
        return self._list(Requisition.school_udise == udise)

    def active_for(self, udise: str) -> list[RequisitionInfo]:
        """Excludes COMPLETED and every REJECTED_BY_* status."""
        return self._list(
            Requisition.school_udise == udise,
            Requisition.status.notin_([s.value for s in INACTIVE_STATUSES]),
        )

    def list_for_block(self, block_code: str, status: RequisitionStatus | None = None) -> list[RequisitionInfo]:
        return self._list(
            Requisition.block_code == block_code,
            Requisition.status == status.value if status else None,
        )

    def list_for_district(
        self,
        district_code: str,
        reviewed_by_block_only: bool = False,
        status: RequisitionStatus | None = None,
    ) -> list[RequisitionInfo]:
        """
        ``reviewed_by_block_only`` keeps lines the block has remarked on,
        which is how the district queue is presented.
        """
        reviewed = None
        if reviewed_by_block_only:
            reviewed = (Requisition.remarks_by_block.is_not(None)) & (Requisition.remarks_by_block != "")
        return self._list(
            Requisition.district_code == district_code,
            reviewed,
            Requisition.status == status.value if status else None,
        )

    def list_all(self, requisition_filter: RequisitionFilter | None = None) -> list[RequisitionInfo]:
        f = requisition_filter or RequisitionFilter()
        return self._list(
            Requisition.status == f.status.value if f.status else None,
            Requisition.awaiting_level == f.awaiting_level.value if f.awaiting_level else None,
            Requisition.school_udise == f.school_udise if f.school_udise else None,
            Requisition.block_code == f.block_code if f.block_code else None,
            Requisition.district_code == f.district_code if f.district_code else None,
            Requisition.book_id == f.book_id if f.book_id else None,
            Requisition.req_id == f.req_id if f.req_id else None,
        )

    def urgent_for(self, viewer: NodeRef) -> list[RequisitionInfo]:
        """Lines inside ``viewer``'s subtree that wait on its approval."""
        return self._list(
            scope_clause(viewer),
            Requisition.status == RequisitionStatus.PENDING.value,
            Requisition.awaiting_level == viewer.level.value,
        )

    def stats(self, scope: NodeRef | None = None) -> RequisitionStats:
        stmt = select(Requisition.status, func.count()).group_by(Requisition.status)
        clause = scope_clause(scope)
        if clause is not None:
            stmt = stmt.where(clause)
        counts = {status: count for status, count in self.session.execute(stmt).all()}
        rejected = sum(counts.get(s.value, 0) for s in REJECTED_STATUSES)
        return RequisitionStats(
            total=sum(counts.values()),
            pending=counts.get(RequisitionStatus.PENDING.value, 0),
            approved=counts.get(RequisitionStatus.APPROVED.value, 0),
            completed=counts.get(RequisitionStatus.COMPLETED.value, 0),
            rejected=rejected,
        )
