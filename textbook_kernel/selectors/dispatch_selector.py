"""
DispatchSelector -- challan lookups and listings.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from textbook_kernel.domain.dispatch import DocumentStatus
from textbook_kernel.domain.dtos import DispatchDocumentInfo
from textbook_kernel.domain.hierarchy import NodeRef
from textbook_kernel.exceptions import DispatchDocumentNotFoundError
from textbook_kernel.models.dispatch import DispatchDocument, DispatchLine
from textbook_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class DispatchFilter:
    source: NodeRef | None = None
    destination: NodeRef | None = None
    status: DocumentStatus | None = None
    requisition_id: UUID | None = None
    academic_year: str | None = None


class DispatchSelector(BaseSelector[DispatchDocument]):

    def get(self, document_ref: UUID | str) -> DispatchDocumentInfo:
        """Look up by document id or by challan number."""
        if isinstance(document_ref, UUID):
            clause = DispatchDocument.id == document_ref
        else:
            clause = DispatchDocument.challan_no == document_ref
        document = self.session.execute(
            select(DispatchDocument).where(clause)
        ).scalar_one_or_none()
        if document is None:
            raise DispatchDocumentNotFoundError(str(document_ref))
        return DispatchDocumentInfo.from_model(document)

    def list_all(self, dispatch_filter: DispatchFilter | None = None) -> list[DispatchDocumentInfo]:
        f = dispatch_filter or DispatchFilter()
        stmt = select(DispatchDocument).order_by(DispatchDocument.issued_at, DispatchDocument.challan_no)
        if f.source is not None:
            stmt = stmt.where(
                DispatchDocument.source_level == f.source.level.value,
                DispatchDocument.source_owner == f.source.code,
            )
        if f.destination is not None:
            stmt = stmt.where(
                DispatchDocument.destination_level == f.destination.level.value,
                DispatchDocument.destination_owner == f.destination.code,
            )
        if f.status is not None:
            stmt = stmt.where(DispatchDocument.status == f.status.value)
        if f.academic_year is not None:
            stmt = stmt.where(DispatchDocument.academic_year == f.academic_year)
        if f.requisition_id is not None:
            stmt = stmt.where(
                DispatchDocument.id.in_(
                    select(DispatchLine.document_id).where(
                        DispatchLine.requisition_id == f.requisition_id
                    )
                )
            )
        return [DispatchDocumentInfo.from_model(d) for d in self.session.execute(stmt).scalars()]

    def dispatched_total(self, requisition_id: UUID) -> int:
        """
        Copies live challans added to one requisition's ``received``.

        Forwarded copies moving further down the chain are not counted again.
        """
        total = self.session.execute(
            select(func.coalesce(func.sum(DispatchLine.counted_quantity), 0))
            .join(DispatchDocument, DispatchDocument.id == DispatchLine.document_id)
            .where(
                DispatchLine.requisition_id == requisition_id,
                DispatchDocument.status != DocumentStatus.CANCELLED.value,
            )
        ).scalar_one()
        return int(total)

    def _line_sums(self, amount, requisition_ids: list[UUID], *clauses) -> dict[UUID, int]:
        stmt = (
            select(DispatchLine.requisition_id, func.coalesce(func.sum(amount), 0))
            .join(DispatchDocument, DispatchDocument.id == DispatchLine.document_id)
            .where(DispatchLine.requisition_id.in_(requisition_ids), *clauses)
            .group_by(DispatchLine.requisition_id)
        )
        return {rid: int(total) for rid, total in self.session.execute(stmt).all()}

    def forwarding_credit(self, holder: NodeRef, requisition_ids: Iterable[UUID]) -> dict[UUID, int]:
        """
        Copies ``holder`` holds for each requisition that are already part
        of its ``received``.

        Credit comes from challans received into ``holder`` and from the
        counted part of challans it issued and then cancelled.  Copies it
        has forwarded on live challans use the credit up.
        """
        ids = list(requisition_ids)
        if not ids:
            return {}
        from_source = (
            DispatchDocument.source_level == holder.level.value,
            DispatchDocument.source_owner == holder.code,
        )
        received_in = self._line_sums(
            DispatchLine.quantity, ids,
            DispatchDocument.destination_level == holder.level.value,
            DispatchDocument.destination_owner == holder.code,
            DispatchDocument.receipt_recorded_at.is_not(None),
        )
        returned = self._line_sums(
            DispatchLine.counted_quantity, ids,
            *from_source, DispatchDocument.status == DocumentStatus.CANCELLED.value,
        )
        forwarded = self._line_sums(
            DispatchLine.quantity - DispatchLine.counted_quantity, ids,
            *from_source, DispatchDocument.status != DocumentStatus.CANCELLED.value,
        )
        return {
            rid: max(0, received_in.get(rid, 0) + returned.get(rid, 0) - forwarded.get(rid, 0))
            for rid in ids
        }
