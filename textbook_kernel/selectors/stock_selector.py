"""
StockSelector -- balance and movement listings.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from textbook_kernel.domain.dtos import StockBalance, StockMovementInfo
from textbook_kernel.domain.hierarchy import Level, NodeRef
from textbook_kernel.models.stock import StockEntry, StockMovement
from textbook_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector[StockEntry]):

    def get(self, owner: NodeRef, book_id: UUID) -> int:
        quantity = self.session.execute(
            select(StockEntry.quantity).where(
                StockEntry.level == owner.level.value,
                StockEntry.owner_id == owner.code,
                StockEntry.book_id == book_id,
            )
        ).scalar_one_or_none()
        return quantity or 0

    def list_balances(
        self,
        level: Level | None = None,
        owner_id: str | None = None,
        book_id: UUID | None = None,
        include_empty: bool = False,
    ) -> list[StockBalance]:
        stmt = select(StockEntry).order_by(StockEntry.level, StockEntry.owner_id, StockEntry.book_id)
        if level is not None:
            stmt = stmt.where(StockEntry.level == level.value)
        if owner_id is not None:
            stmt = stmt.where(StockEntry.owner_id == owner_id)
        if book_id is not None:
            stmt = stmt.where(StockEntry.book_id == book_id)
        if not include_empty:
            stmt = stmt.where(StockEntry.quantity > 0)
        return [StockBalance.from_model(e) for e in self.session.execute(stmt).scalars()]

    def movements(self, owner: NodeRef, book_id: UUID | None = None) -> list[StockMovementInfo]:
        """Movement journal for one node, oldest first."""
        stmt = (
            select(StockMovement)
            .where(
                StockMovement.level == owner.level.value,
                StockMovement.owner_id == owner.code,
            )
            .order_by(StockMovement.occurred_at)
        )
        if book_id is not None:
            stmt = stmt.where(StockMovement.book_id == book_id)
        return [StockMovementInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    def movements_for_reference(self, reference: str) -> list[StockMovementInfo]:
        stmt = select(StockMovement).where(StockMovement.reference == reference)
        return [StockMovementInfo.from_model(m) for m in self.session.execute(stmt).scalars()]
