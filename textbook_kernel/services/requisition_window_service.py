"""
RequisitionWindowService -- per-level submission/review windows.

Responsibility:
    STATE users open and close the periods during which schools may submit
    requisitions and blocks/districts may review them.  Other services ask
    ``assert_open`` before mutating.

Invariants enforced:
    - STATE is never restricted.
    - A level with no configured window is open.
    - Private schools share the SCHOOL window.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from textbook_kernel.domain.clock import Clock
from textbook_kernel.domain.dtos import WindowStatus
from textbook_kernel.domain.hierarchy import Actor, Level
from textbook_kernel.domain.window import as_utc, evaluate_window, window_level
from textbook_kernel.exceptions import (
    OutOfScopeError,
    RequisitionWindowClosedError,
    ValidationError,
)
from textbook_kernel.logging_config import get_logger
from textbook_kernel.models.audit_event import AuditAction
from textbook_kernel.models.requisition import RequisitionWindow
from textbook_kernel.services.auditor_service import AuditorService
from textbook_kernel.services.base import BaseService

logger = get_logger("services.requisition_window")


class RequisitionWindowService(BaseService[RequisitionWindow]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._auditor = AuditorService(session, self.clock)

    def _row(self, level: Level) -> RequisitionWindow | None:
        return self.session.execute(
            select(RequisitionWindow).where(RequisitionWindow.level == level.value)
        ).scalar_one_or_none()

    def set_window(
        self,
        level: Level,
        starts_at: datetime,
        ends_at: datetime,
        actor: Actor,
    ) -> WindowStatus:
        """Open (or move) the window for ``level``.  STATE only."""
        if actor.level is not Level.STATE:
            raise OutOfScopeError(str(actor.node), "STATE window management")
        governed = window_level(level)
        if governed is None:
            raise ValidationError(f"{level.value} has no requisition window")
        if as_utc(ends_at) <= as_utc(starts_at):
            raise ValidationError("Window end must be after its start")

        row = self._row(governed)
        if row is None:
            row = RequisitionWindow(
                level=governed.value, starts_at=starts_at, ends_at=ends_at,
                updated_by=actor.actor_id,
            )
            self.session.add(row)
        else:
            row.starts_at, row.ends_at, row.updated_by = starts_at, ends_at, actor.actor_id
        self.session.flush()
        self._auditor.record(
            "RequisitionWindow", governed.value, AuditAction.WINDOW_SET, actor.actor_id,
            {"starts_at": starts_at, "ends_at": ends_at},
        )
        logger.info(
            "requisition_window_set",
            extra={"window_level": governed.value, "starts_at": starts_at, "ends_at": ends_at},
        )
        return self.check_status(governed)

    def clear_window(self, level: Level, actor: Actor) -> bool:
        if actor.level is not Level.STATE:
            raise OutOfScopeError(str(actor.node), "STATE window management")
        governed = window_level(level)
        row = self._row(governed) if governed else None
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        logger.info("requisition_window_cleared", extra={"window_level": governed.value})
        return True

    def check_status(self, level: Level) -> WindowStatus:
        governed = window_level(level)
        row = self._row(governed) if governed else None
        return evaluate_window(
            level,
            row.starts_at if row else None,
            row.ends_at if row else None,
            self.clock.now(),
        )

    def assert_open(self, level: Level) -> None:
        """
        Raises:
            RequisitionWindowClosedError: ``level`` has a window and it is
                not currently open.
        """
        status = self.check_status(level)
        if not status.is_open:
            raise RequisitionWindowClosedError(level.value, status.message)
