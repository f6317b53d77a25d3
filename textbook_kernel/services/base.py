"""
Common constructor for write-side services.

Services stage changes with ``session.flush()`` and leave commit and
rollback to whoever opened the session (UnitOfWork, ``session_scope`` or
the test harness).  A dispatch touching many stock rows and requisitions is
therefore all-or-nothing: either the caller commits every flushed change
or none of them survive.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from textbook_kernel.db.base import Base
from textbook_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Parameterized by the model the service owns; listings live in selectors."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
