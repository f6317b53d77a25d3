"""
Read side of the kernel.

Selectors run queries on a caller-owned session and hand back frozen DTOs
(``textbook_kernel.domain.dtos``), never ORM instances, so nothing a caller
does with a result can leak into the session.  They never add, flush or
commit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from textbook_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session
