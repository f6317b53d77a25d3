"""
Declarative bases for the kernel's ORM models.

Conventions every table inherits:
    - ``id``: uuid4 primary key, stored as a 36-character string so the same
      schema runs on SQLite and PostgreSQL.
    - ``int`` / ``Quantity`` columns are BigInteger.  Copies of a book are
      whole numbers and are never stored as Numeric or float.
    - ``datetime`` columns are timezone-aware.

``TrackedBase`` adds server-stamped ``created_at`` / ``updated_at`` for
master data (books, hierarchy nodes, requisitions, stock entries).  Append
only rows (audit events, stock movements) derive from ``Base`` directly.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from textbook_kernel.db.types import LongText, OwnerCode, Quantity, ShortCode


class UUIDString(TypeDecorator):
    """Python ``UUID`` in, ``UUID`` out; ``CHAR``-like string on the wire."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        datetime: DateTime(timezone=True),
        int: BigInteger,
        Quantity: BigInteger,
        OwnerCode: String(32),
        ShortCode: String(50),
        LongText: String(4000),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
