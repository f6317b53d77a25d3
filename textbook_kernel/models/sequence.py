"""Counter rows behind SequenceService."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from textbook_kernel.db.base import Base


class SequenceCounter(Base):
    """
    One named counter, e.g. ``requisition`` or
    ``challan:STATE:16:20240601``.  ``current_value`` is the last value
    handed out.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(120), unique=True)
    current_value: Mapped[int] = mapped_column(default=0)
