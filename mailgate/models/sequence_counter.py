# mailgate/models/sequence_counter.py
from typing import Optional

from sqlalchemy import String, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailgate.models.base import Base, IdMixin, TimestampMixin
from mailgate.models.enums import ItemStatus


class SequenceCounter(IdMixin, TimestampMixin, Base):
    __tablename__ = "sequence_counters"
    __soft_delete__ = True

    name: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_counter_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sequence_counters.id"), nullable=True)
    next_counter_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sequence_counters.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ItemStatus.ACTIVE.value)

    previous_counter: Mapped[Optional["SequenceCounter"]] = relationship(
        remote_side="SequenceCounter.id", foreign_keys=[previous_counter_id], lazy="raise"
    )
    next_counter: Mapped[Optional["SequenceCounter"]] = relationship(
        remote_side="SequenceCounter.id", foreign_keys=[next_counter_id], lazy="raise"
    )
