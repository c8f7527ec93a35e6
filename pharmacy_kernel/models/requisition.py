"""
Module: pharmacy_kernel.models.requisition
Responsibility: Counter rows for requisition number allocation.

Each row is one (prefix, period) sequence, e.g. ("REQ", "202506").  Rows
are locked with SELECT ... FOR UPDATE by RequisitionNumberService.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base


class RequisitionCounter(Base):
    __tablename__ = "requisition_counters"

    __table_args__ = (
        UniqueConstraint("prefix", "period", name="uq_requisition_counter"),
    )

    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    # YYYYMM
    period: Mapped[str] = mapped_column(String(6), nullable=False)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)
