"""
Module: pharmacy_kernel.models.drug
Responsibility: ORM persistence for the drug catalog.

Architecture position: Kernel > Models.  May import from db/base.py only.

The catalog is owned by an external collaborator.  The kernel only reads
it (through SqlDrugCatalog) to snapshot unit prices at write time.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base


class Drug(Base):
    """Catalog entry: code, name, dosage form and current unit price."""

    __tablename__ = "drugs"

    __table_args__ = (
        UniqueConstraint("code", name="uq_drug_code"),
        CheckConstraint("unit_price >= 0", name="ck_drug_unit_price_non_negative"),
        Index("idx_drug_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    generic_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dosage_form: Mapped[str | None] = mapped_column(String(50), nullable=True)
    strength: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Drug {self.code} {self.name}>"
