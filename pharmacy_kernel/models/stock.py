"""
Module: pharmacy_kernel.models.stock
Responsibility: ORM persistence for stock rows (the balance cache) and
    stock transactions (the append-only ledger).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    BALANCE_EQUALS_REPLAY -- Stock keeps opening_quantity /
        opening_minimum_stock so the ledger can be replayed from a known
        starting point; ledger_seq counts appended entries.
    NON_NEGATIVE_AVAILABLE -- DB check constraints on total/reserved/minimum.
    LEDGER_APPEND_ONLY -- StockTransaction is protected by listeners in
        db/immutability.py and triggers in db/triggers.py.
    One row per (drug_id, department) -- UNIQUE constraint.
    Lost updates -- Stock.version is the mapper's version_id_col, so every
        UPDATE is a compare-and-swap on the version read.

Failure modes:
    - IntegrityError on a second stock row for the same drug/department.
    - IntegrityError on a duplicate (stock_id, seq) ledger entry.
    - StaleDataError when a concurrent writer bumped Stock.version first.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from pharmacy_kernel.models.drug import Drug

_DEPARTMENTS = "'PHARMACY', 'OPD'"

_TRANSACTION_TYPES = (
    "'RECEIVE_EXTERNAL', 'DISPENSE_EXTERNAL', 'TRANSFER_IN', 'TRANSFER_OUT', "
    "'ADJUST_INCREASE', 'ADJUST_DECREASE', 'RESERVE', 'UNRESERVE', "
    "'MIN_STOCK_INCREASE', 'MIN_STOCK_DECREASE', 'MIN_STOCK_RESET', "
    "'DATA_UPDATE', 'PRICE_UPDATE', 'INFO_CORRECTION'"
)


class Stock(Base):
    """Current on-hand, reserved and minimum quantities of one drug in one
    department.  A cache of the ledger, updated in the same transaction as
    every ledger append."""

    __tablename__ = "stocks"

    __table_args__ = (
        UniqueConstraint("drug_id", "department", name="uq_stock_drug_department"),
        CheckConstraint(f"department IN ({_DEPARTMENTS})", name="ck_stock_department"),
        CheckConstraint("total_quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint(
            "reserved_qty >= 0 AND reserved_qty <= total_quantity",
            name="ck_stock_reserved_within_total",
        ),
        CheckConstraint("minimum_stock >= 0", name="ck_stock_minimum_non_negative"),
        Index("idx_stock_department", "department"),
    )

    drug_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("drugs.id"), nullable=False
    )
    department: Mapped[str] = mapped_column(String(20), nullable=False)

    total_quantity: Mapped[int] = mapped_column(nullable=False, default=0)
    reserved_qty: Mapped[int] = mapped_column(nullable=False, default=0)
    minimum_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Replay starting point
    opening_quantity: Mapped[int] = mapped_column(nullable=False, default=0)
    opening_minimum_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    ledger_seq: Mapped[int] = mapped_column(nullable=False, default=0)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    integrity_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_updated: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    drug: Mapped[Drug] = relationship("Drug")

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_stock(self) -> int:
        return self.total_quantity - self.reserved_qty

    def __repr__(self) -> str:
        return (
            f"<Stock {self.drug_id} {self.department} qty={self.total_quantity} "
            f"reserved={self.reserved_qty} min={self.minimum_stock}>"
        )


class StockTransaction(Base):
    """Immutable ledger entry.

    ``quantity`` is the signed delta for quantity and reservation types and
    NULL otherwise.  Before/after snapshots of all three balance fields are
    stored on every entry so the chain can be checked link by link.
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("stock_id", "seq", name="uq_stock_transaction_seq"),
        CheckConstraint(f"type IN ({_TRANSACTION_TYPES})", name="ck_stock_transaction_type"),
        CheckConstraint("seq > 0", name="ck_stock_transaction_seq_positive"),
        Index("idx_stock_transaction_reference", "reference"),
        Index("idx_stock_transaction_transfer", "transfer_id"),
        Index("idx_stock_transaction_created", "created_at"),
    )

    stock_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stocks.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)

    quantity: Mapped[int | None] = mapped_column(nullable=True)
    before_qty: Mapped[int] = mapped_column(nullable=False)
    after_qty: Mapped[int] = mapped_column(nullable=False)
    before_reserved: Mapped[int] = mapped_column(nullable=False)
    after_reserved: Mapped[int] = mapped_column(nullable=False)
    before_min_stock: Mapped[int] = mapped_column(nullable=False)
    after_min_stock: Mapped[int] = mapped_column(nullable=False)
    min_stock_change: Mapped[int | None] = mapped_column(nullable=True)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transfer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=True
    )
    reason_code: Mapped[str | None] = mapped_column(String(200), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    stock: Mapped[Stock] = relationship("Stock")

    def __repr__(self) -> str:
        return f"<StockTransaction {self.stock_id}#{self.seq} {self.type} {self.quantity}>"
