"""
Module: pharmacy_kernel.models.transfer
Responsibility: ORM persistence for transfers, their line items and the
    per-stage record used for idempotent replay.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    TRANSFER_STATE_GUARD -- status values limited by a check constraint;
        Transfer.version is the mapper's version_id_col, so two writers that
        read the same version cannot both commit.
    ITEM_QUANTITY_CHAIN -- check constraints on transfer_items mirror the
        ordered-stage rule received <= dispensed <= approved <= requested.
    One stage record per (transfer_id, stage) -- UNIQUE constraint.

Failure modes:
    - IntegrityError on duplicate requisition number or duplicate stage.
    - StaleDataError on a lost version race.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString

_STATUSES = "'PENDING', 'APPROVED', 'PREPARED', 'DELIVERED', 'CANCELLED'"
_STAGES = "'CREATE', 'APPROVE', 'PREPARE', 'DELIVER', 'CANCEL'"


class Transfer(Base):
    """A requisition moving drugs from one department to the other."""

    __tablename__ = "transfers"

    __table_args__ = (
        UniqueConstraint("requisition_number", name="uq_transfer_requisition_number"),
        CheckConstraint(f"status IN ({_STATUSES})", name="ck_transfer_status"),
        CheckConstraint("from_dept <> to_dept", name="ck_transfer_distinct_departments"),
        CheckConstraint("total_items >= 0", name="ck_transfer_total_items"),
        Index("idx_transfer_status", "status"),
        Index("idx_transfer_from_dept", "from_dept"),
        Index("idx_transfer_to_dept", "to_dept"),
    )

    requisition_number: Mapped[str] = mapped_column(String(50), nullable=False)
    from_dept: Mapped[str] = mapped_column(String(20), nullable=False)
    to_dept: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    dispenser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    receiver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_items: Mapped[int] = mapped_column(nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispensed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list[TransferItem]] = relationship(
        "TransferItem",
        back_populates="transfer",
        order_by="TransferItem.line_no",
        cascade="save-update, merge",
    )
    stage_records: Mapped[list[TransferStageRecord]] = relationship(
        "TransferStageRecord",
        back_populates="transfer",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Transfer {self.requisition_number} {self.status}>"


class TransferItem(Base):
    """One drug line of a transfer, tracked through four quantity stages."""

    __tablename__ = "transfer_items"

    __table_args__ = (
        UniqueConstraint("transfer_id", "line_no", name="uq_transfer_item_line"),
        UniqueConstraint("transfer_id", "drug_id", name="uq_transfer_item_drug"),
        CheckConstraint("requested_qty > 0", name="ck_transfer_item_requested"),
        CheckConstraint(
            "approved_qty IS NULL OR (approved_qty >= 0 AND approved_qty <= requested_qty)",
            name="ck_transfer_item_approved",
        ),
        CheckConstraint(
            "dispensed_qty IS NULL OR (approved_qty IS NOT NULL "
            "AND dispensed_qty >= 0 AND dispensed_qty <= approved_qty)",
            name="ck_transfer_item_dispensed",
        ),
        CheckConstraint(
            "received_qty IS NULL OR (dispensed_qty IS NOT NULL "
            "AND received_qty >= 0 AND received_qty <= dispensed_qty)",
            name="ck_transfer_item_received",
        ),
        Index("idx_transfer_item_drug", "drug_id"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    drug_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("drugs.id"), nullable=False
    )

    requested_qty: Mapped[int] = mapped_column(nullable=False)
    approved_qty: Mapped[int | None] = mapped_column(nullable=True)
    dispensed_qty: Mapped[int | None] = mapped_column(nullable=True)
    received_qty: Mapped[int | None] = mapped_column(nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    item_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    transfer: Mapped[Transfer] = relationship("Transfer", back_populates="items")

    def __repr__(self) -> str:
        return f"<TransferItem {self.transfer_id}#{self.line_no} drug={self.drug_id}>"


class TransferStageRecord(Base):
    """Append-only record of one applied workflow stage.

    ``request_key`` is the caller's retry key; a repeated call carrying the
    same key is recognised as already applied.
    """

    __tablename__ = "transfer_stage_records"

    __table_args__ = (
        UniqueConstraint("transfer_id", "stage", name="uq_transfer_stage"),
        CheckConstraint(f"stage IN ({_STAGES})", name="ck_transfer_stage_value"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfers.id"), nullable=False
    )
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    request_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    transfer: Mapped[Transfer] = relationship("Transfer", back_populates="stage_records")
