"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    The immutable structures that cross the kernel boundary: command inputs
    (TransferLineRequest, DispenseLine) and read records handed to the
    presentation collaborator (StockRecord, StockTransactionRecord,
    TransferRecord, TransferItemRecord, StockSummary, ReconciliationReport).
    No formatting: quantities are ints, money is Decimal, times are aware
    datetimes.

Architecture position:
    Kernel > Domain -- zero I/O.  from_model() class methods are boundary
    converters invoked only from services and selectors.

Invariants enforced:
    Records never expose ORM objects; callers cannot mutate persisted state
    through a DTO.

Data flow:
    ORM row -> from_model() -> frozen record -> caller
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.domain.transfer import TransferStatus

if TYPE_CHECKING:
    from pharmacy_kernel.models.drug import Drug as DrugModel
    from pharmacy_kernel.models.stock import Stock as StockModel
    from pharmacy_kernel.models.stock import StockTransaction as StockTransactionModel
    from pharmacy_kernel.models.transfer import Transfer as TransferModel
    from pharmacy_kernel.models.transfer import TransferItem as TransferItemModel


# =============================================================================
# Command inputs
# =============================================================================


@dataclass(frozen=True)
class TransferLineRequest:
    """One requested line of a new transfer."""

    drug_id: UUID
    requested_qty: int
    item_note: str | None = None


@dataclass(frozen=True)
class DispenseLine:
    """Dispensed quantity plus batch for one item at ``prepare``."""

    dispensed_qty: int
    lot_number: str | None = None
    expiry_date: date | None = None
    manufacturer: str | None = None


# =============================================================================
# Read records
# =============================================================================


@dataclass(frozen=True)
class DrugSnapshot:
    """Catalog values captured at write time."""

    id: UUID
    code: str
    name: str
    dosage_form: str | None
    unit_price: Decimal
    is_active: bool = True

    @classmethod
    def from_model(cls, model: DrugModel) -> DrugSnapshot:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            dosage_form=model.dosage_form,
            unit_price=model.unit_price,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class StockRecord:
    id: UUID
    drug_id: UUID
    department: Department
    total_quantity: int
    reserved_qty: int
    minimum_stock: int
    total_value: Decimal
    version: int
    integrity_hold: bool
    hold_reason: str | None
    last_updated: datetime | None
    drug_code: str | None = None
    drug_name: str | None = None

    @property
    def available_stock(self) -> int:
        return self.total_quantity - self.reserved_qty

    @property
    def is_low_stock(self) -> bool:
        """Derived, never stored."""
        return self.available_stock <= self.minimum_stock

    @property
    def is_out_of_stock(self) -> bool:
        return self.available_stock <= 0

    @classmethod
    def from_model(cls, model: StockModel) -> StockRecord:
        drug = model.drug
        return cls(
            id=model.id,
            drug_id=model.drug_id,
            department=Department(model.department),
            total_quantity=model.total_quantity,
            reserved_qty=model.reserved_qty,
            minimum_stock=model.minimum_stock,
            total_value=model.total_value,
            version=model.version,
            integrity_hold=model.integrity_hold,
            hold_reason=model.hold_reason,
            last_updated=model.last_updated,
            drug_code=drug.code if drug is not None else None,
            drug_name=drug.name if drug is not None else None,
        )


@dataclass(frozen=True)
class StockTransactionRecord:
    id: UUID
    stock_id: UUID
    seq: int
    type: TransactionType
    quantity: int | None
    before_qty: int
    after_qty: int
    before_reserved: int
    after_reserved: int
    before_min_stock: int
    after_min_stock: int
    min_stock_change: int | None
    unit_cost: Decimal | None
    total_cost: Decimal | None
    reference: str | None
    transfer_id: UUID | None
    reason_code: str | None
    note: str | None
    actor_id: UUID
    created_at: datetime

    @classmethod
    def from_model(cls, model: StockTransactionModel) -> StockTransactionRecord:
        return cls(
            id=model.id,
            stock_id=model.stock_id,
            seq=model.seq,
            type=TransactionType(model.type),
            quantity=model.quantity,
            before_qty=model.before_qty,
            after_qty=model.after_qty,
            before_reserved=model.before_reserved,
            after_reserved=model.after_reserved,
            before_min_stock=model.before_min_stock,
            after_min_stock=model.after_min_stock,
            min_stock_change=model.min_stock_change,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
            reference=model.reference,
            transfer_id=model.transfer_id,
            reason_code=model.reason_code,
            note=model.note,
            actor_id=model.actor_id,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class TransferItemRecord:
    id: UUID
    line_no: int
    drug_id: UUID
    requested_qty: int
    approved_qty: int | None
    dispensed_qty: int | None
    received_qty: int | None
    unit_price: Decimal
    total_value: Decimal
    lot_number: str | None
    expiry_date: date | None
    manufacturer: str | None
    item_note: str | None

    @classmethod
    def from_model(cls, model: TransferItemModel) -> TransferItemRecord:
        return cls(
            id=model.id,
            line_no=model.line_no,
            drug_id=model.drug_id,
            requested_qty=model.requested_qty,
            approved_qty=model.approved_qty,
            dispensed_qty=model.dispensed_qty,
            received_qty=model.received_qty,
            unit_price=model.unit_price,
            total_value=model.total_value,
            lot_number=model.lot_number,
            expiry_date=model.expiry_date,
            manufacturer=model.manufacturer,
            item_note=model.item_note,
        )


@dataclass(frozen=True)
class TransferRecord:
    id: UUID
    requisition_number: str
    from_dept: Department
    to_dept: Department
    status: TransferStatus
    requester_id: UUID
    approver_id: UUID | None
    dispenser_id: UUID | None
    receiver_id: UUID | None
    cancelled_by_id: UUID | None
    purpose: str | None
    request_note: str | None
    approval_note: str | None
    cancel_reason: str | None
    total_items: int
    total_value: Decimal
    version: int
    requested_at: datetime
    approved_at: datetime | None
    dispensed_at: datetime | None
    received_at: datetime | None
    cancelled_at: datetime | None
    items: tuple[TransferItemRecord, ...] = field(default_factory=tuple)

    def item_for_drug(self, drug_id: UUID) -> TransferItemRecord | None:
        for item in self.items:
            if item.drug_id == drug_id:
                return item
        return None

    @classmethod
    def from_model(cls, model: TransferModel) -> TransferRecord:
        return cls(
            id=model.id,
            requisition_number=model.requisition_number,
            from_dept=Department(model.from_dept),
            to_dept=Department(model.to_dept),
            status=TransferStatus(model.status),
            requester_id=model.requester_id,
            approver_id=model.approver_id,
            dispenser_id=model.dispenser_id,
            receiver_id=model.receiver_id,
            cancelled_by_id=model.cancelled_by_id,
            purpose=model.purpose,
            request_note=model.request_note,
            approval_note=model.approval_note,
            cancel_reason=model.cancel_reason,
            total_items=model.total_items,
            total_value=model.total_value,
            version=model.version,
            requested_at=model.requested_at,
            approved_at=model.approved_at,
            dispensed_at=model.dispensed_at,
            received_at=model.received_at,
            cancelled_at=model.cancelled_at,
            items=tuple(
                TransferItemRecord.from_model(item)
                for item in sorted(model.items, key=lambda i: i.line_no)
            ),
        )


@dataclass(frozen=True)
class StockSummary:
    """Per-department dashboard numbers."""

    department: Department
    total_stocks: int
    low_stock_count: int
    out_of_stock_count: int
    total_value: Decimal


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of replaying one stock row's ledger against its cache."""

    stock_id: UUID
    entry_count: int
    ledger_quantity: int
    cached_quantity: int
    ledger_reserved: int
    cached_reserved: int
    ledger_minimum: int
    cached_minimum: int
    chain_breaks: tuple[int, ...] = ()

    @property
    def mismatched_fields(self) -> tuple[str, ...]:
        fields = []
        if self.ledger_quantity != self.cached_quantity:
            fields.append("total_quantity")
        if self.ledger_reserved != self.cached_reserved:
            fields.append("reserved_qty")
        if self.ledger_minimum != self.cached_minimum:
            fields.append("minimum_stock")
        if self.chain_breaks:
            fields.append("ledger_chain")
        return tuple(fields)

    @property
    def is_consistent(self) -> bool:
        return not self.mismatched_fields
