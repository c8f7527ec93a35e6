"""
pharmacy_services.inventory -- public facade of the stock and transfer system.

Responsibility:
    One method per public operation.  Each mutating method is exactly one
    database transaction run by ``TransactionRunner`` (retry on transient
    contention, quarantine on ledger divergence); each read method is one
    read-only ``session_scope``.  Everything returned is a frozen DTO.

Architecture position:
    Services -- the outermost layer of this repository.  Callers (a web
    layer, a CLI, a batch job) hold a ``PharmacyInventory`` and never touch
    sessions or kernel services directly.

Failure modes:
    Kernel exceptions propagate unchanged, plus ConcurrencyConflictError
    when retries are exhausted.

Usage:
    init_engine_from_url(url, **engine_options(config))
    create_tables()
    inventory = PharmacyInventory(config=config)
    transfer = inventory.create_transfer(actor, "PHARMACY", "OPD", lines)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from pharmacy_config import get_active_config
from pharmacy_config.schema import InventoryConfig
from pharmacy_kernel.db.engine import get_session_factory, session_scope
from pharmacy_kernel.db.immutability import register_immutability_listeners
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import (
    DispenseLine,
    ReconciliationReport,
    StockRecord,
    StockSummary,
    StockTransactionRecord,
    TransferLineRequest,
    TransferRecord,
)
from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.domain.transfer import TransferStatus
from pharmacy_kernel.logging_config import get_logger
from pharmacy_services.orchestrator import CatalogFactory, InventoryServices
from pharmacy_services.unit_of_work import TransactionRunner

logger = get_logger("services.inventory")

T = TypeVar("T")


class PharmacyInventory:
    """
    Facade over the pharmacy kernel.

    Contract:
        Every mutating call commits before returning, or raises and leaves
        no trace.  Reads see committed data only.

    Non-goals:
        - Does NOT authenticate or authorise actors.
        - Does NOT format output; that belongs to the presentation layer.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        catalog_factory: CatalogFactory | None = None,
    ):
        register_immutability_listeners()
        self._factory = session_factory or get_session_factory()
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()
        self._catalog_factory = catalog_factory
        self._runner = TransactionRunner(self._factory, self.config.retry, self.clock)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _services(self, session: Session) -> InventoryServices:
        return InventoryServices(session, self.config, self.clock, self._catalog_factory)

    def _write(
        self,
        operation: str,
        fn: Callable[[InventoryServices], T],
        actor_id: UUID | None = None,
    ) -> T:
        return self._runner.run(
            operation, lambda session: fn(self._services(session)), actor_id=actor_id
        )

    def _read(self, fn: Callable[[InventoryServices], T]) -> T:
        with session_scope(self._factory) as session:
            return fn(self._services(session))

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def provision_stock(
        self,
        drug_id: UUID,
        department: Department | str,
        opening_quantity: int = 0,
        minimum_stock: int | None = None,
    ) -> StockRecord:
        def work(s: InventoryServices) -> StockRecord:
            stock, _ = s.provisioning.get_or_create(
                drug_id, department, opening_quantity, minimum_stock
            )
            return StockRecord.from_model(stock)

        return self._write("provision_stock", work)

    def record_transaction(
        self,
        stock_id: UUID,
        actor_id: UUID,
        transaction_type: TransactionType | str,
        quantity: int | None = None,
        unit_cost: Decimal | None = None,
        reference: str | None = None,
        note: str | None = None,
        *,
        reason_code: str | None = None,
        min_stock_change: int | None = None,
        min_stock_target: int | None = None,
    ) -> StockTransactionRecord:
        return self._write(
            "record_transaction",
            lambda s: s.ledger.record(
                stock_id,
                actor_id,
                transaction_type,
                quantity,
                unit_cost,
                reference,
                note,
                reason_code=reason_code,
                min_stock_change=min_stock_change,
                min_stock_target=min_stock_target,
            ),
            actor_id,
        )

    def adjust_minimum(
        self,
        stock_id: UUID,
        actor_id: UUID,
        delta: int,
        reason_code: str,
        note: str | None = None,
    ) -> StockTransactionRecord:
        return self._write(
            "adjust_minimum",
            lambda s: s.min_stock.adjust_minimum(stock_id, actor_id, delta, reason_code, note),
            actor_id,
        )

    def reset_minimum(
        self,
        stock_id: UUID,
        actor_id: UUID,
        target: int,
        reason_code: str,
        note: str | None = None,
    ) -> StockTransactionRecord:
        return self._write(
            "reset_minimum",
            lambda s: s.min_stock.reset_minimum(stock_id, actor_id, target, reason_code, note),
            actor_id,
        )

    def update_stock(
        self,
        stock_id: UUID,
        actor_id: UUID,
        department: Department | str,
        new_total_quantity: int | None = None,
        new_minimum_stock: int | None = None,
        reason: str | None = None,
    ) -> list[StockTransactionRecord]:
        return self._write(
            "update_stock",
            lambda s: s.stock_update.update_stock(
                stock_id, actor_id, department, new_total_quantity, new_minimum_stock, reason
            ),
            actor_id,
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        requester_id: UUID,
        from_dept: Department | str,
        to_dept: Department | str,
        items: Sequence[TransferLineRequest],
        *,
        purpose: str | None = None,
        request_note: str | None = None,
        requisition_number: str | None = None,
        request_key: str | None = None,
    ) -> TransferRecord:
        return self._write(
            "create_transfer",
            lambda s: s.workflow.create(
                requester_id,
                from_dept,
                to_dept,
                items,
                purpose=purpose,
                request_note=request_note,
                requisition_number=requisition_number,
                request_key=request_key,
            ),
            requester_id,
        )

    def approve_transfer(
        self,
        transfer_id: UUID,
        approver_id: UUID,
        approvals: Mapping[UUID, int] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        return self._write(
            "approve_transfer",
            lambda s: s.workflow.approve(
                transfer_id,
                approver_id,
                approvals,
                note,
                request_key=request_key,
                expected_version=expected_version,
            ),
            approver_id,
        )

    def prepare_transfer(
        self,
        transfer_id: UUID,
        dispenser_id: UUID,
        lines: Mapping[UUID, DispenseLine] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        return self._write(
            "prepare_transfer",
            lambda s: s.workflow.prepare(
                transfer_id,
                dispenser_id,
                lines,
                note,
                request_key=request_key,
                expected_version=expected_version,
            ),
            dispenser_id,
        )

    def deliver_transfer(
        self,
        transfer_id: UUID,
        receiver_id: UUID,
        receipts: Mapping[UUID, int] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        return self._write(
            "deliver_transfer",
            lambda s: s.workflow.deliver(
                transfer_id,
                receiver_id,
                receipts,
                note,
                request_key=request_key,
                expected_version=expected_version,
            ),
            receiver_id,
        )

    def cancel_transfer(
        self,
        transfer_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        return self._write(
            "cancel_transfer",
            lambda s: s.workflow.cancel(
                transfer_id,
                actor_id,
                reason,
                request_key=request_key,
                expected_version=expected_version,
            ),
            actor_id,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_stock(self, stock_id: UUID) -> ReconciliationReport:
        return self._write(
            "reconcile_stock", lambda s: s.reconciliation.reconcile_stock(stock_id)
        )

    def reconcile_department(self, department: Department | str) -> list[ReconciliationReport]:
        return self._write(
            "reconcile_department",
            lambda s: s.reconciliation.reconcile_department(department),
        )

    def release_hold(self, stock_id: UUID, actor_id: UUID, note: str) -> StockTransactionRecord:
        return self._write(
            "release_hold",
            lambda s: s.reconciliation.release_hold(stock_id, actor_id, note),
            actor_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stock(self, stock_id: UUID) -> StockRecord:
        return self._read(lambda s: s.stocks.get(stock_id))

    def find_stock(self, drug_id: UUID, department: Department | str) -> StockRecord | None:
        return self._read(lambda s: s.stocks.find_for(drug_id, department))

    def list_department_stocks(self, department: Department | str) -> list[StockRecord]:
        return self._read(lambda s: s.stocks.list_department(department))

    def low_stock(self, department: Department | str | None = None) -> list[StockRecord]:
        return self._read(lambda s: s.stocks.low_stock(department))

    def stock_summary(self, department: Department | str) -> StockSummary:
        return self._read(lambda s: s.stocks.summary(department))

    def ledger_for_stock(self, stock_id: UUID) -> list[StockTransactionRecord]:
        return self._read(lambda s: s.entries.for_stock(stock_id))

    def ledger_for_department(
        self,
        department: Department | str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[StockTransactionRecord]:
        return self._read(lambda s: s.entries.for_department(department, since, limit))

    def ledger_for_reference(self, reference: str) -> list[StockTransactionRecord]:
        return self._read(lambda s: s.entries.for_reference(reference))

    def get_transfer(self, transfer_id: UUID) -> TransferRecord:
        return self._read(lambda s: s.transfers.get(transfer_id))

    def get_transfer_by_requisition(self, requisition_number: str) -> TransferRecord:
        return self._read(lambda s: s.transfers.get_by_requisition(requisition_number))

    def list_transfers(
        self,
        department: Department | str,
        status: TransferStatus | str | None = None,
    ) -> list[TransferRecord]:
        return self._read(lambda s: s.transfers.list_for_department(department, status))

    def transfers_by_status(self, status: TransferStatus | str) -> list[TransferRecord]:
        return self._read(lambda s: s.transfers.list_by_status(status))
