"""
StockReconciliationService -- full ledger replay and integrity holds.

Responsibility:
    Recomputes a stock row's balance by replaying its whole ledger from the
    opening values and compares the result with the cached columns.  Also
    checks the chain itself: ``seq`` runs 1..n without gaps and every
    entry's before-snapshot equals the previous entry's after-snapshot.

    Divergent rows are quarantined (``integrity_hold``) and stay that way
    until an operator runs ``release_hold``, the explicit reconciliation
    action, which rewrites the cache from the ledger and records an
    INFO_CORRECTION entry describing what was overwritten.

Architecture position:
    Kernel > Services.  Reads through the session, writes through
    StockLedger.

Invariants enforced:
    BALANCE_EQUALS_REPLAY -- the cache is never silently corrected; a
        divergence either raises or places a hold.

Audit relevance:
    Every release leaves an INFO_CORRECTION entry with reason_code
    LEDGER_RECONCILIATION, the actor and the overwritten cache values.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import ReconciliationReport, StockTransactionRecord
from pharmacy_kernel.domain.ledger_effects import (
    Department,
    StockBalance,
    TransactionType,
    replay,
)
from pharmacy_kernel.exceptions import CorruptionError, MissingReasonError
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.stock import Stock, StockTransaction
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.reconciliation")

RECONCILIATION_REASON = "LEDGER_RECONCILIATION"


class StockReconciliationService(BaseService[Stock]):
    """
    Ledger replay checks and the hold / release cycle.

    Contract:
        ``check`` is read-only.  ``reconcile_stock`` raises on divergence so
        the caller's transaction is abandoned; ``reconcile_department``
        places holds in the caller's transaction and returns the reports.

    Non-goals:
        - Does NOT repair the ledger.  Entries are append-only; only the
          cache is rewritten.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or StockLedger(session, self.clock)

    def _entries(self, stock_id: UUID) -> list[StockTransaction]:
        return list(
            self.session.execute(
                select(StockTransaction)
                .where(StockTransaction.stock_id == stock_id)
                .order_by(StockTransaction.seq)
            ).scalars()
        )

    def check(self, stock: Stock) -> ReconciliationReport:
        entries = self._entries(stock.id)
        opening = StockBalance(stock.opening_quantity, 0, stock.opening_minimum_stock)
        computed = replay(opening, entries)

        breaks = []
        previous = opening
        for position, entry in enumerate(entries, start=1):
            before = StockBalance(entry.before_qty, entry.before_reserved, entry.before_min_stock)
            anchored = entry.reason_code == RECONCILIATION_REASON
            if entry.seq != position or (before != previous and not anchored):
                breaks.append(entry.seq)
            previous = StockBalance(entry.after_qty, entry.after_reserved, entry.after_min_stock)
        if len(entries) != stock.ledger_seq:
            breaks.append(stock.ledger_seq)

        return ReconciliationReport(
            stock_id=stock.id,
            entry_count=len(entries),
            ledger_quantity=computed.total_quantity,
            cached_quantity=stock.total_quantity,
            ledger_reserved=computed.reserved_qty,
            cached_reserved=stock.reserved_qty,
            ledger_minimum=computed.minimum_stock,
            cached_minimum=stock.minimum_stock,
            chain_breaks=tuple(breaks),
        )

    def reconcile_stock(self, stock_id: UUID) -> ReconciliationReport:
        """
        Raises:
            CorruptionError: naming the first divergent field.
        """
        stock = self._ledger.lock_stock(stock_id)
        report = self.check(stock)
        if not report.is_consistent:
            field = report.mismatched_fields[0]
            ledger_value, cached_value = _values_for(report, field)
            logger.error(
                "ledger_divergence_detected",
                extra={
                    "stock_id": str(stock_id),
                    "field": field,
                    "ledger_value": ledger_value,
                    "cached_value": cached_value,
                    "chain_breaks": list(report.chain_breaks),
                },
            )
            raise CorruptionError(str(stock_id), field, ledger_value, cached_value)
        logger.debug("stock_reconciled", extra={"stock_id": str(stock_id)})
        return report

    def reconcile_department(self, department: Department | str) -> list[ReconciliationReport]:
        department = Department(department)
        stock_ids = self.session.execute(
            select(Stock.id)
            .where(Stock.department == department.value)
            .order_by(Stock.id)
        ).scalars().all()

        reports = []
        for stock_id in stock_ids:
            stock = self._ledger.lock_stock(stock_id)
            report = self.check(stock)
            if not report.is_consistent and not stock.integrity_hold:
                self._hold(stock, "ledger divergence: " + ", ".join(report.mismatched_fields))
            reports.append(report)

        logger.info(
            "department_reconciled",
            extra={
                "department": department.value,
                "stocks_checked": len(reports),
                "divergent": sum(1 for r in reports if not r.is_consistent),
            },
        )
        return reports

    def place_hold(self, stock_id: UUID, reason: str) -> None:
        stock = self._ledger.lock_stock(stock_id)
        if stock.integrity_hold:
            return
        self._hold(stock, reason)

    def _hold(self, stock: Stock, reason: str) -> None:
        stock.integrity_hold = True
        stock.hold_reason = reason
        self.session.flush()
        logger.critical(
            "stock_integrity_hold_placed",
            extra={"stock_id": str(stock.id), "hold_reason": reason},
        )

    def release_hold(
        self,
        stock_id: UUID,
        actor_id: UUID,
        note: str,
    ) -> StockTransactionRecord:
        """
        Rewrite the cache from the ledger, clear the hold and record an
        INFO_CORRECTION entry.

        Raises:
            MissingReasonError: blank note.
        """
        if note is None or not note.strip():
            raise MissingReasonError("release_hold")

        stock = self._ledger.lock_stock(stock_id)
        report = self.check(stock)

        overwritten = (
            f"quantity {report.cached_quantity} -> {report.ledger_quantity}, "
            f"reserved {report.cached_reserved} -> {report.ledger_reserved}, "
            f"minimum {report.cached_minimum} -> {report.ledger_minimum}"
        )
        previous_reason = stock.hold_reason

        stock.total_quantity = report.ledger_quantity
        stock.reserved_qty = report.ledger_reserved
        stock.minimum_stock = report.ledger_minimum
        stock.total_value = Decimal(report.ledger_quantity) * stock.drug.unit_price
        stock.ledger_seq = self.session.execute(
            select(func.coalesce(func.max(StockTransaction.seq), 0))
            .where(StockTransaction.stock_id == stock.id)
        ).scalar_one()
        stock.integrity_hold = False
        stock.hold_reason = None

        entry = self._ledger.append(
            stock,
            actor_id,
            TransactionType.INFO_CORRECTION,
            reason_code=RECONCILIATION_REASON,
            note=f"{note.strip()} | {overwritten}",
            verify_chain=False,
        )

        with LogContext.bind(stock_id=stock.id, actor_id=actor_id):
            logger.warning(
                "stock_integrity_hold_released",
                extra={"previous_reason": previous_reason, "overwritten": overwritten},
            )
        return StockTransactionRecord.from_model(entry)


def _values_for(report: ReconciliationReport, field: str) -> tuple:
    if field == "total_quantity":
        return report.ledger_quantity, report.cached_quantity
    if field == "reserved_qty":
        return report.ledger_reserved, report.cached_reserved
    if field == "minimum_stock":
        return report.ledger_minimum, report.cached_minimum
    return report.entry_count, list(report.chain_breaks)
