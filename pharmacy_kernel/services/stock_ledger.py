"""
StockLedger -- the single write path into stock balances.

Responsibility:
    Appends immutable StockTransaction entries and updates the cached
    Stock balance in the same flush.  Every quantity, reservation, minimum
    and descriptive change goes through ``record()`` (or ``append()`` when
    the caller already holds the row lock).

Architecture position:
    Kernel > Services -- imperative shell around the pure effect table in
    ``domain.ledger_effects``.  Used by TransferWorkflow (delivery),
    MinimumStockAdjustor, StockUpdateService and
    StockReconciliationService.

Invariants enforced:
    LEDGER_APPEND_ONLY       -- entries are only ever inserted.
    NON_NEGATIVE_AVAILABLE   -- ``apply_effect`` rejects negative results.
    BALANCE_EQUALS_REPLAY    -- before each write the cache is compared with
                                the last entry's after-snapshot; a mismatch
                                raises CorruptionError and nothing is written.
    MIN_STOCK_NEVER_MOVES_QUANTITY -- via the effect table.

Failure modes:
    - StockNotFoundError: unknown stock id.
    - StockOnHoldError: the row is quarantined pending reconciliation.
    - CorruptionError: cache disagrees with the ledger tail.
    - InvalidQuantityError / InsufficientStockError /
      InvalidMinimumStockError: the requested effect is invalid.
    - StaleDataError (from the version column) when a concurrent writer
      committed first; the services layer retries.

Audit relevance:
    Every entry snapshots before/after values of quantity, reservation and
    minimum, the unit cost used, the actor and the reference that
    correlates paired entries (a transfer's requisition number).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import StockTransactionRecord
from pharmacy_kernel.domain.ledger_effects import (
    LEDGER_EFFECTS,
    Department,
    StockBalance,
    TransactionType,
    apply_effect,
)
from pharmacy_kernel.exceptions import (
    CorruptionError,
    StockNotFoundError,
    StockOnHoldError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.stock import Stock, StockTransaction
from pharmacy_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")


def balance_of(stock: Stock) -> StockBalance:
    return StockBalance(
        total_quantity=stock.total_quantity,
        reserved_qty=stock.reserved_qty,
        minimum_stock=stock.minimum_stock,
    )


class StockLedger(BaseService[StockTransaction]):
    """
    Append-only stock ledger with a transactionally maintained balance cache.

    Contract:
        ``record()`` locks the stock row, verifies it, applies one effect and
        inserts one entry.  The caller owns the transaction.

    Guarantees:
        - The Stock UPDATE and the StockTransaction INSERT are flushed
          together; the caller's commit makes both visible or neither.
        - Entries of one stock are numbered 1, 2, 3 ... by ``seq``.

    Non-goals:
        - Does NOT commit.
        - Does NOT place integrity holds itself (its transaction is about to
          roll back); the services layer quarantines in a fresh transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock_stock(self, stock_id: UUID) -> Stock:
        """SELECT ... FOR UPDATE the stock row, refreshing any cached copy."""
        stock = self.session.execute(
            select(Stock)
            .where(Stock.id == stock_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if stock is None:
            raise StockNotFoundError(str(stock_id))
        return stock

    def lock_stock_for(self, drug_id: UUID, department: Department | str) -> Stock | None:
        return self.session.execute(
            select(Stock)
            .where(
                Stock.drug_id == drug_id,
                Stock.department == Department(department).value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def last_entry(self, stock: Stock) -> StockTransaction | None:
        if stock.ledger_seq == 0:
            return None
        return self.session.execute(
            select(StockTransaction).where(
                StockTransaction.stock_id == stock.id,
                StockTransaction.seq == stock.ledger_seq,
            )
        ).scalar_one_or_none()

    def verify_tail(self, stock: Stock) -> None:
        """Compare the cache with the last entry's after-snapshot.

        Raises:
            CorruptionError: on the first field that disagrees.
        """
        cached = balance_of(stock)
        entry = self.last_entry(stock)
        if entry is None:
            if stock.ledger_seq != 0:
                raise CorruptionError(str(stock.id), "ledger_seq", None, stock.ledger_seq)
            expected = StockBalance(stock.opening_quantity, 0, stock.opening_minimum_stock)
        else:
            expected = StockBalance(entry.after_qty, entry.after_reserved, entry.after_min_stock)

        for field in ("total_quantity", "reserved_qty", "minimum_stock"):
            ledger_value = getattr(expected, field)
            cached_value = getattr(cached, field)
            if ledger_value != cached_value:
                logger.error(
                    "ledger_divergence_detected",
                    extra={
                        "stock_id": str(stock.id),
                        "field": field,
                        "ledger_value": ledger_value,
                        "cached_value": cached_value,
                        "ledger_seq": stock.ledger_seq,
                    },
                )
                raise CorruptionError(str(stock.id), field, ledger_value, cached_value)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        stock_id: UUID,
        actor_id: UUID,
        transaction_type: TransactionType | str,
        quantity: int | None = None,
        unit_cost: Decimal | None = None,
        reference: str | None = None,
        note: str | None = None,
        *,
        transfer_id: UUID | None = None,
        reason_code: str | None = None,
        min_stock_change: int | None = None,
        min_stock_target: int | None = None,
    ) -> StockTransactionRecord:
        """
        Record one ledger entry against a stock row.

        Preconditions:
            - The caller is inside an active transaction.
        Postconditions:
            - One StockTransaction inserted; Stock cache updated; both flushed.

        Returns:
            The persisted entry as a frozen record.
        """
        stock = self.lock_stock(stock_id)
        entry = self.append(
            stock,
            actor_id,
            transaction_type,
            quantity,
            unit_cost=unit_cost,
            reference=reference,
            note=note,
            transfer_id=transfer_id,
            reason_code=reason_code,
            min_stock_change=min_stock_change,
            min_stock_target=min_stock_target,
        )
        return StockTransactionRecord.from_model(entry)

    def append(
        self,
        stock: Stock,
        actor_id: UUID,
        transaction_type: TransactionType | str,
        quantity: int | None = None,
        *,
        unit_cost: Decimal | None = None,
        reference: str | None = None,
        note: str | None = None,
        transfer_id: UUID | None = None,
        reason_code: str | None = None,
        min_stock_change: int | None = None,
        min_stock_target: int | None = None,
        verify_chain: bool = True,
    ) -> StockTransaction:
        """
        Append an entry to a stock row the caller has already locked.

        ``verify_chain=False`` is reserved for the explicit reconciliation
        action, which rewrites the cache before appending its correction.
        """
        transaction_type = TransactionType(transaction_type)

        if stock.integrity_hold:
            logger.warning(
                "ledger_write_refused_on_hold",
                extra={"stock_id": str(stock.id), "hold_reason": stock.hold_reason},
            )
            raise StockOnHoldError(str(stock.id), stock.hold_reason)

        if verify_chain:
            self.verify_tail(stock)

        applied = apply_effect(
            balance_of(stock),
            transaction_type,
            quantity,
            min_stock_change,
            min_stock_target,
            stock_id=str(stock.id),
        )
        effect = LEDGER_EFFECTS[transaction_type]

        total_cost = None
        if effect.moves_quantity:
            if unit_cost is None:
                unit_cost = stock.drug.unit_price
            total_cost = Decimal(quantity) * unit_cost

        now: datetime = self.clock.now()
        seq = stock.ledger_seq + 1

        entry = StockTransaction(
            stock_id=stock.id,
            seq=seq,
            type=transaction_type.value,
            quantity=quantity,
            before_qty=applied.before.total_quantity,
            after_qty=applied.after.total_quantity,
            before_reserved=applied.before.reserved_qty,
            after_reserved=applied.after.reserved_qty,
            before_min_stock=applied.before.minimum_stock,
            after_min_stock=applied.after.minimum_stock,
            min_stock_change=applied.min_stock_change,
            unit_cost=unit_cost,
            total_cost=total_cost,
            reference=reference,
            transfer_id=transfer_id,
            reason_code=reason_code,
            note=note,
            actor_id=actor_id,
            created_at=now,
        )

        stock.total_quantity = applied.after.total_quantity
        stock.reserved_qty = applied.after.reserved_qty
        stock.minimum_stock = applied.after.minimum_stock
        if effect.moves_quantity:
            stock.total_value = Decimal(applied.after.total_quantity) * unit_cost
        stock.ledger_seq = seq
        stock.last_updated = now

        self.session.add(entry)
        self.session.flush()

        with LogContext.bind(stock_id=stock.id, actor_id=actor_id, reference=reference):
            logger.info(
                "ledger_entry_recorded",
                extra={
                    "seq": seq,
                    "transaction_type": transaction_type.value,
                    "quantity": quantity,
                    "before_qty": applied.before.total_quantity,
                    "after_qty": applied.after.total_quantity,
                    "before_min_stock": applied.before.minimum_stock,
                    "after_min_stock": applied.after.minimum_stock,
                    "transfer_id": str(transfer_id) if transfer_id else None,
                },
            )
        return entry
