"""
StockUpdateService -- combined quantity / minimum edit of one stock row.

Responsibility:
    The "edit stock" path: the caller supplies the new on-hand total and/or
    the new minimum, and the service turns the difference into ledger
    entries (ADJUST_INCREASE / ADJUST_DECREASE for quantity,
    MIN_STOCK_INCREASE / MIN_STOCK_DECREASE for the threshold, or a single
    DATA_UPDATE when nothing changed).  All entries share one transaction.

Architecture position:
    Kernel > Services.  Thin orchestration over StockLedger.

Failure modes:
    - DepartmentMismatchError: the caller's department is not the row's.
    - InvalidQuantityError / InvalidMinimumStockError: negative targets.
    - InsufficientStockError: new total below the reserved quantity.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import StockTransactionRecord
from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.exceptions import (
    DepartmentMismatchError,
    InvalidMinimumStockError,
    InvalidQuantityError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.stock import StockTransaction
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.stock_update")


def generate_adjustment_reason(
    current_qty: int, new_qty: int, current_min: int, new_min: int
) -> str:
    """Reason used when the caller leaves it blank.  Quantity wins over minimum."""
    qty_change = new_qty - current_qty
    min_change = new_min - current_min
    if qty_change > 0:
        return "stock increase"
    if qty_change < 0:
        return "stock decrease"
    if min_change > 0:
        return "minimum increase"
    if min_change < 0:
        return "minimum decrease"
    return "data update"


class StockUpdateService(BaseService[StockTransaction]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or StockLedger(session, self.clock)

    def update_stock(
        self,
        stock_id: UUID,
        actor_id: UUID,
        department: Department | str,
        new_total_quantity: int | None = None,
        new_minimum_stock: int | None = None,
        reason: str | None = None,
    ) -> list[StockTransactionRecord]:
        """
        Bring the row to the requested values through ledger entries.

        Returns:
            The entries written, quantity entry first.
        """
        stock = self._ledger.lock_stock(stock_id)
        department = Department(department)
        if department.value != stock.department:
            raise DepartmentMismatchError(expected=stock.department, actual=department.value)

        current_qty = stock.total_quantity
        current_min = stock.minimum_stock
        target_qty = current_qty if new_total_quantity is None else new_total_quantity
        target_min = current_min if new_minimum_stock is None else new_minimum_stock

        if isinstance(target_qty, bool) or not isinstance(target_qty, int) or target_qty < 0:
            raise InvalidQuantityError("STOCK_UPDATE", target_qty, "total quantity must be >= 0")
        if isinstance(target_min, bool) or not isinstance(target_min, int) or target_min < 0:
            raise InvalidMinimumStockError(
                str(stock_id), current_min, target_min, "minimum stock must be >= 0"
            )

        if reason is None or not reason.strip():
            reason = generate_adjustment_reason(current_qty, target_qty, current_min, target_min)
        reason = reason.strip()
        reference = f"STOCK_ADJ_{self.clock.now().strftime('%Y%m%d%H%M%S')}"

        entries = []
        qty_change = target_qty - current_qty
        min_change = target_min - current_min

        if qty_change != 0:
            tx_type = (
                TransactionType.ADJUST_INCREASE if qty_change > 0
                else TransactionType.ADJUST_DECREASE
            )
            entries.append(
                self._ledger.append(
                    stock, actor_id, tx_type, qty_change,
                    reference=reference,
                    reason_code=reason,
                    note=f"{reason} | quantity {current_qty} -> {target_qty}",
                )
            )

        if min_change != 0:
            tx_type = (
                TransactionType.MIN_STOCK_INCREASE if min_change > 0
                else TransactionType.MIN_STOCK_DECREASE
            )
            entries.append(
                self._ledger.append(
                    stock, actor_id, tx_type,
                    min_stock_change=min_change,
                    reference=reference,
                    reason_code=reason,
                    note=f"{reason} | minimum {current_min} -> {target_min}",
                )
            )

        if not entries:
            entries.append(
                self._ledger.append(
                    stock, actor_id, TransactionType.DATA_UPDATE,
                    reference=reference,
                    reason_code=reason,
                    note=reason,
                )
            )

        logger.info(
            "stock_updated",
            extra={
                "stock_id": str(stock_id),
                "quantity_change": qty_change,
                "minimum_change": min_change,
                "entries": len(entries),
                "reason_code": reason,
            },
        )
        return [StockTransactionRecord.from_model(e) for e in entries]
