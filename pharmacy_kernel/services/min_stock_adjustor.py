"""
MinimumStockAdjustor -- reorder-threshold write path.

Responsibility:
    Changes a stock row's ``minimum_stock`` through the ledger, producing
    MIN_STOCK_INCREASE / MIN_STOCK_DECREASE / MIN_STOCK_RESET entries.
    Quantity is never touched: every entry has before_qty == after_qty.

Architecture position:
    Kernel > Services.  Independent of the transfer workflow; shares the
    StockLedger write path so locking and verification are identical.

Invariants enforced:
    MIN_STOCK_NEVER_MOVES_QUANTITY -- through the effect table.
    Minimum stock >= 0 -- InvalidMinimumStockError.

Failure modes:
    - MissingReasonError: blank reason_code.
    - InvalidQuantityError: non-integer delta/target.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import StockTransactionRecord
from pharmacy_kernel.domain.ledger_effects import TransactionType
from pharmacy_kernel.exceptions import InvalidQuantityError, MissingReasonError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.stock import StockTransaction
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.min_stock")


def _require_whole(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(name, value, "must be a whole number")


class MinimumStockAdjustor(BaseService[StockTransaction]):
    """
    Minimum-stock adjustments.

    Contract:
        ``adjust_minimum`` takes a signed delta; ``reset_minimum`` takes an
        absolute target.  A zero delta records a RESET that re-affirms the
        current threshold.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or StockLedger(session, self.clock)

    def adjust_minimum(
        self,
        stock_id: UUID,
        actor_id: UUID,
        delta: int,
        reason_code: str,
        note: str | None = None,
    ) -> StockTransactionRecord:
        _require_whole("MIN_STOCK_ADJUST", delta)
        reason_code = self._require_reason(reason_code)
        stock = self._ledger.lock_stock(stock_id)

        if delta > 0:
            entry = self._ledger.append(
                stock, actor_id, TransactionType.MIN_STOCK_INCREASE,
                min_stock_change=delta, reason_code=reason_code, note=note,
            )
        elif delta < 0:
            entry = self._ledger.append(
                stock, actor_id, TransactionType.MIN_STOCK_DECREASE,
                min_stock_change=delta, reason_code=reason_code, note=note,
            )
        else:
            entry = self._ledger.append(
                stock, actor_id, TransactionType.MIN_STOCK_RESET,
                min_stock_target=stock.minimum_stock, reason_code=reason_code, note=note,
            )

        logger.info(
            "minimum_stock_adjusted",
            extra={
                "stock_id": str(stock_id),
                "delta": delta,
                "before_min_stock": entry.before_min_stock,
                "after_min_stock": entry.after_min_stock,
                "reason_code": reason_code,
            },
        )
        return StockTransactionRecord.from_model(entry)

    def reset_minimum(
        self,
        stock_id: UUID,
        actor_id: UUID,
        target: int,
        reason_code: str,
        note: str | None = None,
    ) -> StockTransactionRecord:
        _require_whole("MIN_STOCK_RESET", target)
        reason_code = self._require_reason(reason_code)
        stock = self._ledger.lock_stock(stock_id)
        entry = self._ledger.append(
            stock, actor_id, TransactionType.MIN_STOCK_RESET,
            min_stock_target=target, reason_code=reason_code, note=note,
        )
        logger.info(
            "minimum_stock_reset",
            extra={
                "stock_id": str(stock_id),
                "before_min_stock": entry.before_min_stock,
                "after_min_stock": entry.after_min_stock,
                "reason_code": reason_code,
            },
        )
        return StockTransactionRecord.from_model(entry)

    @staticmethod
    def _require_reason(reason_code: str | None) -> str:
        if reason_code is None or not reason_code.strip():
            raise MissingReasonError("minimum stock adjustment")
        return reason_code.strip()
