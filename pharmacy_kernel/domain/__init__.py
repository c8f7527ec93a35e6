"""
Pure domain layer.

Value objects, enums and pure functions with NO dependencies on the ORM,
the database, the clock or I/O.  All domain objects are immutable.
"""

from pharmacy_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
)
from pharmacy_kernel.domain.dtos import (
    DispenseLine,
    DrugSnapshot,
    ReconciliationReport,
    StockRecord,
    StockSummary,
    StockTransactionRecord,
    TransferItemRecord,
    TransferLineRequest,
    TransferRecord,
)
from pharmacy_kernel.domain.item_stages import (
    Approved,
    BatchInfo,
    Dispensed,
    Received,
    Requested,
)
from pharmacy_kernel.domain.ledger_effects import (
    LEDGER_EFFECTS,
    Department,
    EffectTarget,
    StockBalance,
    TransactionType,
)
from pharmacy_kernel.domain.transfer import (
    TRANSFER_TRANSITIONS,
    TransferStage,
    TransferStatus,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SequentialClock",
    "SystemClock",
    "DispenseLine",
    "DrugSnapshot",
    "ReconciliationReport",
    "StockRecord",
    "StockSummary",
    "StockTransactionRecord",
    "TransferItemRecord",
    "TransferLineRequest",
    "TransferRecord",
    "Approved",
    "BatchInfo",
    "Dispensed",
    "Received",
    "Requested",
    "LEDGER_EFFECTS",
    "Department",
    "EffectTarget",
    "StockBalance",
    "TransactionType",
    "TRANSFER_TRANSITIONS",
    "TransferStage",
    "TransferStatus",
]
