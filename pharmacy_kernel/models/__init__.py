"""ORM models for the pharmacy kernel."""

from pharmacy_kernel.models.drug import Drug
from pharmacy_kernel.models.requisition import RequisitionCounter
from pharmacy_kernel.models.stock import Stock, StockTransaction
from pharmacy_kernel.models.transfer import (
    Transfer,
    TransferItem,
    TransferStageRecord,
)

__all__ = [
    "Drug",
    "RequisitionCounter",
    "Stock",
    "StockTransaction",
    "Transfer",
    "TransferItem",
    "TransferStageRecord",
]
