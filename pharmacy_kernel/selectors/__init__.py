"""Selectors for the pharmacy kernel (read side)."""

from pharmacy_kernel.selectors.ledger_selector import LedgerSelector
from pharmacy_kernel.selectors.stock_selector import StockSelector
from pharmacy_kernel.selectors.transfer_selector import TransferSelector

__all__ = [
    "LedgerSelector",
    "StockSelector",
    "TransferSelector",
]
