"""
Pharmacy Kernel - Stock ledger and inter-department transfer core

An append-only stock ledger for a two-department hospital pharmacy with:
- Transactionally maintained stock balances
- Multi-stage transfer workflow (request, approve, prepare, deliver)
- Minimum-stock (reorder threshold) adjustments kept apart from quantity writes
- Ledger replay reconciliation against the cached balances
"""

__version__ = "0.1.0"
