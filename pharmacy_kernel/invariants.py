"""
Kernel Invariants Contract.

These invariants are structural law. They are hardcoded in the ledger
write path, the transfer workflow and the database constraints/triggers.
No configuration value may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across StockLedger, TransferWorkflow, the item
reconciler, the immutability listeners and the DB triggers.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    LEDGER_APPEND_ONLY = "ledger_append_only"
    """Stock transactions are never updated or deleted. Enforced by ORM
    listeners (pharmacy_kernel.db.immutability) and DB triggers."""

    BALANCE_EQUALS_REPLAY = "balance_equals_replay"
    """Cached Stock quantities equal the opening values plus the replayed
    ledger. Checked on every write (last-entry snapshot) and in full by
    StockReconciliationService."""

    NON_NEGATIVE_AVAILABLE = "non_negative_available"
    """total_quantity - reserved_qty never drops below zero after a write.
    Enforced by StockLedger and DB check constraints."""

    MIN_STOCK_NEVER_MOVES_QUANTITY = "min_stock_never_moves_quantity"
    """MIN_STOCK_* entries leave total_quantity unchanged. Enforced by the
    single effect table in domain.ledger_effects."""

    ITEM_QUANTITY_CHAIN = "item_quantity_chain"
    """received <= dispensed <= approved <= requested for every transfer item.
    Enforced by the ordered-stage records in domain.item_stages and by DB
    check constraints."""

    TRANSFER_STATE_GUARD = "transfer_state_guard"
    """Every workflow transition re-reads and checks the status under lock
    and writes through a version-guarded UPDATE."""

    ATOMIC_DELIVERY = "atomic_delivery"
    """Both ledger entries of a delivered item and the DELIVERED status
    commit in one database transaction."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "pharmacy_services",
    "pharmacy_config",
)
