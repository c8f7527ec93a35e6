"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is the source of truth for every quantity in the pharmacy.
A ledger entry, once written, can only be followed by a new entry, never
edited; a transfer item's dispensed quantity and batch, once recorded, are
what was physically handed over.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL / SQLite triggers)
    - Catches raw SQL, bulk UPDATE statements, console access
    - Fires AT the database level, independent of application code

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable                       | Rule
---------------------|--------------------------------------|---------------------------
StockTransaction     | ALWAYS (from creation)               | no UPDATE, no DELETE
TransferStageRecord  | ALWAYS (from creation)               | no UPDATE, no DELETE
TransferItem         | Each stage field once it is set      | write-once, no DELETE
Transfer             | After DELIVERED or CANCELLED         | no UPDATE, no DELETE
Stock                | never deleted                        | no DELETE

===============================================================================
USAGE
===============================================================================

    from pharmacy_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY - never in production):

    from pharmacy_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from pharmacy_kernel.exceptions import ImmutabilityViolationError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Item columns fixed at creation time.
_ITEM_CREATION_FIELDS = ("transfer_id", "line_no", "drug_id", "requested_qty", "unit_price")

# Item columns that may be filled once (None -> value) and never changed again.
_ITEM_WRITE_ONCE_FIELDS = (
    "approved_qty",
    "dispensed_qty",
    "received_qty",
    "lot_number",
    "expiry_date",
    "manufacturer",
)


def _reject(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": "LEDGER_APPEND_ONLY",
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_field(target) -> str | None:
    for attr in inspect(target).mapper.column_attrs:
        if get_history(target, attr.key).has_changes():
            return attr.key
    return None


def _check_stock_transaction_update(mapper, connection, target):
    """Ledger entries are append-only: any flushed column change is rejected."""
    field = _changed_field(target)
    if field is None:
        return
    _reject(
        "StockTransaction",
        target.id,
        "UPDATE",
        "Stock transactions are append-only; record a new entry instead",
        field,
    )


def _check_stock_transaction_delete(mapper, connection, target):
    _reject(
        "StockTransaction",
        target.id,
        "DELETE",
        "Stock transactions cannot be deleted",
    )


def _check_stage_record_update(mapper, connection, target):
    field = _changed_field(target)
    if field is None:
        return
    _reject(
        "TransferStageRecord",
        target.id,
        "UPDATE",
        "Transfer stage records are append-only",
        field,
    )


def _check_stage_record_delete(mapper, connection, target):
    _reject(
        "TransferStageRecord",
        target.id,
        "DELETE",
        "Transfer stage records cannot be deleted",
    )


def _check_transfer_item_update(mapper, connection, target):
    """
    Enforce write-once semantics on transfer item stage fields.

    Creation fields never change.  Stage fields may go from None to a value
    exactly once; any later change (including back to None) is rejected.
    """
    for field in _ITEM_CREATION_FIELDS:
        if get_history(target, field).deleted:
            _reject(
                "TransferItem",
                target.id,
                "UPDATE",
                f"Cannot modify '{field}' after the item was requested",
                field,
            )
    for field in _ITEM_WRITE_ONCE_FIELDS:
        hist = get_history(target, field)
        if any(old is not None for old in hist.deleted):
            _reject(
                "TransferItem",
                target.id,
                "UPDATE",
                f"'{field}' is write-once and already recorded",
                field,
            )


def _check_transfer_item_delete(mapper, connection, target):
    _reject("TransferItem", target.id, "DELETE", "Transfer items cannot be deleted")


def _check_transfer_update(mapper, connection, target):
    """
    Block changes to a transfer that already reached a terminal status.

    The transition INTO a terminal status is allowed (that is the write that
    delivers or cancels); any later change is rejected.
    """
    from pharmacy_kernel.domain.transfer import TransferStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = TransferStatus(status_history.deleted[0])
    elif not status_history.added:
        old_status = TransferStatus(target.status)
    else:
        return

    if old_status not in TransferStatus.terminal():
        return

    for attr in inspect(target).attrs:
        if attr.history.has_changes():
            _reject(
                "Transfer",
                target.id,
                "UPDATE",
                f"Cannot modify '{attr.key}' on a {old_status.value} transfer",
                attr.key,
            )


def _check_transfer_delete(mapper, connection, target):
    _reject("Transfer", target.id, "DELETE", "Transfers are cancelled, never deleted")


def _check_stock_delete(mapper, connection, target):
    _reject("Stock", target.id, "DELETE", "Stock rows are never deleted")


def _listener_table():
    from pharmacy_kernel.models.stock import Stock, StockTransaction
    from pharmacy_kernel.models.transfer import (
        Transfer,
        TransferItem,
        TransferStageRecord,
    )

    return (
        (StockTransaction, "before_update", _check_stock_transaction_update),
        (StockTransaction, "before_delete", _check_stock_transaction_delete),
        (TransferStageRecord, "before_update", _check_stage_record_update),
        (TransferStageRecord, "before_delete", _check_stage_record_delete),
        (TransferItem, "before_update", _check_transfer_item_update),
        (TransferItem, "before_delete", _check_transfer_item_delete),
        (Transfer, "before_update", _check_transfer_update),
        (Transfer, "before_delete", _check_transfer_delete),
        (Stock, "before_delete", _check_stock_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Safe to call more than once.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, listener_fn)
        for target, event_name, listener_fn in _listener_table()
    )
