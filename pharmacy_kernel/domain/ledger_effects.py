"""
Ledger effect table (``pharmacy_kernel.domain.ledger_effects``).

Responsibility
--------------
The closed enumeration of stock transaction types and the single
authoritative table describing what each type does to a stock balance.
Every other component (the ledger writer, the minimum-stock adjustor, the
reconciler's replay, the read models) derives per-type behaviour from
``LEDGER_EFFECTS``; nothing switches on type strings elsewhere.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over frozen value objects.
ZERO I/O.  May import only from ``pharmacy_kernel.exceptions``.

Invariants enforced
-------------------
* NON_NEGATIVE_AVAILABLE -- ``apply_effect`` refuses any result whose
  available stock (total - reserved) is negative.
* MIN_STOCK_NEVER_MOVES_QUANTITY -- MINIMUM-target effects copy
  total/reserved through unchanged.
* Sign discipline -- quantity-bearing types require a non-zero quantity
  whose sign matches the table; other types reject a quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from pharmacy_kernel.exceptions import (
    InsufficientStockError,
    InvalidMinimumStockError,
    InvalidQuantityError,
)


class Department(str, Enum):
    """The two inventory locations; each holds its own stock row per drug."""

    PHARMACY = "PHARMACY"
    OPD = "OPD"


class TransactionType(str, Enum):
    """Closed set of ledger entry types."""

    RECEIVE_EXTERNAL = "RECEIVE_EXTERNAL"
    DISPENSE_EXTERNAL = "DISPENSE_EXTERNAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    ADJUST_INCREASE = "ADJUST_INCREASE"
    ADJUST_DECREASE = "ADJUST_DECREASE"
    RESERVE = "RESERVE"
    UNRESERVE = "UNRESERVE"
    MIN_STOCK_INCREASE = "MIN_STOCK_INCREASE"
    MIN_STOCK_DECREASE = "MIN_STOCK_DECREASE"
    MIN_STOCK_RESET = "MIN_STOCK_RESET"
    DATA_UPDATE = "DATA_UPDATE"
    PRICE_UPDATE = "PRICE_UPDATE"
    INFO_CORRECTION = "INFO_CORRECTION"


class EffectTarget(str, Enum):
    """Which balance field a transaction type moves."""

    QUANTITY = "total_quantity"
    RESERVED = "reserved_qty"
    MINIMUM = "minimum_stock"
    NONE = "none"


@dataclass(frozen=True)
class LedgerEffect:
    """One row of the effect table.

    ``sign`` is +1 / -1 for signed deltas and None for descriptive types and
    for absolute-target types (``absolute=True``, i.e. MIN_STOCK_RESET).
    """

    target: EffectTarget
    sign: int | None
    absolute: bool = False

    @property
    def moves_quantity(self) -> bool:
        return self.target is EffectTarget.QUANTITY

    @property
    def carries_quantity(self) -> bool:
        """True when the ``quantity`` column holds the signed delta."""
        return self.target in (EffectTarget.QUANTITY, EffectTarget.RESERVED)

    @property
    def is_minimum(self) -> bool:
        return self.target is EffectTarget.MINIMUM

    @property
    def is_descriptive(self) -> bool:
        return self.target is EffectTarget.NONE


LEDGER_EFFECTS: dict[TransactionType, LedgerEffect] = {
    TransactionType.RECEIVE_EXTERNAL: LedgerEffect(EffectTarget.QUANTITY, +1),
    TransactionType.DISPENSE_EXTERNAL: LedgerEffect(EffectTarget.QUANTITY, -1),
    TransactionType.TRANSFER_IN: LedgerEffect(EffectTarget.QUANTITY, +1),
    TransactionType.TRANSFER_OUT: LedgerEffect(EffectTarget.QUANTITY, -1),
    TransactionType.ADJUST_INCREASE: LedgerEffect(EffectTarget.QUANTITY, +1),
    TransactionType.ADJUST_DECREASE: LedgerEffect(EffectTarget.QUANTITY, -1),
    TransactionType.RESERVE: LedgerEffect(EffectTarget.RESERVED, +1),
    TransactionType.UNRESERVE: LedgerEffect(EffectTarget.RESERVED, -1),
    TransactionType.MIN_STOCK_INCREASE: LedgerEffect(EffectTarget.MINIMUM, +1),
    TransactionType.MIN_STOCK_DECREASE: LedgerEffect(EffectTarget.MINIMUM, -1),
    TransactionType.MIN_STOCK_RESET: LedgerEffect(EffectTarget.MINIMUM, None, absolute=True),
    TransactionType.DATA_UPDATE: LedgerEffect(EffectTarget.NONE, None),
    TransactionType.PRICE_UPDATE: LedgerEffect(EffectTarget.NONE, None),
    TransactionType.INFO_CORRECTION: LedgerEffect(EffectTarget.NONE, None),
}

MIN_STOCK_TYPES: frozenset[TransactionType] = frozenset(
    t for t, e in LEDGER_EFFECTS.items() if e.is_minimum
)
QUANTITY_TYPES: frozenset[TransactionType] = frozenset(
    t for t, e in LEDGER_EFFECTS.items() if e.moves_quantity
)


def effect_of(transaction_type: TransactionType | str) -> LedgerEffect:
    return LEDGER_EFFECTS[TransactionType(transaction_type)]


@dataclass(frozen=True)
class StockBalance:
    """The three cached numbers of one stock row."""

    total_quantity: int
    reserved_qty: int = 0
    minimum_stock: int = 0

    @property
    def available_stock(self) -> int:
        return self.total_quantity - self.reserved_qty

    @property
    def is_low_stock(self) -> bool:
        return self.available_stock <= self.minimum_stock

    @property
    def is_out_of_stock(self) -> bool:
        return self.available_stock <= 0


@dataclass(frozen=True)
class AppliedEffect:
    """Result of applying one ledger entry to a balance."""

    transaction_type: TransactionType
    before: StockBalance
    after: StockBalance
    quantity: int | None
    min_stock_change: int | None


def validate_quantity(
    transaction_type: TransactionType,
    quantity: int | None,
    min_stock_change: int | None = None,
    min_stock_target: int | None = None,
) -> None:
    """Check the arguments of a ledger write against the effect table.

    Raises:
        InvalidQuantityError: wrong sign, zero, missing or unexpected values.
    """
    effect = LEDGER_EFFECTS[transaction_type]
    name = transaction_type.value

    if effect.carries_quantity:
        if quantity is None:
            raise InvalidQuantityError(name, quantity, "quantity is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(name, quantity, "quantity must be a whole number")
        if quantity == 0:
            raise InvalidQuantityError(name, quantity, "quantity must be non-zero")
        if (quantity > 0) != (effect.sign > 0):
            expected = "positive" if effect.sign > 0 else "negative"
            raise InvalidQuantityError(name, quantity, f"quantity must be {expected}")
        if min_stock_change is not None or min_stock_target is not None:
            raise InvalidQuantityError(
                name, quantity, "minimum stock fields are not allowed"
            )
        return

    if quantity is not None:
        raise InvalidQuantityError(
            name, quantity, "quantity must be empty for this transaction type"
        )

    if effect.is_minimum:
        if effect.absolute:
            if min_stock_target is None:
                raise InvalidQuantityError(name, None, "minimum stock target is required")
            if min_stock_change is not None:
                raise InvalidQuantityError(
                    name, None, "reset takes a target, not a change"
                )
            return
        if min_stock_change is None:
            raise InvalidQuantityError(name, None, "minimum stock change is required")
        if min_stock_change == 0 or (min_stock_change > 0) != (effect.sign > 0):
            expected = "positive" if effect.sign > 0 else "negative"
            raise InvalidQuantityError(
                name, min_stock_change, f"minimum stock change must be {expected}"
            )
        if min_stock_target is not None:
            raise InvalidQuantityError(name, None, "target is only valid for a reset")
        return

    if min_stock_change is not None or min_stock_target is not None:
        raise InvalidQuantityError(
            name, None, "descriptive entries carry no balance change"
        )


def apply_effect(
    balance: StockBalance,
    transaction_type: TransactionType,
    quantity: int | None = None,
    min_stock_change: int | None = None,
    min_stock_target: int | None = None,
    *,
    stock_id: str = "",
) -> AppliedEffect:
    """Apply one ledger entry to ``balance``.

    Pure: validates, computes the new balance and returns both snapshots.

    Raises:
        InvalidQuantityError: arguments do not match the effect table.
        InsufficientStockError: available or reserved stock would go negative.
        InvalidMinimumStockError: resulting minimum stock below zero.
    """
    validate_quantity(transaction_type, quantity, min_stock_change, min_stock_target)
    effect = LEDGER_EFFECTS[transaction_type]

    after = balance
    change = None

    if effect.target is EffectTarget.QUANTITY:
        after = replace(balance, total_quantity=balance.total_quantity + quantity)
        if after.available_stock < 0:
            raise InsufficientStockError(stock_id, -quantity, balance.available_stock)

    elif effect.target is EffectTarget.RESERVED:
        after = replace(balance, reserved_qty=balance.reserved_qty + quantity)
        if after.reserved_qty < 0:
            raise InsufficientStockError(stock_id, -quantity, balance.reserved_qty)
        if after.available_stock < 0:
            raise InsufficientStockError(stock_id, quantity, balance.available_stock)

    elif effect.target is EffectTarget.MINIMUM:
        target = min_stock_target if effect.absolute else balance.minimum_stock + min_stock_change
        if target < 0:
            raise InvalidMinimumStockError(
                stock_id, balance.minimum_stock, target, "minimum stock cannot be negative"
            )
        after = replace(balance, minimum_stock=target)
        change = target - balance.minimum_stock

    return AppliedEffect(
        transaction_type=transaction_type,
        before=balance,
        after=after,
        quantity=quantity,
        min_stock_change=change,
    )


def replay(opening: StockBalance, entries) -> StockBalance:
    """Fold ledger entries over an opening balance.

    ``entries`` yields objects with ``type``, ``quantity`` and
    ``min_stock_change`` attributes in creation order.  Every minimum entry
    records its change relative to the value before it, resets included.
    """
    balance = opening
    for entry in entries:
        effect = effect_of(entry.type)
        if effect.target is EffectTarget.QUANTITY:
            balance = replace(balance, total_quantity=balance.total_quantity + entry.quantity)
        elif effect.target is EffectTarget.RESERVED:
            balance = replace(balance, reserved_qty=balance.reserved_qty + entry.quantity)
        elif effect.target is EffectTarget.MINIMUM:
            balance = replace(
                balance, minimum_stock=balance.minimum_stock + entry.min_stock_change
            )
    return balance
