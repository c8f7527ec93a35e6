"""
Transfer item reconciler (``pharmacy_kernel.domain.item_stages``).

Responsibility
--------------
Ordered-stage representation of one transfer line.  A line is always in
exactly one of four frozen states::

    Requested -> Approved -> Dispensed(batch) -> Received

Each state wraps the previous one, and each constructor checks its own
quantity against the previous stage's.  An item whose chain is invalid
therefore cannot be constructed, so the rest of the code never re-checks
``received <= dispensed <= approved <= requested`` by hand.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ITEM_QUANTITY_CHAIN -- ``__post_init__`` of every stage.
* Batch on dispense -- ``Dispensed`` with quantity > 0 requires
  ``lot_number`` and ``expiry_date``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Union

from pharmacy_kernel.exceptions import (
    InvalidQuantityError,
    MissingBatchInfoError,
    QuantityChainError,
)


@dataclass(frozen=True)
class BatchInfo:
    """Manufacturing identification recorded when a line is dispensed."""

    lot_number: str | None = None
    expiry_date: date | None = None
    manufacturer: str | None = None

    def missing_fields(self) -> list[str]:
        missing = []
        if not (self.lot_number and self.lot_number.strip()):
            missing.append("lot_number")
        if self.expiry_date is None:
            missing.append("expiry_date")
        return missing


def _check_whole(stage: str, quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(stage, quantity, "quantity must be a whole number")
    if quantity < 0:
        raise InvalidQuantityError(stage, quantity, "quantity cannot be negative")


@dataclass(frozen=True)
class Requested:
    requested_qty: int
    item_id: str | None = None

    def __post_init__(self):
        _check_whole("requested", self.requested_qty)
        if self.requested_qty == 0:
            raise InvalidQuantityError(
                "requested", self.requested_qty, "requested quantity must be positive"
            )

    @property
    def quantity(self) -> int:
        return self.requested_qty

    def approve(self, approved_qty: int) -> Approved:
        return Approved(self, approved_qty, self.item_id)


@dataclass(frozen=True)
class Approved:
    requested: Requested
    approved_qty: int
    item_id: str | None = None

    def __post_init__(self):
        _check_whole("approved", self.approved_qty)
        if self.approved_qty > self.requested.requested_qty:
            raise QuantityChainError(
                "approved", self.approved_qty, self.requested.requested_qty, self.item_id
            )

    @property
    def quantity(self) -> int:
        return self.approved_qty

    def dispense(self, dispensed_qty: int, batch: BatchInfo | None = None) -> Dispensed:
        return Dispensed(self, dispensed_qty, batch or BatchInfo(), self.item_id)


@dataclass(frozen=True)
class Dispensed:
    approved: Approved
    dispensed_qty: int
    batch: BatchInfo
    item_id: str | None = None

    def __post_init__(self):
        _check_whole("dispensed", self.dispensed_qty)
        if self.dispensed_qty > self.approved.approved_qty:
            raise QuantityChainError(
                "dispensed", self.dispensed_qty, self.approved.approved_qty, self.item_id
            )
        if self.dispensed_qty > 0:
            missing = self.batch.missing_fields()
            if missing:
                raise MissingBatchInfoError(missing, self.item_id)

    @property
    def quantity(self) -> int:
        return self.dispensed_qty

    def receive(self, received_qty: int) -> Received:
        return Received(self, received_qty, self.item_id)


@dataclass(frozen=True)
class Received:
    dispensed: Dispensed
    received_qty: int
    item_id: str | None = None

    def __post_init__(self):
        _check_whole("received", self.received_qty)
        if self.received_qty > self.dispensed.dispensed_qty:
            raise QuantityChainError(
                "received", self.received_qty, self.dispensed.dispensed_qty, self.item_id
            )

    @property
    def quantity(self) -> int:
        return self.received_qty

    @property
    def shortfall(self) -> int:
        """Units dispensed but not acknowledged on receipt."""
        return self.dispensed.dispensed_qty - self.received_qty


ItemState = Union[Requested, Approved, Dispensed, Received]


def item_state_from_columns(item) -> ItemState:
    """Rebuild the stage chain from a persisted item's nullable columns.

    Re-validates on the way, so a row edited outside the kernel into an
    invalid chain raises instead of loading.
    """
    item_id = str(item.id) if getattr(item, "id", None) is not None else None
    state: ItemState = Requested(item.requested_qty, item_id)
    if item.approved_qty is None:
        return state
    state = state.approve(item.approved_qty)
    if item.dispensed_qty is None:
        return state
    state = state.dispense(
        item.dispensed_qty,
        BatchInfo(item.lot_number, item.expiry_date, item.manufacturer),
    )
    if item.received_qty is None:
        return state
    return state.receive(item.received_qty)


def stage_quantity(state: ItemState) -> int:
    """Quantity at the latest stage reached."""
    return state.quantity


def line_value(state: ItemState, unit_price: Decimal) -> Decimal:
    return Decimal(stage_quantity(state)) * unit_price


def transfer_value(line_values: Iterable[Decimal]) -> Decimal:
    return sum(line_values, Decimal("0"))
