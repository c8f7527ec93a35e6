"""
Transfer workflow state machine (``pharmacy_kernel.domain.transfer``).

Responsibility
--------------
Statuses and stages of an inter-department transfer, and the only valid
status transitions between them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* TRANSFER_STATE_GUARD -- ``TRANSFER_TRANSITIONS`` is the only source of
  valid status changes.  Terminal states have no outgoing edges.
"""

from __future__ import annotations

from enum import Enum


class TransferStatus(str, Enum):
    """Transfer lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PREPARED = "PREPARED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def terminal(cls) -> frozenset[TransferStatus]:
        return TERMINAL_TRANSFER_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TRANSFER_STATUSES


class TransferStage(str, Enum):
    """A workflow step; each is applied at most once per transfer."""

    CREATE = "CREATE"
    APPROVE = "APPROVE"
    PREPARE = "PREPARE"
    DELIVER = "DELIVER"
    CANCEL = "CANCEL"


TRANSFER_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({
        TransferStatus.APPROVED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.APPROVED: frozenset({
        TransferStatus.PREPARED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.PREPARED: frozenset({
        TransferStatus.DELIVERED,
        TransferStatus.CANCELLED,
    }),
    TransferStatus.DELIVERED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}

TERMINAL_TRANSFER_STATUSES: frozenset[TransferStatus] = frozenset({
    TransferStatus.DELIVERED,
    TransferStatus.CANCELLED,
})

# Status each stage moves the transfer into.
STAGE_TARGET: dict[TransferStage, TransferStatus] = {
    TransferStage.CREATE: TransferStatus.PENDING,
    TransferStage.APPROVE: TransferStatus.APPROVED,
    TransferStage.PREPARE: TransferStatus.PREPARED,
    TransferStage.DELIVER: TransferStatus.DELIVERED,
    TransferStage.CANCEL: TransferStatus.CANCELLED,
}


def can_transition(current: TransferStatus, target: TransferStatus) -> bool:
    return target in TRANSFER_TRANSITIONS[current]


def can_apply(stage: TransferStage, current: TransferStatus) -> bool:
    """True when ``stage`` may be applied to a transfer in ``current``."""
    if stage is TransferStage.CREATE:
        return False
    return can_transition(current, STAGE_TARGET[stage])
