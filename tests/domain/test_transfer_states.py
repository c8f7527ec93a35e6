"""Tests for the transfer status graph."""

import pytest

from pharmacy_kernel.domain.transfer import (
    STAGE_TARGET,
    TERMINAL_TRANSFER_STATUSES,
    TRANSFER_TRANSITIONS,
    TransferStage,
    TransferStatus,
    can_apply,
    can_transition,
)


class TestTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            (TransferStatus.PENDING, TransferStatus.APPROVED),
            (TransferStatus.APPROVED, TransferStatus.PREPARED),
            (TransferStatus.PREPARED, TransferStatus.DELIVERED),
            (TransferStatus.PENDING, TransferStatus.CANCELLED),
            (TransferStatus.APPROVED, TransferStatus.CANCELLED),
            (TransferStatus.PREPARED, TransferStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (TransferStatus.PENDING, TransferStatus.PREPARED),
            (TransferStatus.PENDING, TransferStatus.DELIVERED),
            (TransferStatus.APPROVED, TransferStatus.APPROVED),
            (TransferStatus.APPROVED, TransferStatus.DELIVERED),
            (TransferStatus.PREPARED, TransferStatus.APPROVED),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_TRANSFER_STATUSES:
            assert TRANSFER_TRANSITIONS[status] == frozenset()
            assert status.is_terminal
        assert TransferStatus.terminal() == {TransferStatus.DELIVERED, TransferStatus.CANCELLED}

    def test_every_status_has_a_row(self):
        assert set(TRANSFER_TRANSITIONS) == set(TransferStatus)


class TestStages:
    def test_every_stage_has_a_target(self):
        assert set(STAGE_TARGET) == set(TransferStage)

    def test_create_is_never_applied_to_an_existing_transfer(self):
        for status in TransferStatus:
            assert not can_apply(TransferStage.CREATE, status)

    def test_cancel_rejected_once_terminal(self):
        assert not can_apply(TransferStage.CANCEL, TransferStatus.DELIVERED)
        assert not can_apply(TransferStage.CANCEL, TransferStatus.CANCELLED)
        assert can_apply(TransferStage.CANCEL, TransferStatus.PREPARED)

    def test_deliver_only_from_prepared(self):
        allowed = {s for s in TransferStatus if can_apply(TransferStage.DELIVER, s)}
        assert allowed == {TransferStatus.PREPARED}
