"""
Tests for StockReconciliationService.

Invariants tested:
- A consistent row replays to its cached balance
- A cache edited outside the ledger is detected, never silently fixed
- Holds block writes until released; release records an INFO_CORRECTION
"""

from uuid import uuid4

import pytest
from sqlalchemy import text

from pharmacy_kernel.domain.ledger_effects import TransactionType
from pharmacy_kernel.exceptions import (
    CorruptionError,
    MissingReasonError,
    StockNotFoundError,
    StockOnHoldError,
)
from pharmacy_kernel.services.reconciliation_service import RECONCILIATION_REASON


def _corrupt_quantity(session, stock, value):
    session.execute(
        text("UPDATE stocks SET total_quantity = :v WHERE id = :id"),
        {"v": value, "id": str(stock.id)},
    )


@pytest.fixture
def busy_stock(make_stock, ledger, min_stock, actor_id):
    stock = make_stock("PHARMACY", quantity=100, minimum_stock=50)
    ledger.record(stock.id, actor_id, TransactionType.TRANSFER_OUT, -20)
    min_stock.adjust_minimum(stock.id, actor_id, 10, "demand")
    ledger.record(stock.id, actor_id, TransactionType.RESERVE, 5)
    min_stock.reset_minimum(stock.id, actor_id, 40, "review")
    return stock


class TestCheck:
    def test_consistent_row(self, reconciliation, busy_stock):
        report = reconciliation.check(busy_stock)
        assert report.is_consistent
        assert report.entry_count == 4
        assert (report.ledger_quantity, report.ledger_reserved, report.ledger_minimum) == (80, 5, 40)
        assert report.chain_breaks == ()

    def test_row_without_entries(self, reconciliation, make_stock):
        stock = make_stock(quantity=12, minimum_stock=3)
        report = reconciliation.check(stock)
        assert report.is_consistent
        assert report.ledger_quantity == 12

    def test_edited_cache_reported(self, session, reconciliation, ledger, busy_stock):
        _corrupt_quantity(session, busy_stock, 300)
        stock = ledger.lock_stock(busy_stock.id)

        report = reconciliation.check(stock)

        assert not report.is_consistent
        assert report.mismatched_fields == ("total_quantity",)
        assert (report.ledger_quantity, report.cached_quantity) == (80, 300)


class TestReconcileStock:
    def test_consistent(self, reconciliation, busy_stock):
        assert reconciliation.reconcile_stock(busy_stock.id).is_consistent

    def test_divergent_raises(self, session, reconciliation, busy_stock, captured_logs):
        _corrupt_quantity(session, busy_stock, 300)
        with pytest.raises(CorruptionError) as exc_info:
            reconciliation.reconcile_stock(busy_stock.id)
        assert exc_info.value.field == "total_quantity"
        assert exc_info.value.ledger_value == 80
        assert exc_info.value.cached_value == 300
        assert any(r["message"] == "ledger_divergence_detected" for r in captured_logs())

    def test_unknown_stock(self, reconciliation):
        with pytest.raises(StockNotFoundError):
            reconciliation.reconcile_stock(uuid4())


class TestReconcileDepartment:
    def test_holds_only_divergent_rows(self, session, reconciliation, make_stock, busy_stock):
        healthy = make_stock("PHARMACY", quantity=7)
        other_dept = make_stock("OPD", quantity=9)
        _corrupt_quantity(session, busy_stock, 300)

        reports = reconciliation.reconcile_department("PHARMACY")

        assert len(reports) == 2
        divergent = [r for r in reports if not r.is_consistent]
        assert [r.stock_id for r in divergent] == [busy_stock.id]
        assert busy_stock.integrity_hold
        assert "total_quantity" in busy_stock.hold_reason
        assert not healthy.integrity_hold
        assert not other_dept.integrity_hold


class TestHoldCycle:
    def test_place_hold_is_idempotent(self, reconciliation, make_stock):
        stock = make_stock()
        reconciliation.place_hold(stock.id, "first")
        reconciliation.place_hold(stock.id, "second")
        assert stock.hold_reason == "first"

    def test_release_rewrites_cache_from_ledger(
        self, session, reconciliation, ledger, busy_stock, actor_id
    ):
        _corrupt_quantity(session, busy_stock, 300)
        reconciliation.place_hold(busy_stock.id, "divergence")

        entry = reconciliation.release_hold(busy_stock.id, actor_id, "recounted shelf")

        assert entry.type is TransactionType.INFO_CORRECTION
        assert entry.reason_code == RECONCILIATION_REASON
        assert entry.seq == 5
        assert "recounted shelf" in entry.note
        assert "quantity 300 -> 80" in entry.note
        assert busy_stock.total_quantity == 80
        assert not busy_stock.integrity_hold
        assert busy_stock.hold_reason is None
        assert reconciliation.check(busy_stock).is_consistent

        after = ledger.record(busy_stock.id, actor_id, TransactionType.DISPENSE_EXTERNAL, -5)
        assert after.before_qty == 80

    def test_held_row_refuses_writes(self, reconciliation, ledger, make_stock, actor_id):
        stock = make_stock(quantity=10)
        reconciliation.place_hold(stock.id, "audit")
        with pytest.raises(StockOnHoldError):
            ledger.record(stock.id, actor_id, TransactionType.DISPENSE_EXTERNAL, -1)

    @pytest.mark.parametrize("note", [None, "", "  "])
    def test_release_requires_note(self, reconciliation, make_stock, actor_id, note):
        stock = make_stock()
        reconciliation.place_hold(stock.id, "audit")
        with pytest.raises(MissingReasonError):
            reconciliation.release_hold(stock.id, actor_id, note)
        assert stock.integrity_hold
