"""
Append-only guards on the ledger and the transfer trail.

Two layers are exercised:
- ORM listeners (db/immutability.py) reject edits made through the session.
- Database triggers (db/triggers.py) reject raw SQL that bypasses the ORM.
"""

from datetime import date

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from pharmacy_kernel.db.immutability import immutability_listeners_registered
from pharmacy_kernel.db.triggers import triggers_installed
from pharmacy_kernel.domain.dtos import DispenseLine, TransferLineRequest
from pharmacy_kernel.domain.ledger_effects import TransactionType
from pharmacy_kernel.exceptions import ImmutabilityViolationError
from pharmacy_kernel.models.stock import Stock, StockTransaction
from pharmacy_kernel.models.transfer import Transfer, TransferItem, TransferStageRecord


@pytest.fixture
def entry(session, ledger, make_stock, actor_id):
    stock = make_stock(quantity=10)
    record = ledger.record(stock.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 5)
    return session.get(StockTransaction, record.id)


@pytest.fixture
def transfer(workflow, actor_id, paracetamol):
    return workflow.create(actor_id, "PHARMACY", "OPD", [TransferLineRequest(paracetamol.id, 10)])


class TestOrmListeners:
    def test_registered(self, db_engine):
        assert immutability_listeners_registered()

    def test_ledger_entry_update_rejected(self, session, entry):
        entry.quantity = 500
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StockTransaction"

    def test_ledger_entry_delete_rejected(self, session, entry):
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_stock_delete_rejected(self, session, make_stock):
        stock = make_stock()
        session.delete(stock)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_stage_record_update_rejected(self, session, transfer):
        record = session.execute(
            select(TransferStageRecord).where(TransferStageRecord.transfer_id == transfer.id)
        ).scalar_one()
        record.note = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_item_stage_fields_are_write_once(self, session, workflow, transfer, actor_id):
        workflow.approve(transfer.id, actor_id)
        item = session.get(TransferItem, transfer.items[0].id)
        item.approved_qty = 3
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "TransferItem"

    def test_item_requested_qty_fixed(self, session, transfer):
        item = session.get(TransferItem, transfer.items[0].id)
        item.requested_qty = 11
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_item_batch_can_be_filled_once(self, session, workflow, transfer, actor_id):
        item_id = transfer.items[0].id
        workflow.approve(transfer.id, actor_id)
        workflow.prepare(
            transfer.id, actor_id, {item_id: DispenseLine(0, "L1", date(2026, 1, 1))}
        )
        item = session.get(TransferItem, item_id)
        assert item.lot_number == "L1"
        item.lot_number = "L2"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_terminal_transfer_frozen(self, session, workflow, transfer, actor_id):
        workflow.cancel(transfer.id, actor_id, "not needed")
        model = session.get(Transfer, transfer.id)
        model.purpose = "changed afterwards"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Transfer"

    def test_non_terminal_transfer_editable(self, session, transfer):
        model = session.get(Transfer, transfer.id)
        model.purpose = "clarified"
        session.flush()


class TestDatabaseTriggers:
    def test_installed(self, db_engine):
        assert triggers_installed(db_engine)

    def test_raw_ledger_update_blocked(self, session, entry):
        with pytest.raises(DBAPIError) as exc_info:
            session.execute(
                text("UPDATE stock_transactions SET quantity = 500 WHERE id = :id"),
                {"id": str(entry.id)},
            )
        assert "IMMUTABILITY_VIOLATION" in str(exc_info.value)

    def test_raw_ledger_delete_blocked(self, session, entry):
        with pytest.raises(DBAPIError):
            session.execute(
                text("DELETE FROM stock_transactions WHERE id = :id"),
                {"id": str(entry.id)},
            )

    def test_raw_stock_delete_blocked(self, session, entry):
        with pytest.raises(DBAPIError):
            session.execute(
                text("DELETE FROM stocks WHERE id = :id"),
                {"id": str(entry.stock_id)},
            )

    def test_raw_stage_record_delete_blocked(self, session, transfer):
        with pytest.raises(DBAPIError):
            session.execute(
                text("DELETE FROM transfer_stage_records WHERE transfer_id = :id"),
                {"id": str(transfer.id)},
            )

    def test_stock_cache_is_not_trigger_protected(self, session, entry):
        session.execute(
            text("UPDATE stocks SET hold_reason = 'note' WHERE id = :id"),
            {"id": str(entry.stock_id)},
        )
        stock = session.execute(
            select(Stock).where(Stock.id == entry.stock_id).execution_options(populate_existing=True)
        ).scalar_one()
        assert stock.hold_reason == "note"
