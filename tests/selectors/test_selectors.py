"""Tests for the read-side selectors (stock, ledger, transfer)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pharmacy_kernel.domain.dtos import DispenseLine, TransferLineRequest
from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.domain.transfer import TransferStatus
from pharmacy_kernel.exceptions import StockNotFoundError, TransferNotFoundError
from pharmacy_kernel.selectors import LedgerSelector, StockSelector, TransferSelector


@pytest.fixture
def stocks(session):
    return StockSelector(session)


@pytest.fixture
def entries(session):
    return LedgerSelector(session)


@pytest.fixture
def transfers(session):
    return TransferSelector(session)


class TestStockSelector:
    def test_get_returns_record(self, stocks, make_stock, paracetamol):
        stock = make_stock("PHARMACY", quantity=30, minimum_stock=10, drug=paracetamol)
        record = stocks.get(stock.id)
        assert record.department is Department.PHARMACY
        assert record.drug_code == "PARA500"
        assert record.available_stock == 30
        assert not record.is_low_stock

    def test_get_unknown(self, stocks):
        with pytest.raises(StockNotFoundError):
            stocks.get(uuid4())

    def test_find_for(self, stocks, make_stock, paracetamol):
        make_stock("OPD", quantity=3, drug=paracetamol)
        assert stocks.find_for(paracetamol.id, "OPD").total_quantity == 3
        assert stocks.find_for(paracetamol.id, "PHARMACY") is None

    def test_department_list_low_stock_first(self, stocks, make_stock, make_drug):
        make_stock("PHARMACY", quantity=100, minimum_stock=10, drug=make_drug("A1", "Amoxicillin"))
        make_stock("PHARMACY", quantity=5, minimum_stock=10, drug=make_drug("Z1", "Zinc"))
        make_stock("OPD", quantity=1, minimum_stock=10, drug=make_drug("B1", "Bisoprolol"))

        listed = stocks.list_department("PHARMACY")

        assert [r.drug_name for r in listed] == ["Zinc", "Amoxicillin"]

    def test_low_stock_is_inclusive(self, stocks, make_stock):
        at_minimum = make_stock("OPD", quantity=10, minimum_stock=10)
        make_stock("OPD", quantity=11, minimum_stock=10)
        low = stocks.low_stock("OPD")
        assert [r.id for r in low] == [at_minimum.id]

    def test_summary(self, stocks, make_stock, make_drug):
        make_stock("PHARMACY", quantity=40, minimum_stock=10, drug=make_drug(unit_price=Decimal("1.00")))
        make_stock("PHARMACY", quantity=0, minimum_stock=10, drug=make_drug(unit_price=Decimal("9.00")))
        make_stock("PHARMACY", quantity=4, minimum_stock=5, drug=make_drug(unit_price=Decimal("0.50")))

        summary = stocks.summary("PHARMACY")

        assert summary.total_stocks == 3
        assert summary.low_stock_count == 2
        assert summary.out_of_stock_count == 1
        assert summary.total_value == Decimal("42.00")

    def test_on_hold(self, stocks, make_stock, reconciliation):
        held = make_stock()
        make_stock()
        reconciliation.place_hold(held.id, "audit")
        assert [r.id for r in stocks.on_hold()] == [held.id]


class TestLedgerSelector:
    def test_for_stock_oldest_first(self, entries, ledger, make_stock, actor_id):
        stock = make_stock(quantity=10)
        ledger.record(stock.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 5)
        ledger.record(stock.id, actor_id, TransactionType.DISPENSE_EXTERNAL, -2)

        listed = entries.for_stock(stock.id)

        assert [e.seq for e in listed] == [1, 2]
        only_out = entries.for_stock(stock.id, TransactionType.DISPENSE_EXTERNAL)
        assert [e.quantity for e in only_out] == [-2]
        assert entries.count_for_stock(stock.id) == 2

    def test_for_department_newest_first(self, entries, ledger, make_stock, actor_id, clock):
        pharmacy = make_stock("PHARMACY", quantity=10)
        opd = make_stock("OPD", quantity=10)
        ledger.record(pharmacy.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 1)
        clock.tick()
        ledger.record(pharmacy.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 2)
        ledger.record(opd.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 3)

        listed = entries.for_department("PHARMACY")
        assert [e.quantity for e in listed] == [2, 1]
        assert [e.quantity for e in entries.for_department("PHARMACY", limit=1)] == [2]

    def test_for_reference(self, entries, ledger, make_stock, actor_id):
        stock = make_stock(quantity=10)
        ledger.record(stock.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 1, reference="GRN-7")
        ledger.record(stock.id, actor_id, TransactionType.RECEIVE_EXTERNAL, 1, reference="GRN-8")
        assert [e.reference for e in entries.for_reference("GRN-7")] == ["GRN-7"]


class TestTransferSelector:
    def _create(self, workflow, actor_id, drug, from_dept="PHARMACY", to_dept="OPD"):
        return workflow.create(actor_id, from_dept, to_dept, [TransferLineRequest(drug.id, 5)])

    def test_get_and_by_requisition(self, transfers, workflow, actor_id, paracetamol):
        created = self._create(workflow, actor_id, paracetamol)
        assert transfers.get(created.id).requisition_number == created.requisition_number
        assert transfers.get_by_requisition(created.requisition_number).id == created.id
        assert transfers.get(created.id).item_for_drug(paracetamol.id).requested_qty == 5

    def test_missing(self, transfers):
        with pytest.raises(TransferNotFoundError):
            transfers.get(uuid4())
        with pytest.raises(TransferNotFoundError):
            transfers.get_by_requisition("REQ000000000")

    def test_lists(self, transfers, workflow, actor_id, make_drug, clock):
        first = self._create(workflow, actor_id, make_drug())
        clock.tick()
        second = self._create(workflow, actor_id, make_drug(), "OPD", "PHARMACY")
        workflow.cancel(first.id, actor_id, "duplicate")

        opd = transfers.list_for_department("OPD")
        assert [t.id for t in opd] == [second.id, first.id]
        pending = transfers.list_for_department("PHARMACY", TransferStatus.PENDING)
        assert [t.id for t in pending] == [second.id]
        assert [t.id for t in transfers.list_by_status("CANCELLED")] == [first.id]

    def test_prepared_items_carry_batch(self, transfers, workflow, actor_id, paracetamol):
        created = self._create(workflow, actor_id, paracetamol)
        item_id = created.items[0].id
        workflow.approve(created.id, actor_id)
        workflow.prepare(
            created.id,
            actor_id,
            {item_id: DispenseLine(5, "LOT-9", date(2027, 3, 31), "Acme")},
        )
        item = transfers.get(created.id).items[0]
        assert (item.lot_number, item.expiry_date, item.manufacturer) == (
            "LOT-9",
            date(2027, 3, 31),
            "Acme",
        )
