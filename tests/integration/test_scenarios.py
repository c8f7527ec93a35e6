"""
End-to-end scenarios through PharmacyInventory.

A  full transfer PHARMACY -> OPD moves stock with paired ledger entries
B  a minimum-stock increase leaves quantity untouched
C  two approvals of one transfer: exactly one succeeds
D  dispensing beyond available stock is rejected, stock unchanged
E  dispensing without a lot number is rejected, transfer stays APPROVED
"""

from datetime import date
from uuid import uuid4

import pytest

from pharmacy_kernel.domain.dtos import DispenseLine, TransferLineRequest
from pharmacy_kernel.domain.ledger_effects import TransactionType
from pharmacy_kernel.domain.transfer import TransferStatus
from pharmacy_kernel.exceptions import ConflictError, ValidationError


@pytest.fixture
def drug_x(committed_drug):
    return committed_drug("DRUGX")


@pytest.fixture
def pharmacy_stock(inventory, drug_x):
    return inventory.provision_stock(drug_x.id, "PHARMACY", 100, 50)


def _transfer(inventory, actor_id, drug, qty=20, **kwargs):
    return inventory.create_transfer(
        actor_id, "PHARMACY", "OPD", [TransferLineRequest(drug.id, qty)], **kwargs
    )


class TestScenarioA:
    def test_full_transfer(self, inventory, drug_x, pharmacy_stock, actor_id):
        transfer = _transfer(inventory, actor_id, drug_x, requisition_number="REQ001")
        item_id = transfer.items[0].id

        inventory.approve_transfer(transfer.id, actor_id, {item_id: 20})
        inventory.prepare_transfer(
            transfer.id,
            actor_id,
            {item_id: DispenseLine(20, lot_number="L1", expiry_date=date(2026, 1, 1))},
        )
        delivered = inventory.deliver_transfer(transfer.id, actor_id, {item_id: 20})

        assert delivered.status is TransferStatus.DELIVERED
        assert delivered.items[0].received_qty == 20
        assert inventory.get_stock(pharmacy_stock.id).total_quantity == 80

        entries = inventory.ledger_for_reference("REQ001")
        assert len(entries) == 2
        out = next(e for e in entries if e.type is TransactionType.TRANSFER_OUT)
        into = next(e for e in entries if e.type is TransactionType.TRANSFER_IN)
        assert out.quantity == -20
        assert out.stock_id == pharmacy_stock.id
        assert into.quantity == 20
        assert into.stock_id == inventory.find_stock(drug_x.id, "OPD").id
        assert {e.reference for e in entries} == {"REQ001"}


class TestScenarioB:
    def test_minimum_increase(self, inventory, pharmacy_stock, actor_id):
        entry = inventory.adjust_minimum(pharmacy_stock.id, actor_id, 10, "reorder policy")

        assert entry.type is TransactionType.MIN_STOCK_INCREASE
        assert (entry.before_min_stock, entry.after_min_stock) == (50, 60)
        assert entry.min_stock_change == 10
        assert entry.before_qty == entry.after_qty == 100
        stock = inventory.get_stock(pharmacy_stock.id)
        assert (stock.total_quantity, stock.minimum_stock) == (100, 60)


class TestScenarioC:
    def test_one_of_two_approvals_succeeds(self, inventory, drug_x, pharmacy_stock, actor_id):
        transfer = _transfer(inventory, actor_id, drug_x)

        outcomes = []
        for approver in (uuid4(), uuid4()):
            try:
                outcomes.append(inventory.approve_transfer(transfer.id, approver))
            except ConflictError as exc:
                outcomes.append(exc)

        assert sum(1 for o in outcomes if isinstance(o, ConflictError)) == 1
        assert inventory.get_transfer(transfer.id).status is TransferStatus.APPROVED
        assert inventory.transfers_by_status("APPROVED")[0].id == transfer.id


class TestScenarioD:
    def test_dispense_beyond_available(self, inventory, committed_drug, actor_id):
        drug = committed_drug("DRUGD")
        stock = inventory.provision_stock(drug.id, "OPD", 20, 0)

        with pytest.raises(ValidationError):
            inventory.record_transaction(stock.id, actor_id, "DISPENSE_EXTERNAL", -30)

        after = inventory.get_stock(stock.id)
        assert (after.total_quantity, after.reserved_qty) == (20, 0)
        assert inventory.ledger_for_stock(stock.id) == []


class TestScenarioE:
    def test_prepare_without_lot(self, inventory, drug_x, pharmacy_stock, actor_id):
        transfer = _transfer(inventory, actor_id, drug_x)
        item_id = transfer.items[0].id
        inventory.approve_transfer(transfer.id, actor_id)

        with pytest.raises(ValidationError):
            inventory.prepare_transfer(
                transfer.id, actor_id, {item_id: DispenseLine(5, expiry_date=date(2026, 1, 1))}
            )

        current = inventory.get_transfer(transfer.id)
        assert current.status is TransferStatus.APPROVED
        assert current.items[0].approved_qty == 20
        assert current.items[0].requested_qty == 20
        assert current.items[0].dispensed_qty is None
