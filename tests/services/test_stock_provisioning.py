"""Tests for StockProvisioningService get-or-create."""

from decimal import Decimal
from uuid import uuid4

import pytest

from pharmacy_kernel.exceptions import (
    DrugNotFoundError,
    InvalidMinimumStockError,
    InvalidQuantityError,
)
from pharmacy_kernel.services.stock_provisioning import StockProvisioningService


class TestGetOrCreate:
    def test_creates_row(self, provisioning, paracetamol):
        stock, created = provisioning.get_or_create(paracetamol.id, "PHARMACY", 40, 15)

        assert created
        assert stock.department == "PHARMACY"
        assert stock.total_quantity == stock.opening_quantity == 40
        assert stock.minimum_stock == stock.opening_minimum_stock == 15
        assert stock.reserved_qty == 0
        assert stock.ledger_seq == 0
        assert stock.total_value == Decimal("100.00")
        assert not stock.integrity_hold

    def test_existing_row_returned_unchanged(self, provisioning, paracetamol):
        first, _ = provisioning.get_or_create(paracetamol.id, "OPD", 5, 3)
        again, created = provisioning.get_or_create(paracetamol.id, "OPD", 99, 99)
        assert not created
        assert again.id == first.id
        assert again.total_quantity == 5

    def test_default_minimum(self, session, clock, paracetamol):
        service = StockProvisioningService(session, clock, default_minimum_stock=25)
        stock, _ = service.get_or_create(paracetamol.id, "OPD")
        assert stock.minimum_stock == 25

    def test_departments_are_separate_rows(self, provisioning, paracetamol):
        pharmacy, _ = provisioning.get_or_create(paracetamol.id, "PHARMACY")
        opd, _ = provisioning.get_or_create(paracetamol.id, "OPD")
        assert pharmacy.id != opd.id

    def test_unknown_drug(self, provisioning):
        with pytest.raises(DrugNotFoundError):
            provisioning.get_or_create(uuid4(), "PHARMACY")

    def test_inactive_drug_rejected_without_price(self, provisioning, make_drug):
        retired = make_drug("OLD1", is_active=False)
        with pytest.raises(DrugNotFoundError):
            provisioning.get_or_create(retired.id, "OPD")

    def test_snapshot_price_skips_catalog(self, provisioning, make_drug):
        retired = make_drug("OLD2", unit_price=Decimal("9.00"), is_active=False)
        stock, created = provisioning.get_or_create(
            retired.id, "OPD", 4, unit_price=Decimal("1.50")
        )
        assert created
        assert stock.total_value == Decimal("6.00")

    def test_negative_opening_values(self, provisioning, paracetamol):
        with pytest.raises(InvalidQuantityError):
            provisioning.get_or_create(paracetamol.id, "PHARMACY", -1)
        with pytest.raises(InvalidMinimumStockError):
            provisioning.get_or_create(paracetamol.id, "PHARMACY", 0, -1)

    def test_unknown_department(self, provisioning, paracetamol):
        with pytest.raises(ValueError):
            provisioning.get_or_create(paracetamol.id, "ICU")
