"""
StockProvisioningService -- get-or-create for stock rows.

Responsibility:
    Creates the single Stock row of a (drug, department) pair when a drug is
    provisioned into a department, or when a delivery credits a department
    that never held the drug.  An existing row is returned unchanged.

Architecture position:
    Kernel > Services.  Called by the inventory facade and TransferWorkflow.

Invariants enforced:
    One row per (drug_id, department) -- the unique constraint is the
    arbiter; a concurrent creator loses inside a savepoint and re-reads.

Failure modes:
    - DrugNotFoundError: unknown or inactive drug.
    - InvalidQuantityError / InvalidMinimumStockError: negative opening values.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.catalog import DrugCatalog
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.ledger_effects import Department
from pharmacy_kernel.exceptions import InvalidMinimumStockError, InvalidQuantityError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.stock import Stock
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.drug_catalog import SqlDrugCatalog

logger = get_logger("services.stock_provisioning")

DEFAULT_MINIMUM_STOCK = 10


class StockProvisioningService(BaseService[Stock]):
    """
    Get-or-create of stock rows.

    Guarantees:
        - ``opening_quantity`` / ``opening_minimum_stock`` are written once,
          at creation, and are the starting point of ledger replay.
        - A second call for the same pair returns the existing row; the
          opening arguments are ignored.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        catalog: DrugCatalog | None = None,
        default_minimum_stock: int = DEFAULT_MINIMUM_STOCK,
    ):
        super().__init__(session, clock)
        self._catalog = catalog or SqlDrugCatalog(session)
        self._default_minimum_stock = default_minimum_stock

    def find(self, drug_id: UUID, department: Department | str) -> Stock | None:
        return self.session.execute(
            select(Stock).where(
                Stock.drug_id == drug_id,
                Stock.department == Department(department).value,
            )
        ).scalar_one_or_none()

    def get_or_create(
        self,
        drug_id: UUID,
        department: Department | str,
        opening_quantity: int = 0,
        minimum_stock: int | None = None,
        *,
        unit_price: Decimal | None = None,
    ) -> tuple[Stock, bool]:
        """
        Return ``(stock, created)`` for the pair.

        ``unit_price`` is a price already snapshotted by the caller (a
        transfer item).  When given, the catalog is not consulted, so a row
        can be created for a drug deactivated after the snapshot.

        Raises:
            DrugNotFoundError: drug missing or inactive, when a row has to
                be created and no ``unit_price`` is given.
        """
        department = Department(department)
        existing = self.find(drug_id, department)
        if existing is not None:
            return existing, False

        if minimum_stock is None:
            minimum_stock = self._default_minimum_stock
        if isinstance(opening_quantity, bool) or not isinstance(opening_quantity, int) or opening_quantity < 0:
            raise InvalidQuantityError("PROVISION", opening_quantity, "opening quantity must be >= 0")
        if minimum_stock < 0:
            raise InvalidMinimumStockError("new", 0, minimum_stock, "minimum stock cannot be negative")

        if unit_price is None:
            unit_price = self._catalog.get(drug_id).unit_price
        now = self.clock.now()

        savepoint = self.session.begin_nested()
        try:
            stock = Stock(
                drug_id=drug_id,
                department=department.value,
                total_quantity=opening_quantity,
                reserved_qty=0,
                minimum_stock=minimum_stock,
                total_value=Decimal(opening_quantity) * unit_price,
                opening_quantity=opening_quantity,
                opening_minimum_stock=minimum_stock,
                ledger_seq=0,
                integrity_hold=False,
                last_updated=now,
                created_at=now,
            )
            self.session.add(stock)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "stock_create_race_retry",
                extra={"drug_id": str(drug_id), "department": department.value},
            )
            savepoint.rollback()
            stock = self.session.execute(
                select(Stock)
                .where(Stock.drug_id == drug_id, Stock.department == department.value)
                .execution_options(populate_existing=True)
            ).scalar_one()
            return stock, False

        logger.info(
            "stock_provisioned",
            extra={
                "stock_id": str(stock.id),
                "drug_id": str(drug_id),
                "department": department.value,
                "opening_quantity": opening_quantity,
                "minimum_stock": minimum_stock,
            },
        )
        return stock, True
