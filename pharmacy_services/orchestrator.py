"""
pharmacy_services.orchestrator -- DI container for kernel services.

Responsibility:
    Creates every kernel service for one session exactly once and wires
    them together with the configured numbering, default minimum stock
    and drug catalog.  No kernel service constructs its collaborators when
    built from here.

Architecture position:
    Services.  The only place where config values reach kernel
    constructors (through ``pharmacy_config.bridges``).

Usage:
    services = InventoryServices(session, config, clock)
    services.workflow.approve(...)
    services.stocks.low_stock(...)
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from pharmacy_config.bridges import numbering_options, provisioning_options
from pharmacy_config.schema import InventoryConfig
from pharmacy_kernel.domain.catalog import DrugCatalog
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.selectors.ledger_selector import LedgerSelector
from pharmacy_kernel.selectors.stock_selector import StockSelector
from pharmacy_kernel.selectors.transfer_selector import TransferSelector
from pharmacy_kernel.services.drug_catalog import SqlDrugCatalog
from pharmacy_kernel.services.min_stock_adjustor import MinimumStockAdjustor
from pharmacy_kernel.services.reconciliation_service import StockReconciliationService
from pharmacy_kernel.services.requisition_number_service import RequisitionNumberService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.services.stock_provisioning import StockProvisioningService
from pharmacy_kernel.services.stock_update import StockUpdateService
from pharmacy_kernel.services.transfer_workflow import TransferWorkflow

CatalogFactory = Callable[[Session], DrugCatalog]


class InventoryServices:
    """Central factory for kernel services.

    Guarantees:
        - All services share the same Session, Clock and StockLedger.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
    """

    def __init__(
        self,
        session: Session,
        config: InventoryConfig,
        clock: Clock | None = None,
        catalog_factory: CatalogFactory | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()

        self.catalog = (catalog_factory or SqlDrugCatalog)(session)
        self.ledger = StockLedger(session, self.clock)
        self.provisioning = StockProvisioningService(
            session, self.clock, catalog=self.catalog, **provisioning_options(config)
        )
        self.numbers = RequisitionNumberService(session, self.clock, **numbering_options(config))
        self.min_stock = MinimumStockAdjustor(session, self.clock, ledger=self.ledger)
        self.stock_update = StockUpdateService(session, self.clock, ledger=self.ledger)
        self.reconciliation = StockReconciliationService(session, self.clock, ledger=self.ledger)
        self.workflow = TransferWorkflow(
            session,
            self.clock,
            catalog=self.catalog,
            ledger=self.ledger,
            provisioning=self.provisioning,
            numbers=self.numbers,
            **provisioning_options(config),
        )

        # Read side
        self.stocks = StockSelector(session)
        self.entries = LedgerSelector(session)
        self.transfers = TransferSelector(session)
