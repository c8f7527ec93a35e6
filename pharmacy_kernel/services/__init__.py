"""Services for the pharmacy kernel (write side)."""

from pharmacy_kernel.services.drug_catalog import SqlDrugCatalog
from pharmacy_kernel.services.min_stock_adjustor import MinimumStockAdjustor
from pharmacy_kernel.services.reconciliation_service import StockReconciliationService
from pharmacy_kernel.services.requisition_number_service import RequisitionNumberService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.services.stock_provisioning import (
    DEFAULT_MINIMUM_STOCK,
    StockProvisioningService,
)
from pharmacy_kernel.services.stock_update import StockUpdateService, generate_adjustment_reason
from pharmacy_kernel.services.transfer_workflow import TransferWorkflow

__all__ = [
    "DEFAULT_MINIMUM_STOCK",
    "MinimumStockAdjustor",
    "RequisitionNumberService",
    "SqlDrugCatalog",
    "StockLedger",
    "StockProvisioningService",
    "StockReconciliationService",
    "StockUpdateService",
    "TransferWorkflow",
    "generate_adjustment_reason",
]
