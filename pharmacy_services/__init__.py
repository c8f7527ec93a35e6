"""
pharmacy_services -- Package init and public API.

Responsibility:
    Transaction boundaries, retry and quarantine policy, and the
    ``PharmacyInventory`` facade.  This is the only layer that commits.

Architecture position:
    Services.  Dependency direction (enforced by
    tests/architecture/test_kernel_boundary.py):
        pharmacy_services/ -> pharmacy_kernel/  (allowed)
        pharmacy_services/ -> pharmacy_config/  (allowed)
        pharmacy_kernel/   -> pharmacy_services/ (FORBIDDEN)
"""

from pharmacy_services.inventory import PharmacyInventory
from pharmacy_services.orchestrator import InventoryServices
from pharmacy_services.unit_of_work import TransactionRunner, is_transient

__all__ = [
    "InventoryServices",
    "PharmacyInventory",
    "TransactionRunner",
    "is_transient",
]
