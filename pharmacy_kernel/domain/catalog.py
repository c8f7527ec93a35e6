"""
Drug catalog collaborator contract.

The kernel reads drug code, name and unit price at write time and snapshots
the price into transfer items and ledger entries.  It never writes the
catalog.  ``SqlDrugCatalog`` in services/ is the table-backed implementation.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from pharmacy_kernel.domain.dtos import DrugSnapshot


@runtime_checkable
class DrugCatalog(Protocol):
    def get(self, drug_id: UUID) -> DrugSnapshot:
        """Return the drug or raise DrugNotFoundError (missing or inactive)."""
        ...
