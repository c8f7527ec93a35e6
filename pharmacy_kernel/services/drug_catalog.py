"""
SqlDrugCatalog -- table-backed drug catalog collaborator.

Reads the ``drugs`` table and returns DrugSnapshot values.  The kernel never
writes the catalog; prices are snapshotted into transfer items and ledger
entries at write time.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.dtos import DrugSnapshot
from pharmacy_kernel.exceptions import DrugNotFoundError
from pharmacy_kernel.models.drug import Drug


class SqlDrugCatalog:
    """DrugCatalog implementation over the drugs table."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, drug_id: UUID, include_inactive: bool = False) -> DrugSnapshot:
        drug = self._session.execute(
            select(Drug).where(Drug.id == drug_id)
        ).scalar_one_or_none()
        if drug is None or (not drug.is_active and not include_inactive):
            raise DrugNotFoundError(str(drug_id))
        return DrugSnapshot.from_model(drug)

    def get_by_code(self, code: str) -> DrugSnapshot:
        drug = self._session.execute(
            select(Drug).where(Drug.code == code)
        ).scalar_one_or_none()
        if drug is None or not drug.is_active:
            raise DrugNotFoundError(code)
        return DrugSnapshot.from_model(drug)
