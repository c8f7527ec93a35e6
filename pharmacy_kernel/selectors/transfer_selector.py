"""
Module: pharmacy_kernel.selectors.transfer_selector
Responsibility: Read-only transfer queries by id, requisition number,
    department (either side) and status.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from pharmacy_kernel.domain.dtos import TransferRecord
from pharmacy_kernel.domain.ledger_effects import Department
from pharmacy_kernel.domain.transfer import TransferStatus
from pharmacy_kernel.exceptions import TransferNotFoundError
from pharmacy_kernel.models.transfer import Transfer, TransferStageRecord
from pharmacy_kernel.selectors.base import BaseSelector


class TransferSelector(BaseSelector[Transfer]):
    """
    Selector for transfers.

    Contract:
        Lists are newest first (requested_at DESC).  Items are loaded
        eagerly and returned ordered by line number.
    """

    def _base(self):
        return select(Transfer).options(selectinload(Transfer.items))

    def get(self, transfer_id: UUID) -> TransferRecord:
        transfer = self.session.execute(
            self._base().where(Transfer.id == transfer_id)
        ).scalar_one_or_none()
        if transfer is None:
            raise TransferNotFoundError(str(transfer_id))
        return TransferRecord.from_model(transfer)

    def get_by_requisition(self, requisition_number: str) -> TransferRecord:
        transfer = self.session.execute(
            self._base().where(Transfer.requisition_number == requisition_number)
        ).scalar_one_or_none()
        if transfer is None:
            raise TransferNotFoundError(requisition_number)
        return TransferRecord.from_model(transfer)

    def list_for_department(
        self,
        department: Department | str,
        status: TransferStatus | str | None = None,
    ) -> list[TransferRecord]:
        """Transfers where the department is the source or the destination."""
        dept = Department(department).value
        stmt = (
            self._base()
            .where(or_(Transfer.from_dept == dept, Transfer.to_dept == dept))
            .order_by(Transfer.requested_at.desc(), Transfer.requisition_number.desc())
        )
        if status is not None:
            stmt = stmt.where(Transfer.status == TransferStatus(status).value)
        return [TransferRecord.from_model(t) for t in self.session.execute(stmt).scalars()]

    def list_by_status(self, status: TransferStatus | str) -> list[TransferRecord]:
        rows = self.session.execute(
            self._base()
            .where(Transfer.status == TransferStatus(status).value)
            .order_by(Transfer.requested_at.desc(), Transfer.requisition_number.desc())
        ).scalars()
        return [TransferRecord.from_model(t) for t in rows]

    def stage_history(self, transfer_id: UUID) -> list[tuple[str, str | None, str]]:
        """``(stage, from_status, to_status)`` in the order applied."""
        rows = self.session.execute(
            select(TransferStageRecord)
            .where(TransferStageRecord.transfer_id == transfer_id)
            .order_by(TransferStageRecord.occurred_at, TransferStageRecord.id)
        ).scalars()
        return [(r.stage, r.from_status, r.to_status) for r in rows]
