"""
TransferWorkflow -- the inter-department transfer state machine.

Responsibility:
    Drives a transfer from request to delivery or cancellation::

        create  -> PENDING
        approve    PENDING  -> APPROVED
        prepare    APPROVED -> PREPARED
        deliver    PREPARED -> DELIVERED   (two ledger entries per moved line)
        cancel     any non-terminal -> CANCELLED

    Per-line quantities are validated by the ordered-stage records in
    ``domain.item_stages``; the status graph lives in ``domain.transfer``.

Architecture position:
    Kernel > Services.  Writes Transfer/TransferItem/TransferStageRecord
    and, on delivery only, calls StockLedger.

Invariants enforced:
    TRANSFER_STATE_GUARD -- every transition re-reads the transfer under
        SELECT ... FOR UPDATE, checks the status against
        TRANSFER_TRANSITIONS, and writes through the version column.
    ITEM_QUANTITY_CHAIN  -- every item's next stage is constructed (and
        validated) for ALL items before ANY item is written.
    ATOMIC_DELIVERY      -- both ledger entries of every moved line, the
        item receipts and the DELIVERED status are flushed in the caller's
        single transaction; stock rows are locked in sorted order.
    Idempotent replay    -- one TransferStageRecord per (transfer, stage);
        a repeat call with the same request_key is a no-op.

Failure modes:
    - TransferNotFoundError / TransferItemNotFoundError / DrugNotFoundError.
    - InvalidTransferTransitionError: wrong status (a ConflictError).
    - StaleTransferVersionError: caller's expected_version is out of date.
    - DuplicateRequisitionError: requisition number already used.
    - QuantityChainError / MissingBatchInfoError / InvalidQuantityError.
    - StockNotFoundError: source department never held the drug.
    - InsufficientStockError: source stock cannot cover a dispensed line.

Audit relevance:
    Each applied stage leaves a TransferStageRecord with actor, from/to
    status and time; delivery ledger entries carry the requisition number
    as reference and the transfer id.
"""

from collections.abc import Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.catalog import DrugCatalog
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import (
    DispenseLine,
    TransferLineRequest,
    TransferRecord,
)
from pharmacy_kernel.domain.item_stages import (
    BatchInfo,
    Dispensed,
    Requested,
    item_state_from_columns,
    line_value,
    transfer_value,
)
from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.domain.transfer import (
    STAGE_TARGET,
    TransferStage,
    TransferStatus,
    can_apply,
)
from pharmacy_kernel.exceptions import (
    DuplicateRequisitionError,
    DuplicateTransferLineError,
    EmptyTransferError,
    InsufficientStockError,
    InvalidTransferTransitionError,
    SameDepartmentTransferError,
    StaleTransferVersionError,
    StockNotFoundError,
    StockOnHoldError,
    TransferItemNotFoundError,
    TransferNotFoundError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.stock import Stock
from pharmacy_kernel.models.transfer import (
    Transfer,
    TransferItem,
    TransferStageRecord,
)
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.drug_catalog import SqlDrugCatalog
from pharmacy_kernel.services.requisition_number_service import RequisitionNumberService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.services.stock_provisioning import (
    DEFAULT_MINIMUM_STOCK,
    StockProvisioningService,
)

logger = get_logger("services.transfer_workflow")


class TransferWorkflow(BaseService[Transfer]):
    """
    Multi-stage transfer workflow.

    Contract:
        Each public method is one transition.  It flushes but never commits;
        a failed transition leaves no flushed changes behind because every
        check runs before the first write (delivery ledger writes are the
        exception and rely on the caller's rollback).

    Guarantees:
        - A transition from the wrong status raises, never silently no-ops.
        - A repeated call with the same ``request_key`` returns the current
          transfer without writing.

    Non-goals:
        - Does NOT authorise actors; actor ids are recorded as given.
        - Does NOT reserve stock at approval or preparation.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        catalog: DrugCatalog | None = None,
        ledger: StockLedger | None = None,
        provisioning: StockProvisioningService | None = None,
        numbers: RequisitionNumberService | None = None,
        default_minimum_stock: int = DEFAULT_MINIMUM_STOCK,
    ):
        super().__init__(session, clock)
        self._catalog = catalog or SqlDrugCatalog(session)
        self._ledger = ledger or StockLedger(session, self.clock)
        self._provisioning = provisioning or StockProvisioningService(
            session,
            self.clock,
            catalog=self._catalog,
            default_minimum_stock=default_minimum_stock,
        )
        self._numbers = numbers or RequisitionNumberService(session, self.clock)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        requester_id: UUID,
        from_dept: Department | str,
        to_dept: Department | str,
        items: Sequence[TransferLineRequest],
        *,
        purpose: str | None = None,
        request_note: str | None = None,
        requisition_number: str | None = None,
        request_key: str | None = None,
    ) -> TransferRecord:
        """
        Create a PENDING transfer.

        Unit prices are snapshotted from the catalog; ``total_value`` is the
        sum of requested_qty x unit_price.
        """
        if request_key is not None:
            replayed = self._find_created(request_key)
            if replayed is not None:
                logger.info(
                    "transfer_stage_replayed",
                    extra={"transfer_id": str(replayed.id), "stage": TransferStage.CREATE.value},
                )
                return TransferRecord.from_model(replayed)

        from_dept = Department(from_dept)
        to_dept = Department(to_dept)
        if from_dept is to_dept:
            raise SameDepartmentTransferError(from_dept.value)
        if not items:
            raise EmptyTransferError("at least one item is required")

        seen: set[UUID] = set()
        lines = []
        for line in items:
            if line.drug_id in seen:
                raise DuplicateTransferLineError(str(line.drug_id))
            seen.add(line.drug_id)
            state = Requested(line.requested_qty)
            drug = self._catalog.get(line.drug_id)
            lines.append((line, state, drug))

        if requisition_number is None:
            requisition_number = self._numbers.next_number()
        elif self._requisition_taken(requisition_number):
            raise DuplicateRequisitionError(requisition_number)

        now = self.clock.now()
        transfer = Transfer(
            requisition_number=requisition_number,
            from_dept=from_dept.value,
            to_dept=to_dept.value,
            status=TransferStatus.PENDING.value,
            requester_id=requester_id,
            purpose=purpose,
            request_note=request_note,
            total_items=len(lines),
            total_value=transfer_value(
                line_value(state, drug.unit_price) for _, state, drug in lines
            ),
            requested_at=now,
        )
        for line_no, (line, state, drug) in enumerate(lines, start=1):
            transfer.items.append(
                TransferItem(
                    line_no=line_no,
                    drug_id=line.drug_id,
                    requested_qty=state.requested_qty,
                    unit_price=drug.unit_price,
                    total_value=line_value(state, drug.unit_price),
                    item_note=line.item_note,
                )
            )
        transfer.stage_records.append(
            TransferStageRecord(
                stage=TransferStage.CREATE.value,
                request_key=request_key,
                actor_id=requester_id,
                from_status=None,
                to_status=TransferStatus.PENDING.value,
                note=request_note,
                occurred_at=now,
            )
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(transfer)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateRequisitionError(requisition_number) from None

        with LogContext.bind(transfer_id=transfer.id, actor_id=requester_id,
                             reference=requisition_number):
            logger.info(
                "transfer_created",
                extra={
                    "from_dept": from_dept.value,
                    "to_dept": to_dept.value,
                    "total_items": transfer.total_items,
                    "total_value": transfer.total_value,
                },
            )
        return TransferRecord.from_model(transfer)

    # ------------------------------------------------------------------
    # approve
    # ------------------------------------------------------------------

    def approve(
        self,
        transfer_id: UUID,
        approver_id: UUID,
        approvals: Mapping[UUID, int] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        """PENDING -> APPROVED.  Omitted items are approved in full."""
        transfer, replay = self._begin(
            transfer_id, TransferStage.APPROVE, request_key, expected_version
        )
        if replay:
            return TransferRecord.from_model(transfer)

        items = self._lock_items(transfer, approvals)
        approvals = approvals or {}
        states = {
            item.id: item_state_from_columns(item).approve(
                approvals.get(item.id, item.requested_qty)
            )
            for item in items
        }

        now = self.clock.now()
        for item in items:
            state = states[item.id]
            item.approved_qty = state.approved_qty
            item.total_value = line_value(state, item.unit_price)
        transfer.total_value = transfer_value(i.total_value for i in items)
        transfer.approver_id = approver_id
        transfer.approval_note = note
        transfer.approved_at = now
        self._finish(transfer, TransferStage.APPROVE, approver_id, request_key, note, now)

        self._log_transition(transfer, TransferStage.APPROVE, approver_id)
        return TransferRecord.from_model(transfer)

    # ------------------------------------------------------------------
    # prepare
    # ------------------------------------------------------------------

    def prepare(
        self,
        transfer_id: UUID,
        dispenser_id: UUID,
        lines: Mapping[UUID, DispenseLine] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        """APPROVED -> PREPARED.  Omitted items are dispensed as zero."""
        transfer, replay = self._begin(
            transfer_id, TransferStage.PREPARE, request_key, expected_version
        )
        if replay:
            return TransferRecord.from_model(transfer)

        items = self._lock_items(transfer, lines)
        lines = lines or {}
        states: dict[UUID, Dispensed] = {}
        for item in items:
            line = lines.get(item.id, DispenseLine(dispensed_qty=0))
            states[item.id] = item_state_from_columns(item).dispense(
                line.dispensed_qty,
                BatchInfo(line.lot_number, line.expiry_date, line.manufacturer),
            )

        now = self.clock.now()
        for item in items:
            state = states[item.id]
            item.dispensed_qty = state.dispensed_qty
            if state.batch.lot_number is not None:
                item.lot_number = state.batch.lot_number
            if state.batch.expiry_date is not None:
                item.expiry_date = state.batch.expiry_date
            if state.batch.manufacturer is not None:
                item.manufacturer = state.batch.manufacturer
            item.total_value = line_value(state, item.unit_price)
        transfer.total_value = transfer_value(i.total_value for i in items)
        transfer.dispenser_id = dispenser_id
        transfer.dispensed_at = now
        self._finish(transfer, TransferStage.PREPARE, dispenser_id, request_key, note, now)

        self._log_transition(transfer, TransferStage.PREPARE, dispenser_id)
        return TransferRecord.from_model(transfer)

    # ------------------------------------------------------------------
    # deliver
    # ------------------------------------------------------------------

    def deliver(
        self,
        transfer_id: UUID,
        receiver_id: UUID,
        receipts: Mapping[UUID, int] | None = None,
        note: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        """
        PREPARED -> DELIVERED.

        For every line with dispensed_qty > 0: TRANSFER_OUT of the dispensed
        quantity on the source stock and TRANSFER_IN on the destination
        stock (created on first use).  Omitted items are received in full.
        """
        transfer, replay = self._begin(
            transfer_id, TransferStage.DELIVER, request_key, expected_version
        )
        if replay:
            return TransferRecord.from_model(transfer)

        items = self._lock_items(transfer, receipts)
        receipts = receipts or {}
        states = {}
        for item in items:
            dispensed = item_state_from_columns(item)
            states[item.id] = dispensed.receive(
                receipts.get(item.id, dispensed.dispensed_qty)
            )

        moving = [item for item in items if item.dispensed_qty > 0]
        source_dept = Department(transfer.from_dept)
        dest_dept = Department(transfer.to_dept)
        sources, destinations = self._lock_stock_pairs(moving, source_dept, dest_dept)

        for item in moving:
            source = sources[item.drug_id]
            if source.integrity_hold:
                raise StockOnHoldError(str(source.id), source.hold_reason)
            if source.available_stock < item.dispensed_qty:
                raise InsufficientStockError(
                    str(source.id), item.dispensed_qty, source.available_stock
                )

        reference = transfer.requisition_number
        for item in moving:
            self._ledger.append(
                sources[item.drug_id],
                receiver_id,
                TransactionType.TRANSFER_OUT,
                -item.dispensed_qty,
                unit_cost=item.unit_price,
                reference=reference,
                transfer_id=transfer.id,
                note=f"Transfer to {dest_dept.value}: {reference}",
            )
            self._ledger.append(
                destinations[item.drug_id],
                receiver_id,
                TransactionType.TRANSFER_IN,
                item.dispensed_qty,
                unit_cost=item.unit_price,
                reference=reference,
                transfer_id=transfer.id,
                note=f"Transfer from {source_dept.value}: {reference}",
            )

        now = self.clock.now()
        for item in items:
            state = states[item.id]
            item.received_qty = state.received_qty
            item.total_value = line_value(state, item.unit_price)
            if state.shortfall:
                logger.warning(
                    "transfer_receipt_shortfall",
                    extra={
                        "transfer_id": str(transfer.id),
                        "item_id": str(item.id),
                        "dispensed_qty": item.dispensed_qty,
                        "received_qty": state.received_qty,
                    },
                )
        transfer.total_value = transfer_value(i.total_value for i in items)
        transfer.receiver_id = receiver_id
        transfer.received_at = now
        self._finish(transfer, TransferStage.DELIVER, receiver_id, request_key, note, now)

        self._log_transition(
            transfer, TransferStage.DELIVER, receiver_id, moved_lines=len(moving)
        )
        return TransferRecord.from_model(transfer)

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    def cancel(
        self,
        transfer_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        *,
        request_key: str | None = None,
        expected_version: int | None = None,
    ) -> TransferRecord:
        """Any non-terminal status -> CANCELLED.  No stock effect."""
        transfer, replay = self._begin(
            transfer_id, TransferStage.CANCEL, request_key, expected_version
        )
        if replay:
            return TransferRecord.from_model(transfer)

        now = self.clock.now()
        transfer.cancelled_by_id = actor_id
        transfer.cancel_reason = reason
        transfer.cancelled_at = now
        self._finish(transfer, TransferStage.CANCEL, actor_id, request_key, reason, now)

        self._log_transition(transfer, TransferStage.CANCEL, actor_id)
        return TransferRecord.from_model(transfer)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_transfer(self, transfer_id: UUID) -> Transfer:
        transfer = self.session.execute(
            select(Transfer)
            .where(Transfer.id == transfer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if transfer is None:
            raise TransferNotFoundError(str(transfer_id))
        return transfer

    def _lock_items(self, transfer: Transfer, requested: Mapping | None) -> list[TransferItem]:
        items = list(
            self.session.execute(
                select(TransferItem)
                .where(TransferItem.transfer_id == transfer.id)
                .order_by(TransferItem.line_no)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        known = {item.id for item in items}
        for item_id in requested or {}:
            if item_id not in known:
                raise TransferItemNotFoundError(str(transfer.id), str(item_id))
        return items

    def _stage_record(self, transfer_id: UUID, stage: TransferStage) -> TransferStageRecord | None:
        return self.session.execute(
            select(TransferStageRecord).where(
                TransferStageRecord.transfer_id == transfer_id,
                TransferStageRecord.stage == stage.value,
            )
        ).scalar_one_or_none()

    def _find_created(self, request_key: str) -> Transfer | None:
        return self.session.execute(
            select(Transfer)
            .join(TransferStageRecord, TransferStageRecord.transfer_id == Transfer.id)
            .where(
                TransferStageRecord.stage == TransferStage.CREATE.value,
                TransferStageRecord.request_key == request_key,
            )
        ).scalar_one_or_none()

    def _requisition_taken(self, requisition_number: str) -> bool:
        return self.session.execute(
            select(Transfer.id).where(Transfer.requisition_number == requisition_number)
        ).first() is not None

    def _begin(
        self,
        transfer_id: UUID,
        stage: TransferStage,
        request_key: str | None,
        expected_version: int | None,
    ) -> tuple[Transfer, bool]:
        """Lock the transfer and decide whether ``stage`` may run.

        Returns ``(transfer, replay)``; ``replay`` is True when the stage was
        already applied under the same request key.
        """
        transfer = self._lock_transfer(transfer_id)
        current = TransferStatus(transfer.status)

        existing = self._stage_record(transfer.id, stage)
        if existing is not None:
            if request_key is not None and existing.request_key == request_key:
                logger.info(
                    "transfer_stage_replayed",
                    extra={"transfer_id": str(transfer.id), "stage": stage.value},
                )
                return transfer, True
            raise InvalidTransferTransitionError(
                str(transfer.id), current.value, stage.value.lower()
            )

        if expected_version is not None and transfer.version != expected_version:
            raise StaleTransferVersionError(
                str(transfer.id), expected_version, transfer.version
            )

        if not can_apply(stage, current):
            logger.warning(
                "transfer_transition_rejected",
                extra={
                    "transfer_id": str(transfer.id),
                    "stage": stage.value,
                    "current_status": current.value,
                },
            )
            raise InvalidTransferTransitionError(
                str(transfer.id), current.value, stage.value.lower()
            )
        return transfer, False

    def _finish(
        self,
        transfer: Transfer,
        stage: TransferStage,
        actor_id: UUID,
        request_key: str | None,
        note: str | None,
        now,
    ) -> None:
        from_status = transfer.status
        transfer.status = STAGE_TARGET[stage].value
        self.session.add(
            TransferStageRecord(
                transfer_id=transfer.id,
                stage=stage.value,
                request_key=request_key,
                actor_id=actor_id,
                from_status=from_status,
                to_status=transfer.status,
                note=note,
                occurred_at=now,
            )
        )
        self.session.flush()

    def _lock_stock_pairs(
        self,
        items: list[TransferItem],
        source_dept: Department,
        dest_dept: Department,
    ) -> tuple[dict[UUID, Stock], dict[UUID, Stock]]:
        """Lock every source and destination row in one sorted order."""
        for item in items:
            self._provisioning.get_or_create(
                item.drug_id, dest_dept, unit_price=item.unit_price
            )

        keys = sorted(
            {(str(item.drug_id), dept.value) for item in items for dept in (source_dept, dest_dept)}
        )
        drug_ids = {str(item.drug_id): item.drug_id for item in items}
        sources: dict[UUID, Stock] = {}
        destinations: dict[UUID, Stock] = {}
        for drug_key, dept_value in keys:
            drug_id = drug_ids[drug_key]
            stock = self._ledger.lock_stock_for(drug_id, dept_value)
            if dept_value == source_dept.value:
                if stock is None:
                    raise StockNotFoundError(f"{drug_id}/{source_dept.value}")
                sources[drug_id] = stock
            else:
                destinations[drug_id] = stock
        return sources, destinations

    def _log_transition(self, transfer: Transfer, stage: TransferStage, actor_id: UUID, **extra):
        with LogContext.bind(transfer_id=transfer.id, actor_id=actor_id,
                             reference=transfer.requisition_number):
            logger.info(
                f"transfer_{STAGE_TARGET[stage].value.lower()}",
                extra={"status": transfer.status, "total_value": transfer.total_value, **extra},
            )
