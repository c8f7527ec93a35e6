"""
Module: pharmacy_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- the entries of one stock row in
    sequence order, a department's movement history and every entry that
    shares a reference (e.g. both sides of a delivered transfer).
Architecture position: Kernel > Selectors.

Audit relevance:
    The ledger is the authoritative history; these queries are the only read
    path onto it and never touch the stocks cache except to filter by
    department.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from pharmacy_kernel.domain.dtos import StockTransactionRecord
from pharmacy_kernel.domain.ledger_effects import Department, TransactionType
from pharmacy_kernel.models.stock import Stock, StockTransaction
from pharmacy_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector[StockTransaction]):
    def for_stock(
        self,
        stock_id: UUID,
        transaction_type: TransactionType | str | None = None,
    ) -> list[StockTransactionRecord]:
        """Entries of one stock row, oldest first (seq ASC)."""
        stmt = (
            select(StockTransaction)
            .where(StockTransaction.stock_id == stock_id)
            .order_by(StockTransaction.seq)
        )
        if transaction_type is not None:
            stmt = stmt.where(
                StockTransaction.type == TransactionType(transaction_type).value
            )
        return [StockTransactionRecord.from_model(e) for e in self.session.execute(stmt).scalars()]

    def for_department(
        self,
        department: Department | str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[StockTransactionRecord]:
        """Newest first."""
        stmt = (
            select(StockTransaction)
            .join(Stock, Stock.id == StockTransaction.stock_id)
            .where(Stock.department == Department(department).value)
            .order_by(StockTransaction.created_at.desc(), StockTransaction.seq.desc())
        )
        if since is not None:
            stmt = stmt.where(StockTransaction.created_at >= since)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [StockTransactionRecord.from_model(e) for e in self.session.execute(stmt).scalars()]

    def for_reference(self, reference: str) -> list[StockTransactionRecord]:
        rows = self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.reference == reference)
            .order_by(StockTransaction.created_at, StockTransaction.stock_id, StockTransaction.seq)
        ).scalars()
        return [StockTransactionRecord.from_model(e) for e in rows]

    def for_transfer(self, transfer_id: UUID) -> list[StockTransactionRecord]:
        rows = self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.transfer_id == transfer_id)
            .order_by(StockTransaction.created_at, StockTransaction.stock_id, StockTransaction.seq)
        ).scalars()
        return [StockTransactionRecord.from_model(e) for e in rows]

    def count_for_stock(self, stock_id: UUID) -> int:
        return len(
            self.session.execute(
                select(StockTransaction.id).where(StockTransaction.stock_id == stock_id)
            ).all()
        )
