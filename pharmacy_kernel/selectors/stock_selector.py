"""
Module: pharmacy_kernel.selectors.stock_selector
Responsibility: Read-only stock queries -- a single row, a department's
    stock list with low-stock rows first, the low-stock worklist and the
    per-department summary.
Architecture position: Kernel > Selectors.  May import from models/,
    domain DTOs and selectors/base.py.

Invariants enforced:
    is_low_stock is derived (available_stock <= minimum_stock) and never
    read from a stored column.

Failure modes:
    - get() raises StockNotFoundError; list queries return empty lists.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.orm import joinedload

from pharmacy_kernel.domain.dtos import StockRecord, StockSummary
from pharmacy_kernel.domain.ledger_effects import Department
from pharmacy_kernel.exceptions import StockNotFoundError
from pharmacy_kernel.models.drug import Drug
from pharmacy_kernel.models.stock import Stock
from pharmacy_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector[Stock]):
    """
    Selector for stock rows.

    Contract:
        Department lists are ordered low-stock first, then by drug name.
    """

    def get(self, stock_id: UUID) -> StockRecord:
        stock = self.session.execute(
            select(Stock).options(joinedload(Stock.drug)).where(Stock.id == stock_id)
        ).scalar_one_or_none()
        if stock is None:
            raise StockNotFoundError(str(stock_id))
        return StockRecord.from_model(stock)

    def find_for(self, drug_id: UUID, department: Department | str) -> StockRecord | None:
        stock = self.session.execute(
            select(Stock)
            .options(joinedload(Stock.drug))
            .where(
                Stock.drug_id == drug_id,
                Stock.department == Department(department).value,
            )
        ).scalar_one_or_none()
        return StockRecord.from_model(stock) if stock else None

    def list_department(self, department: Department | str) -> list[StockRecord]:
        low_first = case(
            (Stock.total_quantity - Stock.reserved_qty <= Stock.minimum_stock, 0),
            else_=1,
        )
        rows = self.session.execute(
            select(Stock)
            .join(Drug, Drug.id == Stock.drug_id)
            .options(joinedload(Stock.drug))
            .where(Stock.department == Department(department).value)
            .order_by(low_first, Drug.name, Drug.code)
        ).scalars()
        return [StockRecord.from_model(s) for s in rows]

    def low_stock(self, department: Department | str | None = None) -> list[StockRecord]:
        stmt = (
            select(Stock)
            .join(Drug, Drug.id == Stock.drug_id)
            .options(joinedload(Stock.drug))
            .where(Stock.total_quantity - Stock.reserved_qty <= Stock.minimum_stock)
            .order_by(Stock.department, Drug.name, Drug.code)
        )
        if department is not None:
            stmt = stmt.where(Stock.department == Department(department).value)
        return [StockRecord.from_model(s) for s in self.session.execute(stmt).scalars()]

    def on_hold(self) -> list[StockRecord]:
        rows = self.session.execute(
            select(Stock)
            .options(joinedload(Stock.drug))
            .where(Stock.integrity_hold.is_(True))
            .order_by(Stock.department)
        ).scalars()
        return [StockRecord.from_model(s) for s in rows]

    def summary(self, department: Department | str) -> StockSummary:
        department = Department(department)
        records = self.list_department(department)
        return StockSummary(
            department=department,
            total_stocks=len(records),
            low_stock_count=sum(1 for r in records if r.is_low_stock),
            out_of_stock_count=sum(1 for r in records if r.is_out_of_stock),
            total_value=sum((r.total_value for r in records), Decimal("0")),
        )
