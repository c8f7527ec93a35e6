"""
RequisitionNumberService -- requisition numbers from locked counter rows.

Responsibility:
    Allocates ``<prefix><YYYYMM><NNN>`` numbers (e.g. ``REQ202506001``),
    restarting the counter every month.

Architecture position:
    Kernel > Services.  Called by TransferWorkflow.create when the caller
    does not supply a requisition number.

Invariants enforced:
    Monotonic per (prefix, period) -- the locked counter row is the sole
    source of the next value; MAX(requisition_number) + 1 is never used.
    The increment is part of the caller's transaction, so a rolled-back
    create returns its number.

Failure modes:
    - IntegrityError on concurrent counter creation, absorbed by a
      savepoint and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.requisition import RequisitionCounter
from pharmacy_kernel.services.base import BaseService

logger = get_logger("services.requisition_number")


class RequisitionNumberService(BaseService[RequisitionCounter]):
    """
    Requisition number allocation.

    Non-goals:
        - Does NOT check the transfers table; TransferWorkflow rejects a
          number that is already taken.
    """

    DEFAULT_PREFIX = "REQ"
    DEFAULT_DIGITS = 3

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        prefix: str = DEFAULT_PREFIX,
        digits: int = DEFAULT_DIGITS,
    ):
        super().__init__(session, clock)
        self._prefix = prefix
        self._digits = digits

    def next_number(self) -> str:
        period = self.clock.now().strftime("%Y%m")
        value = self._next_value(period)
        number = f"{self._prefix}{period}{value:0{self._digits}d}"
        logger.debug(
            "requisition_number_allocated",
            extra={"requisition_number": number, "period": period, "value": value},
        )
        return number

    def _lock_counter(self, period: str) -> RequisitionCounter | None:
        return self.session.execute(
            select(RequisitionCounter)
            .where(
                RequisitionCounter.prefix == self._prefix,
                RequisitionCounter.period == period,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _next_value(self, period: str) -> int:
        counter = self._lock_counter(period)

        if counter is None:
            savepoint = self.session.begin_nested()
            try:
                counter = RequisitionCounter(
                    prefix=self._prefix, period=period, current_value=1
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "requisition_counter_race_retry",
                    extra={"prefix": self._prefix, "period": period},
                )
                savepoint.rollback()
                counter = self._lock_counter(period)

        counter.current_value += 1
        self.session.flush()
        return counter.current_value

    def current_value(self, period: str) -> int | None:
        counter = self.session.execute(
            select(RequisitionCounter).where(
                RequisitionCounter.prefix == self._prefix,
                RequisitionCounter.period == period,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else None
