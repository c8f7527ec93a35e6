"""
pharmacy_services.unit_of_work -- one transaction per public operation.

Responsibility:
    Runs a unit of work inside ``session_scope`` and owns the two
    cross-transaction policies the kernel cannot own itself:

    * bounded retry of transient failures raised before commit
      (stale version, lock timeout, deadlock, serialization failure);
    * quarantine of a stock row after a CorruptionError.  The failed
      transaction is rolled back, so the hold is written in a fresh one.

Architecture position:
    Services.  Imports the kernel; the kernel never imports this module.

Invariants enforced:
    - Commit-time failures are never retried: the outcome is ambiguous.
    - Each retry uses a new session, so every check re-reads state.  A
      transfer that moved on while we waited raises its ConflictError
      instead of being retried.

Failure modes:
    - ConcurrencyConflictError once ``max_attempts`` transient failures
      have been seen.
    - Every other exception propagates unchanged after rollback.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_config.schema import RetryPolicy
from pharmacy_kernel.db.engine import session_scope
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.exceptions import (
    ConcurrencyConflictError,
    CorruptionError,
    StockOnHoldError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.services.reconciliation_service import StockReconciliationService

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected,
# lock_not_available.
_TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})
_TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "deadlock")


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying with a fresh transaction."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _TRANSIENT_PGCODES:
            return True
        message = str(exc.orig).lower()
        return any(fragment in message for fragment in _TRANSIENT_MESSAGES)
    return False


class _CommitFailed(Exception):
    def __init__(self, original: BaseException):
        self.original = original


class TransactionRunner:
    """
    Executes units of work with retry and quarantine.

    Contract:
        ``run(operation, work)`` calls ``work(session)`` and commits.  The
        return value of ``work`` must not hold ORM objects (return DTOs);
        the session is closed when ``run`` returns.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._factory = session_factory
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._sleep = sleep

    def run(
        self,
        operation: str,
        work: Callable[[Session], T],
        *,
        actor_id: UUID | None = None,
    ) -> T:
        attempts = self._retry.max_attempts
        with LogContext.bind(correlation_id=uuid4(), actor_id=actor_id):
            for attempt in range(1, attempts + 1):
                try:
                    return self._attempt(work)
                except _CommitFailed as failed:
                    logger.error(
                        "transaction_commit_failed",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    raise failed.original
                except StockOnHoldError:
                    raise
                except CorruptionError as exc:
                    self._quarantine(exc)
                    raise
                except Exception as exc:
                    if not is_transient(exc):
                        raise
                    logger.warning(
                        "transient_failure_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "error_type": type(exc).__name__,
                        },
                    )
                    if attempt < attempts:
                        self._sleep(self._retry.backoff_seconds * attempt)

            logger.error(
                "concurrency_retries_exhausted",
                extra={"operation": operation, "attempts": attempts},
            )
            raise ConcurrencyConflictError(operation, attempts)

    def _attempt(self, work: Callable[[Session], T]) -> T:
        session = self._factory()
        try:
            result = work(session)
            session.flush()
        except BaseException:
            session.rollback()
            session.close()
            raise
        try:
            session.commit()
        except Exception as exc:
            session.rollback()
            raise _CommitFailed(exc) from exc
        finally:
            session.close()
        return result

    def _quarantine(self, exc: CorruptionError) -> None:
        reason = (
            f"ledger divergence on {exc.field}: ledger={exc.ledger_value} "
            f"cached={exc.cached_value}"
        )
        try:
            with session_scope(self._factory) as session:
                StockReconciliationService(session, self._clock).place_hold(
                    UUID(str(exc.stock_id)), reason
                )
        except Exception:
            logger.exception(
                "stock_quarantine_failed",
                extra={"stock_id": str(exc.stock_id)},
            )
            raise
