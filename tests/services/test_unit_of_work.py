"""
Tests for TransactionRunner.

Covers:
- Classification of transient database failures
- Bounded retry with backoff, and the error raised when it is exhausted
- Commit-time failures are never retried
- Quarantine of a stock row after ledger divergence
"""

import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import event, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_config.schema import RetryPolicy
from pharmacy_kernel.db.engine import session_scope
from pharmacy_kernel.domain.ledger_effects import TransactionType
from pharmacy_kernel.exceptions import ConcurrencyConflictError, CorruptionError
from pharmacy_kernel.models.drug import Drug
from pharmacy_kernel.models.stock import Stock
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.services.stock_provisioning import StockProvisioningService
from pharmacy_services.unit_of_work import TransactionRunner, is_transient


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


class TestIsTransient:
    def test_stale_data(self):
        assert is_transient(StaleDataError("version mismatch"))

    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_postgres_codes(self, pgcode):
        assert is_transient(DBAPIError("UPDATE", {}, _PgError(pgcode)))

    def test_sqlite_locked(self):
        exc = OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))
        assert is_transient(exc)

    def test_not_transient(self):
        assert not is_transient(ValueError("nope"))
        assert not is_transient(
            IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
        )
        assert not is_transient(DBAPIError("UPDATE", {}, _PgError("23505")))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner(session_factory, clock, sleeps):
    return TransactionRunner(
        session_factory, RetryPolicy(max_attempts=3, backoff_seconds=0.1), clock, sleeps.append
    )


class TestRetry:
    def test_transient_failure_retried(self, runner, sleeps, captured_logs):
        calls = []

        def work(session):
            calls.append(session)
            if len(calls) < 3:
                raise StaleDataError("lost race")
            return "done"

        assert runner.run("op", work) == "done"
        assert len(calls) == 3
        assert len({id(s) for s in calls}) == 3
        assert sleeps == pytest.approx([0.1, 0.2])
        retries = [r for r in captured_logs() if r["message"] == "transient_failure_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]

    def test_exhausted(self, runner, sleeps):
        def work(session):
            raise StaleDataError("lost race")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            runner.run("approve_transfer", work)
        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "approve_transfer"
        assert len(sleeps) == 2

    def test_other_errors_propagate_once(self, runner, sleeps):
        calls = []

        def work(session):
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            runner.run("op", work)
        assert calls == [1]
        assert sleeps == []

    def test_commit_failure_not_retried(self, runner):
        calls = []

        def work(session):
            calls.append(1)

            @event.listens_for(session, "before_commit")
            def _fail(sess):
                raise OperationalError("COMMIT", {}, sqlite3.OperationalError("database is locked"))

        with pytest.raises(OperationalError):
            runner.run("op", work)
        assert calls == [1]


class TestTransactions:
    def _drug(self, code):
        return Drug(code=code, name=code, unit_price=Decimal("1.00"), is_active=True)

    def test_commits(self, runner, session_factory):
        runner.run("add", lambda s: s.add(self._drug("COMMIT1")))
        with session_scope(session_factory) as session:
            assert session.execute(select(Drug).where(Drug.code == "COMMIT1")).scalar_one()

    def test_rolls_back_on_error(self, runner, session_factory):
        def work(session):
            session.add(self._drug("ROLLBACK1"))
            session.flush()
            raise ValueError("abort")

        with pytest.raises(ValueError):
            runner.run("add", work)
        with session_scope(session_factory) as session:
            found = session.execute(select(Drug).where(Drug.code == "ROLLBACK1")).scalar_one_or_none()
            assert found is None

    def test_correlation_id_bound(self, runner, captured_logs, actor_id):
        def work(session):
            raise StaleDataError("lost race")

        with pytest.raises(ConcurrencyConflictError):
            runner.run("op", work, actor_id=actor_id)
        exhausted = [r for r in captured_logs() if r["message"] == "concurrency_retries_exhausted"]
        assert exhausted[0]["actor_id"] == str(actor_id)
        assert exhausted[0]["correlation_id"]


class TestQuarantine:
    def test_divergence_places_hold(self, runner, session_factory, committed_drug, clock, actor_id):
        drug = committed_drug("QUAR1")
        with session_scope(session_factory) as session:
            stock, _ = StockProvisioningService(session, clock).get_or_create(drug.id, "PHARMACY", 50)
            stock_id = stock.id
        with session_scope(session_factory) as session:
            session.execute(
                text("UPDATE stocks SET total_quantity = 70 WHERE id = :id"),
                {"id": str(stock_id)},
            )

        def work(session):
            return StockLedger(session, clock).record(
                stock_id, actor_id, TransactionType.DISPENSE_EXTERNAL, -1
            )

        with pytest.raises(CorruptionError):
            runner.run("record_transaction", work)

        with session_scope(session_factory) as session:
            stock = session.get(Stock, stock_id)
            assert stock.integrity_hold
            assert "total_quantity" in stock.hold_reason
            assert stock.total_quantity == 70
            assert stock.ledger_seq == 0
