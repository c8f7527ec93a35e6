"""
Pytest fixtures for the pharmacy kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path, or DATABASE_URL)
- Kernel services bound to one session and a deterministic clock
- Drug / stock builders
- Structured log capture

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  When set, every test runs
  against it (tables dropped and re-created per test).  When unset, each
  test gets its own SQLite file.
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from pharmacy_config import get_active_config
from pharmacy_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from pharmacy_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from pharmacy_kernel.domain.clock import DeterministicClock
from pharmacy_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pharmacy_kernel.models.drug import Drug
from pharmacy_kernel.services.min_stock_adjustor import MinimumStockAdjustor
from pharmacy_kernel.services.reconciliation_service import StockReconciliationService
from pharmacy_kernel.services.requisition_number_service import RequisitionNumberService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.services.stock_provisioning import StockProvisioningService
from pharmacy_kernel.services.stock_update import StockUpdateService
from pharmacy_kernel.services.transfer_workflow import TransferWorkflow

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

FIXED_NOW = datetime(2025, 6, 2, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pharmacy_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.record(...)
            assert any(r["message"] == "ledger_entry_recorded" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pharmacy_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL from the environment, else a SQLite file for this test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'pharmacy.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Engine with all tables and triggers, torn down after the test."""
    url = get_database_url(tmp_path)
    eng = init_engine_from_url(url, echo=False, pool_size=10, max_overflow=10, pool_timeout=10)
    if eng.dialect.name != "sqlite":
        drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    if eng.dialect.name != "sqlite":
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """One session per test; rolled back and closed at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def is_sqlite(db_engine) -> bool:
    return db_engine.dialect.name == "sqlite"


# =============================================================================
# Clock, actors, config
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def config():
    return get_active_config()


# =============================================================================
# Kernel services (one session)
# =============================================================================


@pytest.fixture
def ledger(session, clock) -> StockLedger:
    return StockLedger(session, clock)


@pytest.fixture
def provisioning(session, clock) -> StockProvisioningService:
    return StockProvisioningService(session, clock)


@pytest.fixture
def numbers(session, clock) -> RequisitionNumberService:
    return RequisitionNumberService(session, clock)


@pytest.fixture
def min_stock(session, clock, ledger) -> MinimumStockAdjustor:
    return MinimumStockAdjustor(session, clock, ledger=ledger)


@pytest.fixture
def stock_update(session, clock, ledger) -> StockUpdateService:
    return StockUpdateService(session, clock, ledger=ledger)


@pytest.fixture
def reconciliation(session, clock, ledger) -> StockReconciliationService:
    return StockReconciliationService(session, clock, ledger=ledger)


@pytest.fixture
def workflow(session, clock, ledger, provisioning, numbers) -> TransferWorkflow:
    return TransferWorkflow(
        session,
        clock,
        ledger=ledger,
        provisioning=provisioning,
        numbers=numbers,
    )


# =============================================================================
# Builders
# =============================================================================


def _new_drug(session: Session, code: str, name: str, unit_price: Decimal, is_active: bool) -> Drug:
    drug = Drug(
        code=code,
        name=name,
        dosage_form="tablet",
        unit_price=unit_price,
        is_active=is_active,
        created_at=FIXED_NOW,
    )
    session.add(drug)
    session.flush()
    return drug


@pytest.fixture
def make_drug(session):
    """Create a drug in the test session.

    Usage::

        drug = make_drug("AMOX250", unit_price=Decimal("1.20"))
    """
    counter = {"n": 0}

    def _make(
        code: str | None = None,
        name: str | None = None,
        unit_price: Decimal = Decimal("2.50"),
        is_active: bool = True,
    ) -> Drug:
        counter["n"] += 1
        code = code or f"DRUG{counter['n']:03d}"
        return _new_drug(session, code, name or f"Drug {code}", unit_price, is_active)

    return _make


@pytest.fixture
def make_stock(provisioning, make_drug):
    """Create a stock row (and its drug unless one is given)."""

    def _make(
        department: str = "PHARMACY",
        quantity: int = 0,
        minimum_stock: int = 10,
        drug: Drug | None = None,
    ):
        drug = drug or make_drug()
        stock, _ = provisioning.get_or_create(drug.id, department, quantity, minimum_stock)
        return stock

    return _make


@pytest.fixture
def paracetamol(make_drug) -> Drug:
    return make_drug("PARA500", "Paracetamol 500mg", Decimal("2.50"))


@pytest.fixture
def committed_drug(session_factory):
    """Create a drug in its own committed transaction (for facade tests)."""

    def _make(code: str = "PARA500", unit_price: Decimal = Decimal("2.50")) -> Drug:
        sess = session_factory()
        try:
            drug = _new_drug(sess, code, f"Drug {code}", unit_price, True)
            sess.commit()
            return drug
        finally:
            sess.close()

    return _make


@pytest.fixture
def inventory(session_factory, config, clock):
    from pharmacy_services.inventory import PharmacyInventory

    return PharmacyInventory(session_factory, config, clock)
