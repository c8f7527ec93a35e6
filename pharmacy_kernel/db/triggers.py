"""
Module: pharmacy_kernel.db.triggers
Responsibility: Installing, removing and listing the database-level
    append-only triggers (Layer 2 of 2).  This is the database-level
    complement to the ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    LEDGER_APPEND_ONLY -- stock_transactions: no UPDATE, no DELETE.
    LEDGER_APPEND_ONLY -- transfer_stage_records: no UPDATE, no DELETE.
    Stock rows, transfers and transfer items are never deleted.

Both PostgreSQL (plpgsql function + row triggers) and SQLite
(RAISE(ABORT) triggers) are supported.  Statements are kept inline because
each trigger body is a single line.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on violation, surfaced
      by SQLAlchemy as IntegrityError or OperationalError.
    - OperationalError on deadlock during installation (caller retries).

Audit relevance:
    Even if the ORM layer is bypassed (raw SQL, bulk statements, a console
    session) these triggers keep the ledger append-only.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

# (table, guarded operations)
_PROTECTED: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("stock_transactions", ("UPDATE", "DELETE")),
    ("transfer_stage_records", ("UPDATE", "DELETE")),
    ("stocks", ("DELETE",)),
    ("transfers", ("DELETE",)),
    ("transfer_items", ("DELETE",)),
)

_PG_FUNCTION = "pharmacy_reject_mutation"


def _trigger_name(table: str, op: str) -> str:
    return f"trg_{table}_{op.lower()}_guard"


ALL_TRIGGER_NAMES: list[str] = [
    _trigger_name(table, op) for table, ops in _PROTECTED for op in ops
]


def _sqlite_statements() -> list[str]:
    statements = []
    for table, ops in _PROTECTED:
        for op in ops:
            statements.append(
                f"CREATE TRIGGER IF NOT EXISTS {_trigger_name(table, op)} "
                f"BEFORE {op} ON {table} "
                f"BEGIN SELECT RAISE(ABORT, 'IMMUTABILITY_VIOLATION: "
                f"{op} on {table} is not allowed'); END"
            )
    return statements


def _postgres_statements() -> list[str]:
    statements = [
        f"""
        CREATE OR REPLACE FUNCTION {_PG_FUNCTION}() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: % on % is not allowed',
                TG_OP, TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql
        """
    ]
    for table, ops in _PROTECTED:
        for op in ops:
            name = _trigger_name(table, op)
            statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
            statements.append(
                f"CREATE TRIGGER {name} BEFORE {op} ON {table} "
                f"FOR EACH ROW EXECUTE FUNCTION {_PG_FUNCTION}()"
            )
    return statements


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level append-only triggers for the engine's dialect.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: Every trigger in ALL_TRIGGER_NAMES is installed.
        Idempotent on both dialects.
    """
    if engine.dialect.name == "sqlite":
        statements = _sqlite_statements()
    else:
        statements = _postgres_statements()

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level append-only triggers.

    WARNING: Only use this for tests and for migrations that must rewrite
    history.  Re-install the triggers immediately afterwards.
    """
    with engine.begin() as conn:
        for table, ops in _PROTECTED:
            for op in ops:
                name = _trigger_name(table, op)
                if engine.dialect.name == "sqlite":
                    conn.execute(text(f"DROP TRIGGER IF EXISTS {name}"))
                else:
                    conn.execute(text(f"DROP TRIGGER IF EXISTS {name} ON {table}"))
        if engine.dialect.name != "sqlite":
            conn.execute(text(f"DROP FUNCTION IF EXISTS {_PG_FUNCTION}()"))


def triggers_installed(engine: Engine) -> bool:
    """Return True when every trigger in ALL_TRIGGER_NAMES exists."""
    if engine.dialect.name == "sqlite":
        query = "SELECT name FROM sqlite_master WHERE type = 'trigger'"
    else:
        query = "SELECT tgname FROM pg_trigger WHERE NOT tgisinternal"
    with engine.connect() as conn:
        names = {row[0] for row in conn.execute(text(query))}
    return set(ALL_TRIGGER_NAMES) <= names
