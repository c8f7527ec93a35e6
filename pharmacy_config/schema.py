"""
InventoryConfig schema.

Frozen dataclasses the YAML configuration is parsed into.  Values here are
plain data; the bridges module turns them into kernel constructor inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionNumbering:
    """``<prefix><YYYYMM><NNN>`` numbering."""

    prefix: str = "REQ"
    digits: int = 3


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry of transient, pre-commit failures."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class DatabaseSettings:
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600
    sqlite_busy_timeout: float = 30.0


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryConfig:
    """The validated runtime configuration."""

    config_id: str
    version: int
    departments: tuple[str, ...]
    default_minimum_stock: int = 10
    requisition: RequisitionNumbering = field(default_factory=RequisitionNumbering)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
