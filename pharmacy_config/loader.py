"""
Configuration Loader (``pharmacy_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``pharmacy_config.schema`` dataclasses.  Callers use
``pharmacy_config.get_active_config()``; this module is its machinery.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form of the parsed document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError``.
* Out-of-range values or unknown departments  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from pharmacy_config.schema import (
    DatabaseSettings,
    InventoryConfig,
    RequisitionNumbering,
    RetryPolicy,
)
from pharmacy_kernel.domain.ledger_effects import Department


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _positive_int(section: str, name: str, value: Any, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{section}.{name} must be an integer >= {minimum}, got {value!r}")
    return value


def parse_departments(values: Any) -> tuple[str, ...]:
    if not isinstance(values, list) or not values:
        raise ValueError("departments must be a non-empty list")
    known = {d.value for d in Department}
    departments = []
    for value in values:
        name = str(value).upper()
        if name not in known:
            raise ValueError(f"Unknown department {value!r}; expected one of {sorted(known)}")
        if name in departments:
            raise ValueError(f"Department {name} listed twice")
        departments.append(name)
    return tuple(departments)


def parse_requisition(data: dict[str, Any]) -> RequisitionNumbering:
    prefix = data.get("prefix", RequisitionNumbering.prefix)
    if not isinstance(prefix, str) or not prefix.strip():
        raise ValueError("requisition.prefix must be a non-empty string")
    return RequisitionNumbering(
        prefix=prefix.strip(),
        digits=_positive_int("requisition", "digits", data.get("digits", 3)),
    )


def parse_retry(data: dict[str, Any]) -> RetryPolicy:
    backoff = data.get("backoff_seconds", RetryPolicy.backoff_seconds)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        raise ValueError(f"retry.backoff_seconds must be >= 0, got {backoff!r}")
    return RetryPolicy(
        max_attempts=_positive_int("retry", "max_attempts", data.get("max_attempts", 3)),
        backoff_seconds=float(backoff),
    )


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", defaults.pool_size)),
        max_overflow=_positive_int(
            "database", "max_overflow", data.get("max_overflow", defaults.max_overflow), minimum=0
        ),
        pool_timeout=_positive_int(
            "database", "pool_timeout", data.get("pool_timeout", defaults.pool_timeout)
        ),
        pool_recycle=_positive_int(
            "database", "pool_recycle", data.get("pool_recycle", defaults.pool_recycle)
        ),
        sqlite_busy_timeout=float(data.get("sqlite_busy_timeout", defaults.sqlite_busy_timeout)),
    )


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """
    Parse a configuration document.

    ``config_id``, ``version`` and ``departments`` are required; every
    other section falls back to the schema defaults.
    """
    stock = data.get("stock") or {}
    config = InventoryConfig(
        config_id=str(data["config_id"]),
        version=_positive_int("root", "version", data["version"]),
        departments=parse_departments(data["departments"]),
        default_minimum_stock=_positive_int(
            "stock", "default_minimum_stock", stock.get("default_minimum_stock", 10), minimum=0
        ),
        requisition=parse_requisition(data.get("requisition") or {}),
        retry=parse_retry(data.get("retry") or {}),
        database=parse_database(data.get("database") or {}),
    )
    return replace(config, checksum=compute_checksum(data))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialisation.  Deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
