"""
Config -> Kernel Bridges.

Functions that turn an ``InventoryConfig`` into kernel constructor
arguments.  They live here (the producer) because the kernel must NEVER
import pharmacy_config.

Usage:
    config = get_active_config()
    init_engine_from_url(url, **engine_options(config))
    numbers = RequisitionNumberService(session, clock, **numbering_options(config))
"""

from __future__ import annotations

from typing import Any

from pharmacy_config.schema import InventoryConfig


def engine_options(config: InventoryConfig) -> dict[str, Any]:
    db = config.database
    return {
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "sqlite_busy_timeout": db.sqlite_busy_timeout,
    }


def numbering_options(config: InventoryConfig) -> dict[str, Any]:
    return {"prefix": config.requisition.prefix, "digits": config.requisition.digits}


def provisioning_options(config: InventoryConfig) -> dict[str, Any]:
    return {"default_minimum_stock": config.default_minimum_stock}
