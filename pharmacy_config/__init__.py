"""
pharmacy_config -- single public entrypoint for inventory configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.  Returns a frozen ``InventoryConfig``.

Architecture position:
    Configuration.  Sits above ``pharmacy_kernel`` and below
    ``pharmacy_services``.  The kernel MUST NEVER import from
    ``pharmacy_config``; ``bridges`` translates the config into
    kernel-compatible constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the given path does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PHARMACY_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every write back to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pharmacy_config.loader import load_yaml_file, parse_config
from pharmacy_config.schema import (
    DatabaseSettings,
    InventoryConfig,
    RequisitionNumbering,
    RetryPolicy,
)

_logger = logging.getLogger("pharmacy_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> InventoryConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned config passed schema validation.
        - A ``PHARMACY_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Args:
        path: YAML file to load.  Defaults to the packaged defaults.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError / KeyError: If validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(config_path))

    _logger.info(
        "PHARMACY_CONFIG_TRACE",
        extra={
            "trace_type": "PHARMACY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "departments": list(config.departments),
            "source": str(config_path),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseSettings",
    "InventoryConfig",
    "RequisitionNumbering",
    "RetryPolicy",
    "get_active_config",
]
