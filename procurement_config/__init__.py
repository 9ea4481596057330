"""
procurement_config -- single public entrypoint for procurement configuration.

Responsibility:
    Provides ``get_active_config()``, the resolved and cached
    ``ProcurementConfig`` for the process.  The shipped ``defaults.yaml``
    is always the base; the file named by the ``PROCUREMENT_CONFIG``
    environment variable (or an explicit path) is overlaid on it.

Architecture position:
    Configuration -- sits above ``procurement_kernel`` and below
    ``procurement_services``.  The kernel and the engines MUST NEVER import
    from ``procurement_config``; services take resolved values as
    constructor arguments.

Invariants enforced:
    - Unknown sections or keys fail loudly with ``ValueError``.
    - Same YAML inputs always produce the same ``checksum``.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every resolution emits a ``PROCUREMENT_CONFIG_TRACE`` log entry with
    the source path and checksum, tying postings back to the exact
    tunables that governed them.
"""

from __future__ import annotations

import os
from pathlib import Path

from procurement_config.loader import compute_checksum, load_config
from procurement_config.schema import (
    CostingSettings,
    DatabaseSettings,
    LedgerAccountSettings,
    ProcurementConfig,
    ReceivingSettings,
    RecoverySettings,
    StockSettings,
)
from procurement_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "PROCUREMENT_CONFIG"

_active: ProcurementConfig | None = None


def get_active_config(path: Path | str | None = None) -> ProcurementConfig:
    """
    Return the process-wide configuration, resolving it on first use.

    An explicit ``path`` always re-resolves and replaces the cached value.
    Without one, ``$PROCUREMENT_CONFIG`` is honoured on first resolution.
    """
    global _active
    if _active is not None and path is None:
        return _active

    source = path if path is not None else os.environ.get(CONFIG_ENV_VAR) or None
    config = load_config(source)
    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "source": str(source) if source else "defaults",
            "checksum": config.checksum,
        },
    )
    _active = config
    return config


def reset_active_config() -> None:
    """Drop the cached configuration (tests)."""
    global _active
    _active = None


__all__ = [
    "CONFIG_ENV_VAR",
    "CostingSettings",
    "DatabaseSettings",
    "LedgerAccountSettings",
    "ProcurementConfig",
    "ReceivingSettings",
    "RecoverySettings",
    "StockSettings",
    "compute_checksum",
    "get_active_config",
    "load_config",
    "reset_active_config",
]
