"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads the shipped ``defaults.yaml``, overlays an optional user YAML file
section by section, and parses the result into the typed dataclasses of
``procurement_config.schema``.

Architecture position
---------------------
**Config layer**.  Depends on the kernel domain only for the types the
settings convert into (StockPolicy, AccountMap).  Engines never import
this package; services receive resolved values through their
constructors.

Invariants enforced
-------------------
* Unknown sections and unknown keys raise ``ValueError``; a typo never
  silently falls back to a default.
* Decimal settings are parsed from their string form, never via float.
* ``compute_checksum`` is a deterministic SHA-256 over the resolved
  values.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or negative tunable  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    CostingSettings,
    DatabaseSettings,
    LedgerAccountSettings,
    ProcurementConfig,
    ReceivingSettings,
    RecoverySettings,
    StockSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = (
    "stock",
    "receiving",
    "costing",
    "ledger_accounts",
    "recovery",
    "database",
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_overlay(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay ``overlay`` onto ``base`` one section deep."""
    merged: dict[str, Any] = {name: dict(values or {}) for name, values in base.items()}
    for name, values in overlay.items():
        if name not in _SECTIONS:
            raise ValueError(f"Unknown configuration section: {name!r}")
        if values is None:
            continue
        if not isinstance(values, Mapping):
            raise ValueError(f"Section {name!r} must be a mapping")
        merged.setdefault(name, {}).update(values)
    return merged


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------


def _check_keys(section: str, data: Mapping[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown key(s) in {section!r}: {', '.join(unknown)}")


def _decimal(section: str, key: str, value: Any, *, optional: bool = False) -> Decimal | None:
    if value is None and optional:
        return None
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{section}.{key} must be numeric, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{section}.{key} must be numeric, got {value!r}") from None
    if result < 0:
        raise ValueError(f"{section}.{key} must be >= 0, got {value!r}")
    return result


def _int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{section}.{key} must be >= 0, got {value!r}")
    return value


def _bool(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _str(section: str, key: str, value: Any) -> str:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be a string, got {value!r}")
    return str(value)


# ---------------------------------------------------------------------------
# Section parsing
# ---------------------------------------------------------------------------


def parse_stock(data: Mapping[str, Any]) -> StockSettings:
    _check_keys("stock", data, ("prevent_negative", "min_stock_threshold"))
    return StockSettings(
        prevent_negative=_bool("stock", "prevent_negative", data.get("prevent_negative", False)),
        min_stock_threshold=_decimal(
            "stock", "min_stock_threshold", data.get("min_stock_threshold"), optional=True,
        ),
    )


def parse_receiving(data: Mapping[str, Any]) -> ReceivingSettings:
    _check_keys("receiving", data, ("default_tolerance_percentage", "near_expiry_days"))
    return ReceivingSettings(
        default_tolerance_percentage=_decimal(
            "receiving", "default_tolerance_percentage",
            data.get("default_tolerance_percentage", "0"),
        ),
        near_expiry_days=_int("receiving", "near_expiry_days", data.get("near_expiry_days", 30)),
    )


def parse_costing(data: Mapping[str, Any]) -> CostingSettings:
    keys = ("significant_variance_percentage", "price_variance_percentage")
    _check_keys("costing", data, keys)
    return CostingSettings(
        significant_variance_percentage=_decimal(
            "costing", keys[0], data.get(keys[0], "10"),
        ),
        price_variance_percentage=_decimal("costing", keys[1], data.get(keys[1], "5")),
    )


def parse_ledger_accounts(data: Mapping[str, Any]) -> LedgerAccountSettings:
    defaults = LedgerAccountSettings()
    keys = (
        "inventory_asset",
        "accounts_payable",
        "cost_of_goods_sold",
        "purchase_price_variance",
        "inventory_adjustment",
    )
    _check_keys("ledger_accounts", data, keys)
    return LedgerAccountSettings(**{
        key: _str("ledger_accounts", key, data.get(key, getattr(defaults, key)))
        for key in keys
    })


def parse_recovery(data: Mapping[str, Any]) -> RecoverySettings:
    _check_keys(
        "recovery", data,
        ("backoff_base_ms", "backoff_cap_ms", "queue_delay_seconds", "partial_recovery_ratio"),
    )
    settings = RecoverySettings(
        backoff_base_ms=_int("recovery", "backoff_base_ms", data.get("backoff_base_ms", 1000)),
        backoff_cap_ms=_int("recovery", "backoff_cap_ms", data.get("backoff_cap_ms", 10000)),
        queue_delay_seconds=_int(
            "recovery", "queue_delay_seconds", data.get("queue_delay_seconds", 3600),
        ),
        partial_recovery_ratio=_decimal(
            "recovery", "partial_recovery_ratio", data.get("partial_recovery_ratio", "1.5"),
        ),
    )
    if settings.backoff_cap_ms < settings.backoff_base_ms:
        raise ValueError("recovery.backoff_cap_ms must be >= recovery.backoff_base_ms")
    return settings


def parse_database(data: Mapping[str, Any]) -> DatabaseSettings:
    _check_keys("database", data, ("url", "echo", "pool_size", "max_overflow"))
    return DatabaseSettings(
        url=_str("database", "url", data.get("url", "sqlite://")),
        echo=_bool("database", "echo", data.get("echo", False)),
        pool_size=_int("database", "pool_size", data.get("pool_size", 10)),
        max_overflow=_int("database", "max_overflow", data.get("max_overflow", 10)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: Mapping[str, Any]) -> ProcurementConfig:
    """Parse a fully merged mapping into a ProcurementConfig."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")
    sections = {name: data.get(name) or {} for name in _SECTIONS}
    config = ProcurementConfig(
        stock=parse_stock(sections["stock"]),
        receiving=parse_receiving(sections["receiving"]),
        costing=parse_costing(sections["costing"]),
        ledger_accounts=parse_ledger_accounts(sections["ledger_accounts"]),
        recovery=parse_recovery(sections["recovery"]),
        database=parse_database(sections["database"]),
    )
    resolved = {name: asdict(getattr(config, name)) for name in _SECTIONS}
    return replace(config, checksum=compute_checksum(resolved))


def load_config(path: Path | str | None = None) -> ProcurementConfig:
    """
    Load the shipped defaults, overlaid with ``path`` when given.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_overlay(data, load_yaml_file(Path(path)))
    return parse_config(data)
