"""
Numeric value helpers (``procurement_kernel.domain.values``).

Responsibility
--------------
Single place for Decimal coercion, boundary rounding, quantity formatting
and JSON-safe conversion of domain objects.

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.

Invariants enforced
-------------------
* Money and quantities are ``Decimal``; ``float`` inputs are converted via
  ``str`` so ``0.1`` becomes ``Decimal("0.1")`` and not its binary expansion.
* Rounding happens only through ``round_money`` / ``round_percent`` at
  result boundaries, ROUND_HALF_UP to 2 places.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONEY_QUANTUM = Decimal("0.01")

# Debit/credit and order-total comparisons tolerate one cent.
BALANCE_EPSILON = Decimal("0.01")


def as_decimal(value: Any, name: str = "value") -> Decimal:
    """Coerce int/str/float/Decimal to Decimal.

    Raises:
        ValueError: If ``value`` is None, a bool, or not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be numeric, got {value!r}") from None


def round_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


round_percent = round_money


def format_quantity(value: Decimal) -> str:
    """Render a quantity without trailing zeros ("10", "2.5")."""
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def format_percent(value: Decimal) -> str:
    """Render a percentage with one decimal place ("12.5")."""
    return str(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def to_jsonable(value: Any) -> Any:
    """Convert domain objects into JSON-serializable structures.

    Dataclasses become dicts, Decimals become strings, dates become ISO
    strings and Enums become their values.  Used for audit snapshots and
    deferred-operation payloads.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
