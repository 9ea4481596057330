"""
Module: procurement_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    procurement_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel.domain (and sibling engine modules).
    MUST NOT import procurement_kernel.services or procurement_services.

Invariants enforced:
    - Purity: engines never read a clock.  Dates such as "today" arrive
      as explicit parameters (``ReceivingContext.as_of``).
    - Decimal-only arithmetic for quantities and money.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are traced via ``@traced_engine`` (see
    ``procurement_engines.tracer``), emitting PROCUREMENT_ENGINE_TRACE
    records with engine name, version, input fingerprint and duration.

Usage:
    from procurement_engines import StockGuard, OrderStateMachine
    from procurement_engines.costing import CostingEngine, CostingLine
    from procurement_engines.recovery import RECOVERY_STRATEGIES, retry_delay_ms
"""

from procurement_kernel.logging_config import get_logger

logger = get_logger("engines")

from procurement_engines.costing import CostingEngine, CostingLine
from procurement_engines.order_state_machine import OrderStateMachine, TransitionOutcome
from procurement_engines.receiving_validator import ReceivingValidator, cumulative_received
from procurement_engines.recovery import (
    RECOVERY_STRATEGIES,
    RejectedLine,
    available_actions,
    can_auto_recover,
    category_for,
    estimate_recovery_time,
    find_strategy,
    retry_ceiling,
    retry_delay_ms,
    rollback_steps,
    split_for_partial_recovery,
)
from procurement_engines.stock_guard import StockGuard, consolidate_requests
from procurement_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "CostingEngine",
    "CostingLine",
    "OrderStateMachine",
    "TransitionOutcome",
    "ReceivingValidator",
    "cumulative_received",
    "RECOVERY_STRATEGIES",
    "RejectedLine",
    "available_actions",
    "can_auto_recover",
    "category_for",
    "estimate_recovery_time",
    "find_strategy",
    "retry_ceiling",
    "retry_delay_ms",
    "rollback_steps",
    "split_for_partial_recovery",
    "StockGuard",
    "consolidate_requests",
    "compute_input_fingerprint",
    "traced_engine",
]
