"""
procurement_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines in
    procurement_engines/ with the stock, receipt, journal, audit and
    scheduler collaborators.  This is the only layer that reads the clock
    or touches a database session.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        procurement_services/ -> procurement_engines/  (allowed)
        procurement_services/ -> procurement_kernel/   (allowed)
        procurement_services/ -> procurement_config/   (allowed)
        procurement_engines/  -> procurement_services/ (FORBIDDEN)
        procurement_kernel/   -> procurement_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush and never commit; the caller owns the transaction.
"""

from procurement_kernel.logging_config import get_logger

logger = get_logger("services")

from procurement_services.ledger_poster import (  # noqa: E402
    LedgerPoster,
    build_journal_lines,
    is_balanced,
    summarize_posting,
)
from procurement_services.receiving_pipeline import (  # noqa: E402
    ReceivingOutcome,
    ReceivingPipeline,
    build_receiving_pipeline,
)
from procurement_services.recovery_orchestrator import (  # noqa: E402
    RecoveryOrchestrator,
    classify_failure,
)

__all__ = [
    "LedgerPoster",
    "ReceivingOutcome",
    "ReceivingPipeline",
    "RecoveryOrchestrator",
    "build_journal_lines",
    "build_receiving_pipeline",
    "classify_failure",
    "is_balanced",
    "summarize_posting",
]
