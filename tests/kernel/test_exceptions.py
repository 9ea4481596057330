"""
Tests for the kernel exception hierarchy.

Every exception carries a stable machine-readable ``code`` that the
recovery strategy table dispatches on.
"""

from decimal import Decimal

import pytest

from procurement_engines.recovery import find_strategy
from procurement_kernel.exceptions import (
    AccountMappingNotFoundError,
    AuthenticationRequiredError,
    ConcurrentModificationError,
    ConnectionTimeoutError,
    DatabaseError,
    DeadlockDetectedError,
    InfrastructureError,
    ProcurementKernelError,
    RollbackFailedError,
    SchedulerUnavailableError,
    StockNotFoundError,
    UnbalancedEntryError,
)


class TestExceptionCodes:

    @pytest.mark.parametrize(
        "exc, code",
        [
            (UnbalancedEntryError(Decimal("1"), Decimal("2")), "UNBALANCED_ENTRY"),
            (DatabaseError("insert"), "DATABASE_ERROR"),
            (ConnectionTimeoutError("insert", 5), "CONNECTION_TIMEOUT"),
            (DeadlockDetectedError("update"), "DEADLOCK_DETECTED"),
            (SchedulerUnavailableError("receiving"), "SCHEDULER_UNAVAILABLE"),
            (ConcurrentModificationError("stock_level", "P1", 1, 2), "CONCURRENT_MODIFICATION"),
            (RollbackFailedError("receiving", "po-1", "boom"), "ROLLBACK_FAILED"),
            (AuthenticationRequiredError("receiving"), "AUTHENTICATION_REQUIRED"),
        ],
    )
    def test_code_maps_to_a_recovery_strategy(self, exc, code):
        assert isinstance(exc, ProcurementKernelError)
        assert exc.code == code
        assert find_strategy(code) is not None

    def test_infrastructure_family(self):
        for exc in (
            DatabaseError("x"),
            ConnectionTimeoutError("x"),
            DeadlockDetectedError("x"),
            SchedulerUnavailableError("x"),
        ):
            assert isinstance(exc, InfrastructureError)


class TestExceptionMessages:

    def test_unbalanced_entry_message(self):
        exc = UnbalancedEntryError(Decimal("100.00"), Decimal("99.00"), "e-1")
        assert str(exc) == "Entry unbalanced: debits=100.00, credits=99.00 (entry e-1)"

    def test_concurrent_modification_keeps_versions(self):
        exc = ConcurrentModificationError("stock_level", "P1", 3, 4)
        assert exc.expected == 3
        assert exc.actual == 4
        assert "stock_level P1" in str(exc)

    def test_timeout_message_includes_seconds(self):
        assert str(ConnectionTimeoutError("flush", 30)) == "Connection timed out during flush after 30s"

    def test_unmapped_codes(self):
        assert StockNotFoundError("P1").code == "PRODUCT_NOT_FOUND"
        assert AccountMappingNotFoundError("x", "y").code == "ACCOUNT_MAPPING_NOT_FOUND"
