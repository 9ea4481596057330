"""
Validation value objects (``procurement_kernel.domain.validation``).

Responsibility
--------------
The error/warning shape every checking component returns, plus the
rendering helpers callers use to surface them.  StockGuard,
OrderStateMachine and ReceivingValidator never raise for bad input; they
return a ``ValidationResult``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* ``ValidationResult.is_valid`` is True iff there are zero errors.
* ``can_proceed_with_warnings`` is True iff zero errors and at least one
  warning.
* Issues are routed to ``errors`` or ``warnings`` by severity only; a
  result never holds an ERROR-severity issue in ``warnings``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class ValidationError:
    """
    A single validation issue.

    Contract:
        Carries a stable machine-readable code, a human-readable message,
        a severity, and remediation suggestions.  Callers render ``code``,
        ``message``, ``severity`` and ``suggestions`` directly.

    Guarantees:
        - Immutable (frozen dataclass)
        - suggestions is always a tuple (never None)

    Non-goals:
        - Does NOT raise exceptions -- it IS the error representation.
    """

    code: str
    message: str
    severity: Severity = Severity.ERROR
    suggestions: tuple[str, ...] = ()
    field: str | None = None
    details: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


def error(
    code: str,
    message: str,
    *suggestions: str,
    field: str | None = None,
    details: dict[str, Any] | None = None,
) -> ValidationError:
    """Build an ERROR-severity issue."""
    return ValidationError(code, message, Severity.ERROR, tuple(suggestions), field, details)


def warning(
    code: str,
    message: str,
    *suggestions: str,
    field: str | None = None,
    details: dict[str, Any] | None = None,
) -> ValidationError:
    """Build a WARNING-severity issue."""
    return ValidationError(code, message, Severity.WARNING, tuple(suggestions), field, details)


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of validation.

    Contract:
        Aggregates zero or more errors and zero or more warnings.

    Guarantees:
        - Immutable (frozen dataclass)
        - bool(result) == result.is_valid
    """

    errors: tuple[ValidationError, ...] = field(default_factory=tuple)
    warnings: tuple[ValidationError, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_proceed_with_warnings(self) -> bool:
        return not self.errors and bool(self.warnings)

    @property
    def issues(self) -> tuple[ValidationError, ...]:
        return self.errors + self.warnings

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)

    def has_code(self, code: str) -> bool:
        return any(i.code == code for i in self.issues)

    def first_error(self) -> ValidationError | None:
        return self.errors[0] if self.errors else None

    @classmethod
    def success(cls, *warnings: ValidationError) -> ValidationResult:
        return cls(errors=(), warnings=tuple(warnings))

    @classmethod
    def failure(cls, *errors: ValidationError) -> ValidationResult:
        return cls(errors=tuple(errors), warnings=())

    @classmethod
    def from_issues(cls, issues: Iterable[ValidationError]) -> ValidationResult:
        """Split issues into errors and warnings by severity."""
        errors: list[ValidationError] = []
        warnings: list[ValidationError] = []
        for issue in issues:
            (errors if issue.is_error else warnings).append(issue)
        return cls(errors=tuple(errors), warnings=tuple(warnings))

    def merge(self, *others: ValidationResult) -> ValidationResult:
        errors = list(self.errors)
        warnings = list(self.warnings)
        for other in others:
            errors.extend(other.errors)
            warnings.extend(other.warnings)
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    def summary(self) -> str:
        return summarize_issues(self)

    def __bool__(self) -> bool:
        return self.is_valid


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def summarize_issues(result: ValidationResult) -> str:
    """One-line scannable summary of a result's error and warning counts.

    >>> summarize_issues(ValidationResult.failure(error("A", "a"), error("B", "b")))
    'Found 2 errors that must be fixed before continuing.'
    """
    n_errors = len(result.errors)
    n_warnings = len(result.warnings)
    if n_errors and n_warnings:
        return (
            f"Found {_plural(n_errors, 'error')} and "
            f"{_plural(n_warnings, 'warning')} that need attention."
        )
    if n_errors:
        return f"Found {_plural(n_errors, 'error')} that must be fixed before continuing."
    if n_warnings:
        return f"Found {_plural(n_warnings, 'warning')} that should be reviewed."
    return "No issues found."


def format_issue(issue: ValidationError) -> str:
    """Render one issue with its suggestions as bullet lines."""
    lines = [f"[{issue.severity.value.upper()}] {issue.code}: {issue.message}"]
    lines.extend(f"  - {s}" for s in issue.suggestions)
    return "\n".join(lines)
