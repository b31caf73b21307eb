"""Exception hierarchy shared by the import pipeline, rules and API layer."""
from __future__ import annotations

from typing import Iterable, Optional, Sequence


class LedgerDashError(Exception):
    """Base class for all errors raised by ledger_dash."""


class MappingIncompleteError(LedgerDashError):
    """Raised when an import is requested without the required column mapping."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        fields = ", ".join(self.missing)
        super().__init__(f"Select a source column for: {fields}")


class InvalidRuleError(LedgerDashError, ValueError):
    """A rule needs a pattern and at least one label to have any effect."""


class InvalidScopeError(LedgerDashError, ValueError):
    """A month scope that does not name a real calendar month."""

    def __init__(self, month: object) -> None:
        self.month = month
        super().__init__(f"Invalid month: {_display(month)} (expected YYYY-MM)")


class NormalizationError(LedgerDashError, ValueError):
    """A source row could not be turned into a canonical transaction."""


class MalformedFileError(NormalizationError):
    """The upload could not be split into rows of the header's width."""


class InvalidDateError(NormalizationError):
    def __init__(self, raw_value: object) -> None:
        self.raw_value = raw_value
        super().__init__(f"Invalid date: {_display(raw_value)}")


class InvalidAmountError(NormalizationError):
    def __init__(self, column: Optional[str], raw_value: object) -> None:
        self.column = column
        self.raw_value = raw_value
        source = column or "(amount not mapped)"
        super().__init__(f'Invalid amount (column "{source}", value "{_display(raw_value)}")')


class SchemaValidationError(NormalizationError):
    """The assembled record does not satisfy the canonical transaction schema."""


class RowNormalizationError(NormalizationError):
    """A row-level failure annotated with the 1-based position of the row."""

    def __init__(self, line: int, cause: Exception) -> None:
        self.line = line
        self.cause = cause
        super().__init__(f"[line {line}] {cause}")


class BatchNormalizationError(NormalizationError):
    """Every failing row of a batch, raised only in collect-all mode."""

    def __init__(self, errors: Iterable[RowNormalizationError]) -> None:
        self.errors = list(errors)
        lines = "; ".join(str(error) for error in self.errors)
        super().__init__(f"{len(self.errors)} row(s) could not be imported: {lines}")


class BackendError(LedgerDashError):
    """The hosted backend rejected or failed a request."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(BackendError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, status_code=401)


def _display(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


__all__ = [
    "LedgerDashError",
    "MappingIncompleteError",
    "InvalidRuleError",
    "InvalidScopeError",
    "NormalizationError",
    "MalformedFileError",
    "InvalidDateError",
    "InvalidAmountError",
    "SchemaValidationError",
    "RowNormalizationError",
    "BatchNormalizationError",
    "BackendError",
    "AuthenticationError",
]
