"""Domain models used by the ledger_dash backend.

The classes defined here are lightweight data containers that do not know
anything about persistence or transport concerns. The validated canonical
transaction lives in :mod:`ledger_dash.schemas` because it is also the wire
shape sent to the ingest endpoint.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Any, Mapping, Optional

from .errors import InvalidScopeError

COLUMN_MAP_FIELDS = (
    "date",
    "amount",
    "description",
    "counterparty",
    "type",
    "category",
    "budget_category",
)

_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")


@dataclass(slots=True)
class ColumnMap:
    """Correspondence between canonical fields and source file headers.

    Every attribute holds the exact source header name, or an empty string
    meaning the canonical field is ignored for this import.
    """

    date: str = ""
    amount: str = ""
    description: str = ""
    counterparty: str = ""
    type: str = ""
    category: str = ""
    budget_category: str = ""

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Optional[str]]) -> "ColumnMap":
        values = {name: (mapping.get(name) or "") for name in COLUMN_MAP_FIELDS}
        return cls(**values)

    def as_dict(self) -> dict[str, str]:
        return {item.name: getattr(self, item.name) for item in fields(self)}

    def missing_required(self) -> list[str]:
        """Return the required canonical fields that have no source column."""

        return [] if self.date else ["date"]

    def with_unique_text_columns(self, changed: str = "") -> "ColumnMap":
        """Return a copy where description and counterparty never share a column.

        On a collision the counterparty is cleared, unless ``changed`` says the
        counterparty is the field the user just picked, in which case the
        description is cleared instead.
        """

        if not (self.description and self.description == self.counterparty):
            return replace(self)
        if changed == "counterparty":
            return replace(self, description="")
        return replace(self, counterparty="")


@dataclass(slots=True)
class Rule:
    """User-defined categorization rule.

    Rules are evaluated in creation order; both labels are optional but a rule
    only has an effect when at least one of them is set.
    """

    id: str
    pattern: str
    category: Optional[str] = None
    budget_category: Optional[str] = None
    enabled: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Rule":
        return cls(
            id=str(row.get("id", "")),
            pattern=str(row.get("pattern") or ""),
            category=row.get("category") or None,
            budget_category=row.get("budget_category") or None,
            enabled=bool(row.get("enabled", True)),
        )


@dataclass(slots=True)
class StoredTransaction:
    """Transaction as persisted by the storage backend."""

    id: str
    occurred_at: str
    amount: float = 0.0
    description: Optional[str] = None
    counterparty: Optional[str] = None
    category: Optional[str] = None
    budget_category: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StoredTransaction":
        return cls(
            id=str(row.get("id", "")),
            occurred_at=str(row.get("occurred_at") or ""),
            amount=float(row.get("amount") or 0.0),
            description=row.get("description"),
            counterparty=row.get("counterparty"),
            category=row.get("category"),
            budget_category=row.get("budget_category"),
        )


@dataclass(slots=True)
class RuleChange:
    """Effect the active rules would have on one stored transaction."""

    id: str
    occurred_at: str
    description: str
    counterparty: str
    old_category: str
    new_category: str
    category_changed: bool
    old_budget: str
    new_budget: str
    budget_changed: bool


@dataclass(slots=True)
class CategoryUpdate:
    """Partial update of a transaction.

    Only the keys present in :attr:`fields` are written. A ``None`` value
    clears the stored label.
    """

    id: str
    fields: dict[str, Optional[str]] = field(default_factory=dict)


@dataclass(slots=True)
class ParsedTable:
    """Headers and rows produced by the tabular reader."""

    fields: list[str]
    rows: list[dict[str, str]]
    delimiter: str = ","


@dataclass(frozen=True, slots=True)
class Scope:
    """Range of stored transactions targeted by a rule preview or summary.

    ``month`` is ``None`` only when :attr:`all` is set.
    """

    month: Optional[str] = None
    all: bool = False

    @classmethod
    def for_month(cls, month: Optional[str], today: Optional[date] = None) -> "Scope":
        """Scope of one ``YYYY-MM`` month, defaulting to the current one.

        Raises:
            InvalidScopeError: when ``month`` is not a real calendar month.
        """

        if month:
            match = _MONTH.match(month.strip())
            if not match:
                raise InvalidScopeError(month)
            year, month_number = (int(part) for part in match.groups())
            if not 1 <= month_number <= 12:
                raise InvalidScopeError(month)
            return cls(month=f"{year:04d}-{month_number:02d}")
        current = today or date.today()
        return cls(month=f"{current.year:04d}-{current.month:02d}")

    def bounds(self) -> tuple[str, str]:
        """Return the first and last ISO day of :attr:`month`."""

        if not self.month:
            raise ValueError("The 'all' scope has no date bounds")
        year, month_number = (int(part) for part in self.month.split("-"))
        last_day = calendar.monthrange(year, month_number)[1]
        return (
            date(year, month_number, 1).isoformat(),
            date(year, month_number, last_day).isoformat(),
        )


__all__ = [
    "COLUMN_MAP_FIELDS",
    "ColumnMap",
    "Rule",
    "StoredTransaction",
    "RuleChange",
    "CategoryUpdate",
    "ParsedTable",
    "Scope",
]
