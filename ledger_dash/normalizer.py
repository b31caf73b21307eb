"""Turn raw statement rows into validated canonical transactions.

Rows come from :func:`ledger_dash.tabular.read_csv` (or any parser yielding
dicts keyed by header) together with a :class:`~ledger_dash.models.ColumnMap`.
Each row produces exactly one :class:`~ledger_dash.schemas.CanonicalTransaction`
or fails with a reason that can be shown to the user as-is.
"""
from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence

from dateutil import parser as date_parser
from pydantic import ValidationError

from .errors import (
    BatchNormalizationError,
    InvalidAmountError,
    InvalidDateError,
    NormalizationError,
    RowNormalizationError,
    SchemaValidationError,
)
from .mapping import CREDIT_KEYWORDS, DEBIT_KEYWORDS
from .models import ColumnMap
from .schemas import CanonicalTransaction

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "EUR"

_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_CURRENCY_AND_SPACES = re.compile(r"[€\s]")
_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
# Parts missing from a fallback date come from here, never from today.
_PARSE_DEFAULT = datetime(2000, 1, 1)

# Substrings of the type/direction column. Expense keywords are checked first.
EXPENSE_TYPE_PATTERN = re.compile(r"debit|déb|sortie|retrait|prél|prelev|paiement|cb|carte")
INCOME_TYPE_PATTERN = re.compile(r"credit|créd|entrée|virement reçu|recu|reçu")


def to_iso_date(value: object) -> str:
    """Return ``value`` as an ISO ``YYYY-MM-DD`` string.

    ``DD/MM/YYYY`` is read literally so ``05/03/2024`` is always the 5th of
    March. Anything else goes through :mod:`dateutil` and only the calendar
    date of the result is kept; a missing day reads as the 1st (``March 2024``
    is ``2024-03-01``).

    Raises:
        InvalidDateError: when neither path yields a real calendar date.
    """

    text = _text(value).strip()
    match = _DAY_FIRST_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError as exc:
            raise InvalidDateError(text) from exc

    if not text:
        raise InvalidDateError(text)
    try:
        parsed = date_parser.parse(text, default=_PARSE_DEFAULT)
    except (ValueError, OverflowError) as exc:
        raise InvalidDateError(text) from exc
    return parsed.date().isoformat()


def parse_amount(value: object) -> float:
    """Parse a bank-formatted amount, returning ``nan`` when it is unusable.

    When both ``,`` and ``.`` appear the period is taken as the thousands
    separator (``1.234,56``). A lone comma is always the decimal separator, so
    ``1,234`` reads as ``1.234``.
    """

    if value is None:
        return math.nan
    text = _CURRENCY_AND_SPACES.sub("", str(value).strip())
    if "," in text and "." in text:
        text = text.replace(".", "")
    text = text.replace(",", ".")
    match = _LEADING_NUMBER.match(text)
    if not match:
        return math.nan
    number = float(match.group(0))
    return number if math.isfinite(number) else math.nan


def normalize_row(
    row: Mapping[str, Any],
    column_map: ColumnMap,
    currency: str = DEFAULT_CURRENCY,
) -> CanonicalTransaction:
    """Build one canonical transaction from a source row."""

    raw_date = row.get(column_map.date) if column_map.date else None
    occurred_at = to_iso_date(raw_date)
    amount = _resolve_amount(row, column_map)

    record = {
        "occurred_at": occurred_at,
        "amount": amount,
        "currency": currency,
        "description": _optional_text(row, column_map.description),
        "counterparty": _optional_text(row, column_map.counterparty),
        "category": _optional_text(row, column_map.category),
        "budget_category": _optional_text(row, column_map.budget_category),
        "raw": dict(row),
    }
    try:
        return CanonicalTransaction.model_validate(record)
    except ValidationError as exc:
        raise SchemaValidationError(f"Invalid transaction record: {exc}") from exc


def normalize_rows(
    rows: Sequence[Mapping[str, Any]],
    column_map: ColumnMap,
    currency: str = DEFAULT_CURRENCY,
    collect_errors: bool = False,
) -> list[CanonicalTransaction]:
    """Normalize a batch, annotating failures with the 1-based row number.

    By default the first failing row aborts the batch and later rows are never
    read. With ``collect_errors`` every row is attempted and all failures are
    raised together as a :class:`BatchNormalizationError`.
    """

    transactions: list[CanonicalTransaction] = []
    failures: list[RowNormalizationError] = []
    for index, row in enumerate(rows, start=1):
        try:
            transactions.append(normalize_row(row, column_map, currency))
        except NormalizationError as exc:
            error = RowNormalizationError(index, exc)
            if not collect_errors:
                logger.info("Normalization stopped at line %d: %s", index, exc)
                raise error from exc
            failures.append(error)

    if failures:
        logger.info("Normalization failed for %d of %d row(s)", len(failures), len(rows))
        raise BatchNormalizationError(failures)
    logger.debug("Normalized %d row(s)", len(transactions))
    return transactions


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _resolve_amount(row: Mapping[str, Any], column_map: ColumnMap) -> float:
    amount = math.nan
    if column_map.amount:
        amount = parse_amount(row.get(column_map.amount))

    if not math.isfinite(amount):
        amount = _amount_from_debit_credit(row)

    if column_map.type and amount:
        direction = _text(row.get(column_map.type)).lower()
        if EXPENSE_TYPE_PATTERN.search(direction):
            amount = -abs(amount)
        elif INCOME_TYPE_PATTERN.search(direction):
            amount = abs(amount)

    if not math.isfinite(amount):
        raw_value = row.get(column_map.amount) if column_map.amount else None
        raise InvalidAmountError(column_map.amount or None, raw_value)
    return amount


def _amount_from_debit_credit(row: Mapping[str, Any]) -> float:
    debit_key = _find_key(row, DEBIT_KEYWORDS)
    credit_key = _find_key(row, CREDIT_KEYWORDS)
    if debit_key is None and credit_key is None:
        return math.nan

    credit = parse_amount(row.get(credit_key)) if credit_key is not None else math.nan
    debit = parse_amount(row.get(debit_key)) if debit_key is not None else math.nan
    if math.isfinite(credit) and credit != 0:
        return abs(credit)
    if math.isfinite(debit) and debit != 0:
        return -abs(debit)
    return math.nan


def _find_key(row: Mapping[str, Any], keywords: Sequence[str]) -> Optional[str]:
    for key in row.keys():
        lowered = str(key).lower()
        if any(keyword in lowered for keyword in keywords):
            return key
    return None


def _optional_text(row: Mapping[str, Any], column: str) -> Optional[str]:
    if not column:
        return None
    return _text(row.get(column)).strip() or None


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = [
    "DEFAULT_CURRENCY",
    "EXPENSE_TYPE_PATTERN",
    "INCOME_TYPE_PATTERN",
    "to_iso_date",
    "parse_amount",
    "normalize_row",
    "normalize_rows",
]
