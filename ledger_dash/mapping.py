"""Best-effort guess of the column mapping of an uploaded statement.

Every lookup is a case-insensitive "header contains keyword" test. Tiers are
tried in order and, inside a tier, the first header in file order wins. A
field nobody matched is left empty so the user can pick it by hand.
"""
from __future__ import annotations

from typing import Callable, Iterable, Sequence

from .models import ColumnMap

Predicate = Callable[[str], bool]

AMOUNT_KEYWORDS = ("montant", "amount", "prix", "value", "sum")
TYPE_KEYWORDS = ("type operation", "type d'opération", "type", "sens", "debit/credit", "dr/cr", "nature")
DEBIT_KEYWORDS = ("débit", "debit")
CREDIT_KEYWORDS = ("crédit", "credit")


def _contains(*keywords: str) -> Predicate:
    return lambda header: any(keyword in header for keyword in keywords)


def _all_of(*predicates: Predicate) -> Predicate:
    return lambda header: all(predicate(header) for predicate in predicates)


def _none_of(*keywords: str) -> Predicate:
    return lambda header: not any(keyword in header for keyword in keywords)


DATE_TIERS: tuple[Predicate, ...] = (
    _all_of(_contains("date"), _contains("opér", "oper")),
    _all_of(_contains("date"), _none_of("valeur", "comptab")),
    _contains("date"),
)

DESCRIPTION_TIERS: tuple[Predicate, ...] = (
    _all_of(_contains("libell"), _contains("opér", "oper")),
    _contains("description"),
    _contains("libell"),
    _contains("informations compl", "info compl"),
)

COUNTERPARTY_TIERS: tuple[Predicate, ...] = (
    _all_of(_contains("libell"), _contains("simpl")),
    _contains("payee", "bénéfic", "benefic"),
    _contains("merchant", "fournisseur"),
)


def find_first(fields: Sequence[str], tiers: Iterable[Predicate]) -> str:
    """Return the first header matched by the earliest matching tier."""

    lowered = [(field, field.lower()) for field in fields]
    for predicate in tiers:
        for raw, lower in lowered:
            if predicate(lower):
                return raw
    return ""


def find_field(fields: Sequence[str], keywords: Iterable[str]) -> str:
    """Return the first header containing any of ``keywords``, or ``""``."""

    return find_first(fields, (_contains(*keywords),))


def guess_mapping(fields: Sequence[str]) -> ColumnMap:
    """Guess a :class:`ColumnMap` from the headers of an uploaded file.

    The amount column is left empty when no amount-like header exists; the
    normalizer then falls back to a debit/credit pair. Description and
    counterparty may come back identical; see :func:`enforce_unique_text_columns`.
    """

    return ColumnMap(
        date=find_first(fields, DATE_TIERS),
        amount=find_field(fields, AMOUNT_KEYWORDS),
        description=find_first(fields, DESCRIPTION_TIERS),
        counterparty=find_first(fields, COUNTERPARTY_TIERS),
        type=find_field(fields, TYPE_KEYWORDS),
    )


def enforce_unique_text_columns(column_map: ColumnMap, changed: str = "") -> ColumnMap:
    """Clear one side when description and counterparty point at the same header."""

    return column_map.with_unique_text_columns(changed)


__all__ = [
    "AMOUNT_KEYWORDS",
    "TYPE_KEYWORDS",
    "DEBIT_KEYWORDS",
    "CREDIT_KEYWORDS",
    "find_first",
    "find_field",
    "guess_mapping",
    "enforce_unique_text_columns",
]
