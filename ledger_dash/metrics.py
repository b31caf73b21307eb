"""Spending summaries over canonical or stored transactions."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, Sequence

import pandas as pd


def _frame(rows: Iterable[Any]) -> pd.DataFrame:
    records = [
        {
            "occurred_at": str(_read(row, "occurred_at") or ""),
            "amount": float(_read(row, "amount") or 0.0),
            "category": _read(row, "category") or "",
        }
        for row in rows
    ]
    frame = pd.DataFrame(records, columns=["occurred_at", "amount", "category"])
    return frame.astype({"amount": float})


def sum_income(rows: Iterable[Any]) -> float:
    frame = _frame(rows)
    return float(frame.loc[frame["amount"] > 0, "amount"].sum())


def sum_expenses(rows: Iterable[Any]) -> float:
    """Return the magnitude of all negative amounts."""

    frame = _frame(rows)
    return float(frame.loc[frame["amount"] < 0, "amount"].abs().sum())


def saving(rows: Sequence[Any]) -> float:
    return sum_income(rows) - sum_expenses(rows)


def group_by_month(rows: Iterable[Any]) -> dict[str, list[Any]]:
    """Bucket rows by the ``YYYY-MM`` prefix of their date, keeping input order."""

    groups: dict[str, list[Any]] = {}
    for row in rows:
        key = str(_read(row, "occurred_at") or "")[:7]
        groups.setdefault(key, []).append(row)
    return groups


def top_categories(rows: Iterable[Any], n: int = 5) -> list[dict[str, Any]]:
    """Return the ``n`` expense categories with the largest total spend.

    Uncategorized expenses are grouped under the empty string. Income rows are
    ignored.
    """

    frame = _frame(rows)
    expenses = frame.loc[frame["amount"] < 0].copy()
    if expenses.empty:
        return []
    expenses["spent"] = expenses["amount"].abs()
    grouped = (
        expenses.groupby("category", sort=False)["spent"]
        .agg(total="sum", count="count")
        .reset_index()
        .sort_values("total", ascending=False, kind="stable")
        .head(n)
    )
    return [
        {"category": str(record["category"]), "total": float(record["total"]), "count": int(record["count"])}
        for record in grouped.to_dict(orient="records")
    ]


def summarize(rows: Sequence[Any], n: int = 5) -> dict[str, Any]:
    income = sum_income(rows)
    expenses = sum_expenses(rows)
    return {
        "income": income,
        "expenses": expenses,
        "saving": income - expenses,
        "months": {month: len(items) for month, items in sorted(group_by_month(rows).items())},
        "top_categories": top_categories(rows, n),
    }


def _read(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


__all__ = ["sum_income", "sum_expenses", "saving", "group_by_month", "top_categories", "summarize"]
