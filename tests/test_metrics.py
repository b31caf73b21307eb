import pytest

from ledger_dash.metrics import group_by_month, saving, sum_expenses, sum_income, summarize, top_categories
from ledger_dash.models import StoredTransaction

ROWS = [
    {"occurred_at": "2024-03-01", "amount": 2000.0, "category": "Salaire"},
    {"occurred_at": "2024-03-02", "amount": -50.0, "category": "Courses"},
    {"occurred_at": "2024-03-15", "amount": -20.5, "category": "Courses"},
    {"occurred_at": "2024-04-01", "amount": -800.0, "category": "Logement"},
    {"occurred_at": "2024-04-03", "amount": -12.0, "category": None},
]


def test_income_expenses_and_saving() -> None:
    assert sum_income(ROWS) == 2000.0
    assert sum_expenses(ROWS) == pytest.approx(882.5)
    assert saving(ROWS) == pytest.approx(1117.5)


def test_empty_input_sums_to_zero() -> None:
    assert sum_income([]) == 0.0
    assert sum_expenses([]) == 0.0
    assert top_categories([]) == []


def test_group_by_month_keeps_order() -> None:
    groups = group_by_month(ROWS)

    assert list(groups) == ["2024-03", "2024-04"]
    assert [row["amount"] for row in groups["2024-03"]] == [2000.0, -50.0, -20.5]


def test_top_categories_only_counts_expenses() -> None:
    top = top_categories(ROWS, n=2)

    assert top == [
        {"category": "Logement", "total": 800.0, "count": 1},
        {"category": "Courses", "total": 70.5, "count": 2},
    ]


def test_uncategorized_expenses_are_grouped_under_empty_label() -> None:
    assert {"category": "", "total": 12.0, "count": 1} in top_categories(ROWS)


def test_summarize_accepts_dataclasses() -> None:
    rows = [
        StoredTransaction(id="a", occurred_at="2024-05-02", amount=-3.0, category="Café"),
        StoredTransaction(id="b", occurred_at="2024-05-03", amount=10.0),
    ]

    summary = summarize(rows)

    assert summary["income"] == 10.0
    assert summary["expenses"] == 3.0
    assert summary["saving"] == 7.0
    assert summary["months"] == {"2024-05": 2}
    assert summary["top_categories"] == [{"category": "Café", "total": 3.0, "count": 1}]
