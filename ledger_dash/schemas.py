"""Validated record shapes and request/response bodies."""
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class CanonicalTransaction(BaseModel):
    """Normalized, validated representation of one bank-statement line."""

    occurred_at: str = Field(description="Calendar date, ISO YYYY-MM-DD")
    amount: float = Field(allow_inf_nan=False, description="Negative = expense, positive = income")
    currency: str = "EUR"
    description: Optional[str] = None
    counterparty: Optional[str] = None
    category: Optional[str] = None
    budget_category: Optional[str] = None
    raw: Any = None

    @field_validator("occurred_at")
    @classmethod
    def _must_be_iso_date(cls, value: str) -> str:
        if len(value) != 10:
            raise ValueError(f"occurred_at must be YYYY-MM-DD, got {value!r}")
        date.fromisoformat(value)
        return value


class CategoryUpdatesResponse(BaseModel):
    updated: int


class ColumnMapPayload(BaseModel):
    date: str = ""
    amount: str = ""
    description: str = ""
    counterparty: str = ""
    type: str = ""
    category: str = ""
    budget_category: str = ""


class ImportPreviewResponse(BaseModel):
    fields: list[str]
    delimiter: str
    row_count: int
    mapping: ColumnMapPayload
    preview: list[dict[str, Any]]


class ImportResponse(BaseModel):
    imported: int
    categorized: int = 0


class RuleCreateRequest(BaseModel):
    pattern: str
    category: Optional[str] = None
    budget_category: Optional[str] = None
    enabled: bool = True


class RuleToggleRequest(BaseModel):
    enabled: bool


class RuleResponse(BaseModel):
    id: str
    pattern: str
    category: Optional[str] = None
    budget_category: Optional[str] = None
    enabled: bool = True


class RuleChangeResponse(BaseModel):
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


class RulePreviewResponse(BaseModel):
    scope: str
    scanned: int
    changes: list[RuleChangeResponse]


class RuleCommitRequest(BaseModel):
    ids: Optional[list[str]] = None


class RuleCommitResponse(BaseModel):
    requested: int
    updated: int


class CategoryTotal(BaseModel):
    category: str
    total: float
    count: int


class SummaryResponse(BaseModel):
    scope: str
    income: float
    expenses: float
    saving: float
    months: dict[str, int]
    top_categories: list[CategoryTotal]


__all__ = [
    "CanonicalTransaction",
    "CategoryUpdatesResponse",
    "ColumnMapPayload",
    "ImportPreviewResponse",
    "ImportResponse",
    "RuleCreateRequest",
    "RuleToggleRequest",
    "RuleResponse",
    "RuleChangeResponse",
    "RulePreviewResponse",
    "RuleCommitRequest",
    "RuleCommitResponse",
    "CategoryTotal",
    "SummaryResponse",
]
