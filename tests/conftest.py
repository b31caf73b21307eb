"""Shared fixtures: an in-memory backend standing in for Supabase."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

import pytest
from fastapi.testclient import TestClient

from ledger_dash.api import SessionContext, app, get_session_context
from ledger_dash.errors import BackendError
from ledger_dash.models import Rule, Scope, StoredTransaction


class FakeBackend:
    """Keeps rules and transactions in lists and records every write."""

    def __init__(self) -> None:
        self.rules: list[Rule] = []
        self.transactions: list[StoredTransaction] = []
        self.inserted: list[dict[str, Any]] = []
        self.update_calls: list[tuple[list[str], dict[str, Optional[str]]]] = []
        self.fetch_rules_calls = 0
        self.fetched_scopes: list[Scope] = []
        self.fail_inserts = False

    def fetch_rules(self) -> list[Rule]:
        self.fetch_rules_calls += 1
        return list(self.rules)

    def insert_rule(self, user_id, pattern, category, budget_category, enabled) -> Rule:
        rule = Rule(
            id=f"rule-{len(self.rules) + 1}",
            pattern=pattern,
            category=category,
            budget_category=budget_category,
            enabled=enabled,
        )
        self.rules.append(rule)
        return rule

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None:
        for rule in self.rules:
            if rule.id == rule_id:
                rule.enabled = enabled

    def delete_rule(self, rule_id: str) -> None:
        self.rules = [rule for rule in self.rules if rule.id != rule_id]

    def insert_transactions(self, rows: Iterable[Mapping[str, Any]], user_id: str) -> int:
        if self.fail_inserts:
            raise BackendError('null value in column "occurred_at" violates not-null constraint')
        payload = [{**row, "user_id": user_id} for row in rows]
        self.inserted.extend(payload)
        return len(payload)

    def update_transactions(self, ids: Iterable[str], values: Mapping[str, Optional[str]]) -> int:
        id_list = list(ids)
        self.update_calls.append((id_list, dict(values)))
        updated = 0
        for transaction in self.transactions:
            if transaction.id in id_list:
                for name, value in values.items():
                    setattr(transaction, name, value)
                updated += 1
        return updated

    def fetch_transactions(self, scope: Scope) -> list[StoredTransaction]:
        self.fetched_scopes.append(scope)
        if scope.all:
            return list(self.transactions)
        start, end = scope.bounds()
        return [tx for tx in self.transactions if start <= tx.occurred_at <= end]


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def client(backend: FakeBackend):
    app.dependency_overrides[get_session_context] = lambda: SessionContext(backend=backend, user_id="user-1")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
