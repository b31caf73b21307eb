"""High-level application services orchestrating the ledger_dash backend."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Protocol

from .config import AppConfig
from .errors import InvalidRuleError, MappingIncompleteError
from .mapping import enforce_unique_text_columns, guess_mapping
from .metrics import summarize
from .models import CategoryUpdate, ColumnMap, ParsedTable, Rule, RuleChange, Scope, StoredTransaction
from .normalizer import normalize_rows
from .rules import (
    RuleEngine,
    RuleStore,
    build_updates,
    group_updates,
    parse_update,
    preview_changes,
)
from .tabular import read_csv

logger = logging.getLogger(__name__)


class Backend(Protocol):
    """Storage operations the services rely on (see :class:`SupabaseClient`)."""

    def fetch_rules(self) -> list[Rule]: ...

    def insert_rule(
        self,
        user_id: str,
        pattern: str,
        category: Optional[str],
        budget_category: Optional[str],
        enabled: bool,
    ) -> Rule: ...

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None: ...

    def delete_rule(self, rule_id: str) -> None: ...

    def insert_transactions(self, rows: Iterable[Mapping[str, Any]], user_id: str) -> int: ...

    def update_transactions(self, ids: Iterable[str], values: Mapping[str, Optional[str]]) -> int: ...

    def fetch_transactions(self, scope: Scope) -> list[StoredTransaction]: ...


class LedgerService:
    """Coordinates imports, rule management and summaries for one user."""

    def __init__(self, config: AppConfig, backend: Backend, user_id: str, rule_store: RuleStore) -> None:
        self._config = config
        self._backend = backend
        self._user_id = user_id
        self._rules = rule_store

    @property
    def engine(self) -> RuleEngine:
        return self._rules.engine

    # ------------------------------------------------------------------
    # Import workflows
    # ------------------------------------------------------------------
    def preview_import(self, content: bytes | str) -> tuple[ParsedTable, ColumnMap]:
        """Parse an upload and guess its column mapping without writing anything."""

        table = read_csv(content)
        mapping = enforce_unique_text_columns(guess_mapping(table.fields))
        logger.info("Previewed upload: %d row(s), %d column(s)", len(table.rows), len(table.fields))
        return table, mapping

    def import_file(
        self,
        content: bytes | str,
        mapping: ColumnMap,
        apply_rules: bool = True,
        collect_errors: bool = False,
    ) -> tuple[int, int]:
        """Normalize an upload, optionally categorize it, and store it.

        Returns the number of stored rows and how many of them a rule labelled.
        Nothing is stored when any row fails to normalize.
        """

        missing = mapping.missing_required()
        if missing:
            raise MappingIncompleteError(missing)

        table = read_csv(content)
        transactions = normalize_rows(
            table.rows,
            enforce_unique_text_columns(mapping),
            currency=self._config.currency,
            collect_errors=collect_errors,
        )

        categorized = 0
        if apply_rules and transactions:
            rules = self._rules.ensure(self._backend)
            labelled = []
            for transaction in transactions:
                result = self.engine.categorize(transaction, rules)
                if result is not transaction:
                    categorized += 1
                labelled.append(result)
            transactions = labelled

        rows = [transaction.model_dump(mode="json") for transaction in transactions]
        imported = self._backend.insert_transactions(rows, self._user_id)
        logger.info("Imported %d row(s), %d categorized by rules", imported, categorized)
        return imported, categorized

    def ingest(self, rows: list[dict[str, Any]]) -> int:
        """Store already-normalized rows as-is, tagged with the current user."""

        return self._backend.insert_transactions(rows, self._user_id)

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------
    def list_rules(self, force: bool = False) -> list[Rule]:
        return self._rules.ensure(self._backend, force=force)

    def create_rule(
        self,
        pattern: str,
        category: Optional[str] = None,
        budget_category: Optional[str] = None,
        enabled: bool = True,
    ) -> Rule:
        pattern = (pattern or "").strip()
        category = (category or "").strip() or None
        budget_category = (budget_category or "").strip() or None
        if not pattern or not (category or budget_category):
            raise InvalidRuleError("A rule needs a pattern and a category or budget category")
        rule = self._backend.insert_rule(self._user_id, pattern, category, budget_category, enabled)
        self._rules.refresh(self._backend)
        return rule

    def toggle_rule(self, rule_id: str, enabled: bool) -> None:
        self._backend.set_rule_enabled(rule_id, enabled)
        self._rules.refresh(self._backend)

    def delete_rule(self, rule_id: str) -> None:
        self._backend.delete_rule(rule_id)
        self._rules.refresh(self._backend)

    # ------------------------------------------------------------------
    # Rule application
    # ------------------------------------------------------------------
    def preview_rule_changes(self, scope: Scope) -> tuple[int, list[RuleChange]]:
        """Return how many transactions were scanned and which would change."""

        rules = self._rules.ensure(self._backend)
        transactions = self._backend.fetch_transactions(scope)
        changes = preview_changes(transactions, rules, self.engine)
        logger.info("Rule preview: %d change(s) over %d transaction(s)", len(changes), len(transactions))
        return len(transactions), changes

    def commit_rule_changes(self, scope: Scope, ids: Optional[Iterable[str]] = None) -> tuple[int, int]:
        """Recompute the preview for ``scope`` against current rules and write it.

        ``ids`` limits the write to the transactions the caller was shown, so
        rows that started matching after the preview are left alone. Their new
        values are still computed from the rules as they are now.
        """

        _, changes = self.preview_rule_changes(scope)
        if ids is not None:
            wanted = set(ids)
            changes = [change for change in changes if change.id in wanted]
        updates = build_updates(changes)
        return len(updates), self.apply_updates(updates)

    def apply_updates(self, updates: Iterable[CategoryUpdate]) -> int:
        """Write partial updates, one request per distinct payload."""

        updated = 0
        groups = group_updates(updates)
        for values, ids in groups:
            updated += self._backend.update_transactions(ids, values)
        logger.info("Applied %d group(s) of category updates, %d row(s) updated", len(groups), updated)
        return updated

    def apply_raw_updates(self, payloads: Iterable[Mapping[str, Any]]) -> int:
        updates = [update for update in (parse_update(payload) for payload in payloads) if update]
        return self.apply_updates(updates)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------
    def summary(self, scope: Scope, top: int = 5) -> dict[str, Any]:
        """Summarize ``scope`` with rule categories applied on the fly."""

        rules = self._rules.ensure(self._backend)
        transactions = [
            self.engine.categorize(transaction, rules)
            for transaction in self._backend.fetch_transactions(scope)
        ]
        return summarize(transactions, top)


__all__ = ["Backend", "LedgerService"]
