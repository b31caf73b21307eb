"""Deterministic, first-match-wins categorization rules.

A rule matches when its pattern is a substring of a transaction's description
or counterparty, compared lower-case and without diacritics ("cafe" matches
"Café du Coin"). Category and budget category are resolved independently:
each takes the first enabled rule, in creation order, that defines a value
for it and matches.
"""
from __future__ import annotations

import csv
import logging
import unicodedata
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, is_dataclass, replace
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

import pandas as pd
from pydantic import BaseModel

from .models import CategoryUpdate, Rule, RuleChange

logger = logging.getLogger(__name__)

CATEGORY = "category"
BUDGET_CATEGORY = "budget_category"
TARGET_FIELDS = (CATEGORY, BUDGET_CATEGORY)
NO_MATCH = ""


def normalize_text(value: object) -> str:
    """Lower-case ``value`` and strip its diacritics."""

    text = "" if value is None else str(value)
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(char for char in decomposed if not unicodedata.combining(char))


@dataclass(slots=True)
class _CachedPattern:
    raw: str
    normalized: str


class PatternCache:
    """Normalized rule patterns keyed by rule id.

    An entry is recomputed when the rule's raw pattern text changes. Owners
    call :meth:`invalidate` whenever the backing rule list is refetched.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _CachedPattern] = {}

    def get(self, rule: Rule) -> str:
        cached = self._entries.get(rule.id)
        if cached is not None and cached.raw == rule.pattern:
            return cached.normalized
        normalized = normalize_text(rule.pattern)
        self._entries[rule.id] = _CachedPattern(raw=rule.pattern, normalized=normalized)
        return normalized

    def invalidate(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RuleEngine:
    """Apply an ordered rule list to transactions.

    Lookups never raise: a transaction that matches no rule simply gets the
    empty-string sentinel back.
    """

    def __init__(self, cache: Optional[PatternCache] = None) -> None:
        self.cache = cache if cache is not None else PatternCache()

    def invalidate(self) -> None:
        self.cache.invalidate()

    def match(self, transaction: Any, rules: Sequence[Rule], field: str) -> str:
        """Return the ``field`` value of the first matching rule, or ``""``."""

        active = [rule for rule in rules if rule.enabled and rule.pattern and getattr(rule, field)]
        if not active:
            return NO_MATCH

        candidates = (
            normalize_text(_read(transaction, "description")),
            normalize_text(_read(transaction, "counterparty")),
        )
        for rule in active:
            pattern = self.cache.get(rule)
            if not pattern:
                continue
            if any(pattern in candidate for candidate in candidates):
                return getattr(rule, field)
        return NO_MATCH

    def apply_rule_category(self, transaction: Any, rules: Sequence[Rule]) -> str:
        return self.match(transaction, rules, CATEGORY)

    def apply_rule_budget_category(self, transaction: Any, rules: Sequence[Rule]) -> str:
        return self.match(transaction, rules, BUDGET_CATEGORY)

    def categorize(self, transaction: Any, rules: Sequence[Rule]) -> Any:
        """Return a copy of ``transaction`` with rule labels filled in.

        Fields no rule matched keep their existing value.
        """

        updates = {}
        for field in TARGET_FIELDS:
            value = self.match(transaction, rules, field)
            if value:
                updates[field] = value
        if not updates:
            return transaction
        return _with_values(transaction, updates)


def preview_changes(
    transactions: Iterable[Any],
    rules: Sequence[Rule],
    engine: RuleEngine,
) -> list[RuleChange]:
    """List the stored transactions whose labels the rules would change.

    A rule that matches but yields the value already stored is not a change.
    """

    changes: list[RuleChange] = []
    if not any(rule.enabled and rule.pattern and (rule.category or rule.budget_category) for rule in rules):
        return changes

    for transaction in transactions:
        previous_category = _read(transaction, CATEGORY) or ""
        previous_budget = _read(transaction, BUDGET_CATEGORY) or ""
        new_category = engine.apply_rule_category(transaction, rules)
        new_budget = engine.apply_rule_budget_category(transaction, rules)
        category_changed = bool(new_category) and new_category != previous_category
        budget_changed = bool(new_budget) and new_budget != previous_budget
        if not (category_changed or budget_changed):
            continue
        changes.append(
            RuleChange(
                id=str(_read(transaction, "id") or ""),
                occurred_at=str(_read(transaction, "occurred_at") or ""),
                description=_read(transaction, "description") or "",
                counterparty=_read(transaction, "counterparty") or "",
                old_category=previous_category,
                new_category=new_category if category_changed else previous_category,
                category_changed=category_changed,
                old_budget=previous_budget,
                new_budget=new_budget if budget_changed else previous_budget,
                budget_changed=budget_changed,
            )
        )
    return changes


def build_updates(changes: Iterable[RuleChange]) -> list[CategoryUpdate]:
    """Convert previewed changes into partial updates carrying only changed fields."""

    updates: list[CategoryUpdate] = []
    for change in changes:
        fields: dict[str, Optional[str]] = {}
        if change.category_changed:
            fields[CATEGORY] = _nullable(change.new_category)
        if change.budget_changed:
            fields[BUDGET_CATEGORY] = _nullable(change.new_budget)
        if fields:
            updates.append(CategoryUpdate(id=change.id, fields=fields))
    return updates


def parse_update(payload: Mapping[str, Any]) -> Optional[CategoryUpdate]:
    """Read one raw ``{id, category?, budget_category?}`` update.

    Key presence decides which fields are written; any non-string value,
    including an empty string, is stored as no value.
    """

    identifier = payload.get("id")
    if not isinstance(identifier, str) or not identifier:
        return None
    fields: dict[str, Optional[str]] = {}
    for field in TARGET_FIELDS:
        if field in payload:
            value = payload[field]
            fields[field] = value if isinstance(value, str) and value else None
    return CategoryUpdate(id=identifier, fields=fields)


def group_updates(updates: Iterable[CategoryUpdate]) -> list[tuple[dict[str, Optional[str]], list[str]]]:
    """Group transaction ids by the exact payload to write, in first-seen order."""

    groups: dict[tuple[tuple[str, Optional[str]], ...], tuple[dict[str, Optional[str]], list[str]]] = {}
    for update in updates:
        if not update.id or not update.fields:
            continue
        key = tuple(sorted(update.fields.items(), key=lambda item: item[0]))
        if key not in groups:
            groups[key] = (dict(update.fields), [])
        groups[key][1].append(update.id)
    return list(groups.values())


def export_changes_csv(changes: Iterable[RuleChange]) -> str:
    """Render previewed changes as ``id,new_category,new_budget_category`` CSV."""

    records = [
        {
            "id": change.id,
            "new_category": change.new_category if change.category_changed else "",
            "new_budget_category": change.new_budget if change.budget_changed else "",
        }
        for change in changes
    ]
    dataframe = pd.DataFrame(records, columns=["id", "new_category", "new_budget_category"])
    return dataframe.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


class RuleSource(Protocol):
    def fetch_rules(self) -> list[Rule]:
        ...


Listener = Callable[[list[Rule]], None]


class RuleStore:
    """Cached rule list for one user session.

    Each (re)load replaces the list and invalidates the engine's pattern
    cache wholesale. Listeners are notified after every load.
    """

    def __init__(self, engine: Optional[RuleEngine] = None) -> None:
        self.engine = engine if engine is not None else RuleEngine()
        self._rules: list[Rule] = []
        self._loaded = False
        self._listeners: list[Listener] = []

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def get(self) -> list[Rule]:
        return list(self._rules)

    def ensure(self, source: RuleSource, force: bool = False) -> list[Rule]:
        if self._loaded and not force:
            return self.get()
        return self._load(source)

    def refresh(self, source: RuleSource) -> list[Rule]:
        self._loaded = False
        return self.ensure(source, force=True)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        if self._loaded:
            listener(self.get())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _load(self, source: RuleSource) -> list[Rule]:
        rules = source.fetch_rules()
        self._rules = list(rules)
        self._loaded = True
        self.engine.invalidate()
        logger.info("Loaded %d rule(s)", len(self._rules))
        self._notify()
        return self.get()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.get())
            except Exception:
                logger.exception("Rule store listener failed")


class RuleStoreRegistry:
    """One :class:`RuleStore` per user, keeping the most recently used ones.

    Beyond ``max_size`` users the least recently used store is dropped; that
    user simply reloads their rules on the next request.
    """

    def __init__(self, max_size: int = 256) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._stores: OrderedDict[str, RuleStore] = OrderedDict()

    def __len__(self) -> int:
        return len(self._stores)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._stores

    def get(self, user_id: str) -> RuleStore:
        store = self._stores.get(user_id)
        if store is None:
            store = self._stores[user_id] = RuleStore()
        self._stores.move_to_end(user_id)
        while len(self._stores) > self._max_size:
            evicted, _ = self._stores.popitem(last=False)
            logger.debug("Dropped cached rules of user %s", evicted)
        return store

    def clear(self) -> None:
        self._stores.clear()


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _read(transaction: Any, name: str) -> Any:
    if isinstance(transaction, Mapping):
        return transaction.get(name)
    return getattr(transaction, name, None)


def _with_values(transaction: Any, values: dict[str, str]) -> Any:
    if isinstance(transaction, BaseModel):
        return transaction.model_copy(update=values)
    if is_dataclass(transaction) and not isinstance(transaction, type):
        return replace(transaction, **values)
    if isinstance(transaction, Mapping):
        return {**transaction, **values}
    raise TypeError(f"Cannot categorize object of type {type(transaction).__name__}")


def _nullable(value: str) -> Optional[str]:
    trimmed = value.strip()
    return trimmed or None


__all__ = [
    "CATEGORY",
    "BUDGET_CATEGORY",
    "NO_MATCH",
    "normalize_text",
    "PatternCache",
    "RuleEngine",
    "preview_changes",
    "build_updates",
    "parse_update",
    "group_updates",
    "export_changes_csv",
    "RuleSource",
    "RuleStore",
    "RuleStoreRegistry",
]
