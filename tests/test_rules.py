import pytest

from ledger_dash import rules as rules_module
from ledger_dash.models import CategoryUpdate, Rule, RuleChange, StoredTransaction
from ledger_dash.rules import (
    PatternCache,
    RuleEngine,
    RuleStore,
    RuleStoreRegistry,
    build_updates,
    export_changes_csv,
    group_updates,
    normalize_text,
    parse_update,
    preview_changes,
)
from ledger_dash.schemas import CanonicalTransaction


def tx(description=None, counterparty=None, **extra):
    return {"description": description, "counterparty": counterparty, **extra}


@pytest.fixture()
def engine() -> RuleEngine:
    return RuleEngine()


def test_normalize_text_lowercases_and_strips_diacritics() -> None:
    assert normalize_text("Café Crème") == "cafe creme"
    assert normalize_text(None) == ""


def test_first_matching_rule_wins(engine: RuleEngine) -> None:
    rules = [
        Rule(id="1", pattern="uber eats", category="Restaurants"),
        Rule(id="2", pattern="uber", category="Transport"),
    ]

    assert engine.apply_rule_category(tx("UBER EATS PARIS"), rules) == "Restaurants"
    assert engine.apply_rule_category(tx("UBER TRIP"), rules) == "Transport"


def test_rule_order_decides_overlaps(engine: RuleEngine) -> None:
    rules = [
        Rule(id="2", pattern="uber", category="Transport"),
        Rule(id="1", pattern="uber eats", category="Restaurants"),
    ]
    assert engine.apply_rule_category(tx("UBER EATS PARIS"), rules) == "Transport"


def test_matching_ignores_diacritics_both_ways(engine: RuleEngine) -> None:
    assert engine.apply_rule_category(tx("Café du Coin"), [Rule(id="1", pattern="cafe", category="Sorties")]) == "Sorties"
    assert engine.apply_rule_category(tx("CAFE DU COIN"), [Rule(id="1", pattern="Café", category="Sorties")]) == "Sorties"


def test_counterparty_alone_can_match(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="edf", category="Énergie")]
    assert engine.apply_rule_category(tx("PRLV SEPA", "EDF clients"), rules) == "Énergie"


def test_no_rules_or_disabled_rules_return_sentinel(engine: RuleEngine) -> None:
    disabled = [Rule(id="1", pattern="uber", category="Transport", enabled=False)]

    assert engine.apply_rule_category(tx("UBER"), []) == ""
    assert engine.apply_rule_category(tx("UBER"), disabled) == ""


def test_no_match_returns_sentinel(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="uber", category="Transport")]
    assert engine.apply_rule_category(tx(None, None), rules) == ""


def test_empty_pattern_never_matches(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="", category="Everything"), Rule(id="2", pattern="   ", category="Spaces")]
    assert engine.apply_rule_category(tx("anything"), rules) == ""


def test_category_and_budget_resolve_independently(engine: RuleEngine) -> None:
    rules = [
        Rule(id="1", pattern="netflix", budget_category="plaisir"),
        Rule(id="2", pattern="net", category="Abonnements"),
        Rule(id="3", pattern="netflix", category="Streaming", budget_category="obligatoire fixe"),
    ]
    row = tx("NETFLIX.COM")

    assert engine.apply_rule_category(row, rules) == "Abonnements"
    assert engine.apply_rule_budget_category(row, rules) == "plaisir"


def test_engine_reads_attribute_objects(engine: RuleEngine) -> None:
    stored = StoredTransaction(id="t1", occurred_at="2024-03-01", description="Boulangerie Paul")
    assert engine.apply_rule_category(stored, [Rule(id="1", pattern="boulangerie", category="Courses")]) == "Courses"


def test_categorize_fills_matches_and_keeps_other_values(engine: RuleEngine) -> None:
    record = CanonicalTransaction(
        occurred_at="2024-03-01", amount=-4.2, description="Boulangerie", budget_category="plaisir"
    )
    rules = [Rule(id="1", pattern="boulangerie", category="Courses")]

    result = engine.categorize(record, rules)

    assert result.category == "Courses"
    assert result.budget_category == "plaisir"
    assert record.category is None


def test_categorize_returns_same_object_without_match(engine: RuleEngine) -> None:
    row = tx("nothing here")
    assert engine.categorize(row, [Rule(id="1", pattern="uber", category="Transport")]) is row


# --- pattern cache -----------------------------------------------------------


def test_pattern_cache_reuses_and_recomputes_on_change(monkeypatch) -> None:
    calls = []
    original = rules_module.normalize_text

    def counting(value):
        calls.append(value)
        return original(value)

    monkeypatch.setattr(rules_module, "normalize_text", counting)
    cache = PatternCache()
    rule = Rule(id="1", pattern="Café", category="Sorties")

    assert cache.get(rule) == "cafe"
    assert cache.get(rule) == "cafe"
    assert calls == ["Café"]

    rule.pattern = "Thé"
    assert cache.get(rule) == "the"
    assert calls == ["Café", "Thé"]


def test_pattern_cache_invalidate_clears_entries() -> None:
    cache = PatternCache()
    cache.get(Rule(id="1", pattern="a", category="A"))
    cache.get(Rule(id="2", pattern="b", category="B"))
    assert len(cache) == 2

    cache.invalidate()

    assert len(cache) == 0


def test_engines_do_not_share_caches() -> None:
    first, second = RuleEngine(), RuleEngine()
    first.apply_rule_category(tx("uber"), [Rule(id="1", pattern="uber", category="Transport")])

    assert len(first.cache) == 1
    assert len(second.cache) == 0


# --- preview and commit ------------------------------------------------------


def stored(id, description, category=None, budget=None):
    return StoredTransaction(
        id=id,
        occurred_at="2024-03-10",
        amount=-10.0,
        description=description,
        category=category,
        budget_category=budget,
    )


def test_preview_excludes_transactions_already_labelled(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="uber", category="Transport")]
    transactions = [stored("a", "UBER TRIP", category="Transport"), stored("b", "UBER TRIP")]

    changes = preview_changes(transactions, rules, engine)

    assert [change.id for change in changes] == ["b"]
    assert changes[0].old_category == ""
    assert changes[0].new_category == "Transport"
    assert changes[0].category_changed is True
    assert changes[0].budget_changed is False


def test_preview_reports_budget_only_changes(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="loyer", category="Logement", budget_category="obligatoire fixe")]
    transactions = [stored("a", "LOYER MARS", category="Logement", budget="plaisir")]

    [change] = preview_changes(transactions, rules, engine)

    assert change.category_changed is False
    assert change.new_category == "Logement"
    assert change.budget_changed is True
    assert change.old_budget == "plaisir"
    assert change.new_budget == "obligatoire fixe"


def test_preview_with_no_active_rules_is_empty(engine: RuleEngine) -> None:
    rules = [Rule(id="1", pattern="uber", category="Transport", enabled=False)]
    assert preview_changes([stored("a", "UBER")], rules, engine) == []


def _change(id, category=None, budget=None):
    return RuleChange(
        id=id,
        occurred_at="2024-03-10",
        description="",
        counterparty="",
        old_category="",
        new_category=category or "",
        category_changed=category is not None,
        old_budget="",
        new_budget=budget or "",
        budget_changed=budget is not None,
    )


def test_build_updates_only_carries_changed_fields() -> None:
    updates = build_updates([_change("a", category="Transport"), _change("b", budget=" plaisir ")])

    assert updates == [
        CategoryUpdate(id="a", fields={"category": "Transport"}),
        CategoryUpdate(id="b", fields={"budget_category": "plaisir"}),
    ]


def test_group_updates_by_identical_payload() -> None:
    updates = [
        CategoryUpdate(id="a", fields={"category": "Transport"}),
        CategoryUpdate(id="b", fields={"category": "Courses"}),
        CategoryUpdate(id="c", fields={"category": "Transport"}),
        CategoryUpdate(id="d", fields={"category": "Transport", "budget_category": None}),
        CategoryUpdate(id="e", fields={}),
    ]

    groups = group_updates(updates)

    assert groups == [
        ({"category": "Transport"}, ["a", "c"]),
        ({"category": "Courses"}, ["b"]),
        ({"category": "Transport", "budget_category": None}, ["d"]),
    ]


def test_parse_update_uses_key_presence() -> None:
    assert parse_update({"id": "a", "category": ""}) == CategoryUpdate(id="a", fields={"category": None})
    assert parse_update({"id": "a", "budget_category": "plaisir"}) == CategoryUpdate(
        id="a", fields={"budget_category": "plaisir"}
    )
    assert parse_update({"id": "a"}) == CategoryUpdate(id="a", fields={})
    assert parse_update({"category": "x"}) is None


def test_export_changes_csv_quotes_every_cell() -> None:
    csv_text = export_changes_csv([_change("a", category='Say "hi"'), _change("b", budget="plaisir")])

    assert csv_text.splitlines() == [
        '"id","new_category","new_budget_category"',
        '"a","Say ""hi""",""',
        '"b","","plaisir"',
    ]


# --- rule store --------------------------------------------------------------


class ListSource:
    def __init__(self, rules):
        self.rules = rules
        self.calls = 0

    def fetch_rules(self):
        self.calls += 1
        return list(self.rules)


def test_store_loads_once_until_refreshed() -> None:
    source = ListSource([Rule(id="1", pattern="uber", category="Transport")])
    store = RuleStore()

    assert store.is_loaded is False
    store.ensure(source)
    store.ensure(source)
    assert source.calls == 1

    source.rules.append(Rule(id="2", pattern="sncf", category="Transport"))
    assert len(store.refresh(source)) == 2
    assert source.calls == 2


def test_store_reload_invalidates_pattern_cache() -> None:
    source = ListSource([Rule(id="1", pattern="uber", category="Transport")])
    store = RuleStore()
    rules = store.ensure(source)
    store.engine.apply_rule_category(tx("uber"), rules)
    assert len(store.engine.cache) == 1

    store.refresh(source)

    assert len(store.engine.cache) == 0


def test_store_notifies_subscribers_and_survives_listener_errors(caplog) -> None:
    source = ListSource([Rule(id="1", pattern="uber", category="Transport")])
    store = RuleStore()
    received = []

    def broken(_rules):
        raise RuntimeError("boom")

    store.subscribe(broken)
    unsubscribe = store.subscribe(received.append)
    store.ensure(source)

    assert [len(batch) for batch in received] == [1]
    assert "listener failed" in caplog.text

    unsubscribe()
    store.refresh(source)
    assert len(received) == 1


def test_subscribe_after_load_receives_current_rules() -> None:
    store = RuleStore()
    store.ensure(ListSource([Rule(id="1", pattern="uber", category="Transport")]))
    received = []

    store.subscribe(received.append)

    assert received == [[Rule(id="1", pattern="uber", category="Transport")]]


def test_registry_keeps_one_store_per_user() -> None:
    registry = RuleStoreRegistry(max_size=2)

    assert registry.get("alice") is registry.get("alice")
    assert registry.get("alice") is not registry.get("bob")


def test_registry_drops_least_recently_used_store() -> None:
    registry = RuleStoreRegistry(max_size=2)
    alice = registry.get("alice")
    registry.get("bob")
    registry.get("alice")

    registry.get("carol")

    assert len(registry) == 2
    assert "bob" not in registry
    assert registry.get("alice") is alice
