from ledger_dash.mapping import enforce_unique_text_columns, find_field, guess_mapping
from ledger_dash.models import ColumnMap


def test_guess_french_bank_export() -> None:
    fields = [
        "Date de comptabilisation",
        "Date opération",
        "Date de valeur",
        "Libellé simplifié",
        "Libellé opération",
        "Débit",
        "Crédit",
        "Type opération",
    ]

    mapping = guess_mapping(fields)

    assert mapping.date == "Date opération"
    assert mapping.amount == ""
    assert mapping.description == "Libellé opération"
    assert mapping.counterparty == "Libellé simplifié"
    assert mapping.type == "Type opération"


def test_guess_english_export() -> None:
    mapping = guess_mapping(["Date", "Description", "Amount", "Payee"])

    assert mapping == ColumnMap(date="Date", amount="Amount", description="Description", counterparty="Payee")


def test_date_skips_value_and_accounting_dates_when_possible() -> None:
    assert guess_mapping(["Date de valeur", "Date comptable", "Transaction date"]).date == "Transaction date"


def test_date_falls_back_to_any_date_header() -> None:
    assert guess_mapping(["Date de valeur", "Date comptable"]).date == "Date de valeur"


def test_matching_is_case_insensitive() -> None:
    mapping = guess_mapping(["DATE", "MONTANT EUR", "LIBELLE"])

    assert mapping.date == "DATE"
    assert mapping.amount == "MONTANT EUR"
    assert mapping.description == "LIBELLE"


def test_first_header_in_file_order_wins_within_a_tier() -> None:
    assert guess_mapping(["Prix", "Montant"]).amount == "Prix"


def test_description_tiers_are_ordered() -> None:
    fields = ["Libellé", "Description", "Informations complémentaires"]
    assert guess_mapping(fields).description == "Description"


def test_unmatched_fields_stay_empty() -> None:
    mapping = guess_mapping(["foo", "bar"])

    assert mapping == ColumnMap()
    assert mapping.missing_required() == ["date"]


def test_guess_can_return_the_same_column_twice() -> None:
    mapping = guess_mapping(["Date", "Amount", "Merchant description"])

    assert mapping.description == "Merchant description"
    assert mapping.counterparty == "Merchant description"


def test_conflict_clears_counterparty_by_default() -> None:
    mapping = ColumnMap(date="Date", description="Libellé", counterparty="Libellé")

    resolved = enforce_unique_text_columns(mapping)

    assert resolved.description == "Libellé"
    assert resolved.counterparty == ""
    assert mapping.counterparty == "Libellé"


def test_conflict_keeps_the_field_the_user_just_changed() -> None:
    mapping = ColumnMap(description="Libellé", counterparty="Libellé")

    resolved = enforce_unique_text_columns(mapping, changed="counterparty")

    assert resolved.description == ""
    assert resolved.counterparty == "Libellé"


def test_distinct_text_columns_are_untouched() -> None:
    mapping = ColumnMap(description="Libellé", counterparty="Tiers")
    assert enforce_unique_text_columns(mapping) == mapping


def test_find_field_returns_first_match_or_empty() -> None:
    fields = ["Date", "Débit euros", "Crédit euros"]

    assert find_field(fields, ["débit", "debit"]) == "Débit euros"
    assert find_field(fields, ["solde"]) == ""


def test_column_map_round_trips_through_plain_dict() -> None:
    mapping = ColumnMap.from_mapping({"date": "Date", "amount": None, "unknown": "x"})

    assert mapping.as_dict()["date"] == "Date"
    assert mapping.as_dict()["amount"] == ""
    assert "unknown" not in mapping.as_dict()
