from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest


def month(m: int) -> datetime:
    return datetime(2024, m, 1, 12, tzinfo=timezone.utc)


def add(repository, kind="expense", category="hogar", concept="Alquiler", amount="100", m=1, person=None):
    ref = repository.find_or_create_category(category, kind)
    return repository.create_transaction(
        kind=kind,
        category=ref,
        person=person,
        concept=concept,
        amount=Decimal(amount),
        date=month(m),
        currency="ARS",
    )


def test_schema_initialisation_is_idempotent(repository) -> None:
    repository.initialise_schema()
    assert repository.list_categories() == []


def test_categories_match_case_insensitively(repository) -> None:
    created = repository.find_or_create_category("  Supermercado ", "expense")

    assert created.name == "supermercado"
    assert repository.find_or_create_category("SUPERMERCADO", "expense") == created
    assert repository.find_category("supermercado", "income") is None


def test_blank_category_name_is_rejected(repository) -> None:
    with pytest.raises(ValueError):
        repository.find_or_create_category("   ", "expense")


def test_person_names_are_unique_ignoring_case(repository) -> None:
    repository.create_person("Ana", icon="👩", color="#ff0000")

    assert repository.find_person("ANA").color == "#ff0000"
    with pytest.raises(sqlite3.IntegrityError):
        repository.create_person("ana")


def test_transaction_kind_must_match_category(repository) -> None:
    category = repository.find_or_create_category("sueldo", "income")

    with pytest.raises(ValueError):
        repository.create_transaction(
            kind="expense",
            category=category,
            person=None,
            concept="x",
            amount=Decimal("1"),
            date=month(1),
            currency="ARS",
        )


def test_list_transactions_filters_and_orders(repository) -> None:
    ana = repository.create_person("Ana")
    add(repository, concept="Enero", m=1)
    add(repository, concept="Marzo", m=3, person=ana)
    add(repository, concept="Luz", category="servicios", m=2)
    add(repository, kind="income", category="sueldo", concept="Sueldo")

    everything = repository.list_transactions("expense")
    assert [row["concept"] for row in everything] == ["Marzo", "Luz", "Enero"]

    servicios = repository.find_category("servicios", "expense")
    assert [row["concept"] for row in repository.list_transactions("expense", category_id=servicios.id)] == ["Luz"]
    by_person = repository.list_transactions("expense", person_id=ana.id)
    assert [(row["concept"], row["person"]) for row in by_person] == [("Marzo", "Ana")]
    ranged = repository.list_transactions("expense", date_from=month(2), date_to=month(2))
    assert [row["concept"] for row in ranged] == ["Luz"]
    assert len(repository.list_transactions("expense", limit=1)) == 1
    assert [row["concept"] for row in repository.list_transactions("income")] == ["Sueldo"]


def test_delete_transaction(repository) -> None:
    saved = add(repository)

    repository.delete_transaction("expense", saved.id)

    assert repository.list_transactions("expense") == []
    with pytest.raises(LookupError):
        repository.delete_transaction("expense", saved.id)


def test_savepoint_rolls_back_on_error(repository) -> None:
    with pytest.raises(RuntimeError):
        with repository.savepoint():
            repository.find_or_create_category("temporal", "expense")
            raise RuntimeError("boom")

    assert repository.find_category("temporal", "expense") is None

    with repository.savepoint():
        repository.find_or_create_category("fija", "expense")
    assert repository.find_category("fija", "expense") is not None


def test_analytics_rows_include_both_kinds(repository) -> None:
    add(repository, amount="250.50")
    add(repository, kind="income", category="sueldo", amount="1000")

    rows = repository.analytics_rows()

    assert sorted((row["kind"], row["category"], row["amount"]) for row in rows) == [
        ("expense", "hogar", "250.50"),
        ("income", "sueldo", "1000"),
    ]


def test_savepoint_holds_other_threads_until_released(repository) -> None:
    entered = threading.Event()
    release = threading.Event()
    person_saved = threading.Event()

    def rolled_back_unit() -> None:
        with pytest.raises(RuntimeError):
            with repository.savepoint():
                repository.find_or_create_category("temporal", "expense")
                entered.set()
                release.wait(5)
                raise RuntimeError("boom")

    def other_request() -> None:
        entered.wait(5)
        repository.create_person("Ana")
        person_saved.set()

    threads = [threading.Thread(target=rolled_back_unit), threading.Thread(target=other_request)]
    for thread in threads:
        thread.start()
    assert entered.wait(5)
    assert not person_saved.wait(0.2)
    release.set()
    for thread in threads:
        thread.join()

    assert person_saved.is_set()
    assert repository.find_category("temporal", "expense") is None
    assert [person.name for person in repository.list_persons()] == ["Ana"]


@pytest.mark.parametrize(
    ("stored", "lookup"),
    [("José", "JOSÉ"), ("Ñandú", "ñandú"), ("Straße", "STRASSE"), ("Ana  María", " ana maría ")],
)
def test_person_lookup_folds_unicode_case_and_spaces(repository, stored, lookup) -> None:
    person = repository.create_person(stored)

    assert repository.find_person(lookup) == person
    with pytest.raises(sqlite3.IntegrityError):
        repository.create_person(lookup)


def test_update_and_delete_person(repository) -> None:
    ana = repository.create_person("Ana")
    juan = repository.create_person("Juan")
    saved = add(repository, person=ana)

    renamed = repository.update_person(ana.id, "Ana Laura", color="#00ff00")
    assert repository.get_person(ana.id) == renamed
    assert repository.find_person("ana laura").color == "#00ff00"
    with pytest.raises(sqlite3.IntegrityError):
        repository.update_person(juan.id, "ANA LAURA")

    repository.delete_person(ana.id)
    assert repository.get_transaction("expense", saved.id)["person_id"] is None
    with pytest.raises(LookupError):
        repository.delete_person(ana.id)
    with pytest.raises(LookupError):
        repository.update_person(ana.id, "Otra")


def test_get_and_update_transaction(repository) -> None:
    saved = add(repository, concept="Alquiler", amount="100")

    repository.update_transaction("expense", saved.id, {"concept": "Expensas", "amount": "120.50"})

    row = repository.get_transaction("expense", saved.id)
    assert (row["concept"], row["amount"], row["category"]) == ("Expensas", "120.50", "hogar")
    with pytest.raises(ValueError):
        repository.update_transaction("expense", saved.id, {"created_at": "2020-01-01"})
    with pytest.raises(LookupError):
        repository.update_transaction("expense", 999, {"concept": "x"})
    with pytest.raises(LookupError):
        repository.get_transaction("income", saved.id)


def test_investments_and_operations(repository) -> None:
    created = repository.create_investment(
        type="cripto",
        name="Bitcoin",
        amount=Decimal("1000"),
        value=Decimal("1250.5"),
        currency="USD",
        date=month(2),
        quantity=Decimal("0.5"),
    )
    assert created.original_quantity == created.current_quantity == Decimal("0.5")
    assert repository.list_investments() == [created]

    updated = repository.update_investment(created.id, {"value": "1300"})
    assert updated.value == Decimal("1300")

    first = repository.create_operation(created.id, "COMPRA", Decimal("0.25"), price=Decimal("60000"))
    second = repository.create_operation(created.id, "VENTA", Decimal("0.1"), note="parcial")
    assert repository.get_operation(first.id).price == Decimal("60000")
    assert [op.id for op in repository.list_operations(created.id)] == [second.id, first.id]

    repository.set_investment_quantity(created.id, Decimal("0.65"))
    assert repository.get_investment(created.id).current_quantity == Decimal("0.65")

    repository.delete_investment(created.id)
    assert repository.list_operations() == []
    with pytest.raises(LookupError):
        repository.get_investment(created.id)


def test_unknown_operation_type_is_rejected(repository) -> None:
    investment = repository.create_investment(
        type="fci", name="Money market", amount=Decimal("10"), value=Decimal("10"), currency="ARS", date=month(1)
    )

    with pytest.raises(sqlite3.IntegrityError):
        repository.create_operation(investment.id, "REGALO", Decimal("1"))
