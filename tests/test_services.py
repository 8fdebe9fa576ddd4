from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from finance_tracker.errors import ImportFormatError, WorkbookReadError
from finance_tracker.exchange_rates import ExchangeRateService
from finance_tracker.models import ExchangeRate, ParseIssue
from finance_tracker.services import FinanceService

COLUMNAR = [
    ["fecha", "monto", "categoria", "concepto", "tipo"],
    ["2024-01-10", "1.200,00", "Hogar", "Alquiler", "expense"],
    ["2024-01-15", "5000", "Sueldo", "Empresa", "income"],
    ["2024-02-01", "abc", "Hogar", "Luz", "expense"],
]


@pytest.fixture()
def service(config, repository) -> FinanceService:
    return FinanceService(config, repository)


def test_preview_does_not_persist(service, repository, make_workbook) -> None:
    result = service.parse_upload(make_workbook({"Datos": COLUMNAR}), "datos.xlsx")

    assert len(result.records) == 2
    assert len(result.warnings) == 1
    assert repository.list_categories() == []


def test_preview_then_confirm(service, make_workbook) -> None:
    preview = service.parse_upload(make_workbook({"Datos": COLUMNAR}), "datos.xlsx")
    payload = preview.to_payload()

    result = service.confirm_import(payload["records"], preview.errors, preview.warnings)

    assert result.saved_count == 2
    assert result.message == "2 records imported successfully (1 warnings)"
    assert [row["concept"] for row in service.list_transactions("income")] == ["Empresa"]
    assert [c.name for c in service.list_categories("expense")] == ["hogar"]


def test_confirm_reports_invalid_payloads_by_position(service, repository, monkeypatch) -> None:
    good = {"kind": "expense", "category": "hogar", "concept": "Alquiler", "amount": "100", "date": "2024-01-01"}
    records = [
        {**good, "concept": ""},
        good,
        {**good, "concept": "Falla", "category": "otra"},
    ]
    original = repository.create_transaction

    def failing(**kwargs):
        if kwargs["concept"] == "Falla":
            raise ValueError("rejected")
        return original(**kwargs)

    monkeypatch.setattr(repository, "create_transaction", failing)
    carried = ParseIssue(severity="error", reason="category is required", sheet="Datos", row=3)

    result = service.confirm_import(records, [carried])

    assert result.saved_count == 1
    assert result.errors[0] == carried
    assert [issue.record_index for issue in result.errors[1:]] == [2, 0]
    assert result.errors[2].reason == "ValueError: concept is required"
    assert result.message == "1 records imported successfully (3 errors)"


def test_import_upload_in_one_step(service, make_workbook) -> None:
    result = service.import_upload(make_workbook({"Datos": COLUMNAR}), "datos.xlsx")

    assert result.saved_count == 2
    summary = service.summary()
    assert summary["totals"] == {"income": 5000.0, "expenses": 1200.0, "balance": 3800.0}


def test_structural_failures_propagate(service, make_workbook) -> None:
    with pytest.raises(ImportFormatError):
        service.parse_upload(make_workbook({"Datos": [["descripcion"], ["algo"]]}), "datos.xlsx")
    with pytest.raises(WorkbookReadError):
        service.import_upload(b"not a workbook", "datos.xlsx")


def test_persons_and_deletion(service, make_workbook) -> None:
    person = service.create_person("Ana", color="#00ff00")
    assert service.list_persons() == [person]

    saved = service.import_upload(make_workbook({"Datos": COLUMNAR}), "datos.xlsx").saved
    expense = next(ref for ref in saved if ref.kind == "expense")
    service.delete_transaction("expense", expense.id)

    assert service.list_transactions("expense") == []
    with pytest.raises(LookupError):
        service.delete_transaction("expense", expense.id)


class FixedRates(ExchangeRateService):
    def get_rates(self) -> list[ExchangeRate]:
        return [ExchangeRate(name="Dólar Blue", code="USD_BLUE", buy=980.0, sell=1000.0, last_update="")]


@pytest.fixture()
def priced_service(config, repository) -> FinanceService:
    return FinanceService(config, repository, FixedRates(config))


def test_manual_expense_is_stored_at_its_month_anchor(service, repository) -> None:
    hogar = repository.find_or_create_category("hogar", "expense")
    ana = service.create_person("Ana")
    late = datetime(2024, 3, 31, 23, 30, tzinfo=timezone(timedelta(hours=-3)))

    created = service.create_manual_transaction(
        "expense", hogar.id, " Alquiler ", Decimal("1200"), late, person_id=ana.id
    )

    assert created["concept"] == "Alquiler"
    assert created["date"] == "2024-03-01T12:00:00+00:00"
    assert (created["currency"], created["person"], created["category"]) == ("ARS", "Ana", "hogar")
    assert service.get_transaction("expense", created["id"]) == created


def test_manual_transaction_validation(service, repository) -> None:
    sueldo = repository.find_or_create_category("sueldo", "income")

    with pytest.raises(ValueError):
        service.create_manual_transaction("expense", sueldo.id, "Sueldo", Decimal("1"), date(2024, 1, 5))
    with pytest.raises(LookupError):
        service.create_manual_transaction("income", 999, "Sueldo", Decimal("1"), date(2024, 1, 5))
    with pytest.raises(LookupError):
        service.create_manual_transaction("income", sueldo.id, "Sueldo", Decimal("1"), date(2024, 1, 5), person_id=7)
    assert service.list_transactions("income") == []


def test_update_transaction(service, repository) -> None:
    hogar = repository.find_or_create_category("hogar", "expense")
    servicios = repository.find_or_create_category("servicios", "expense")
    sueldo = repository.find_or_create_category("sueldo", "income")
    created = service.create_manual_transaction("expense", hogar.id, "Luz", Decimal("100"), date(2024, 1, 5))

    updated = service.update_transaction(
        "expense",
        created["id"],
        {"category_id": servicios.id, "amount": Decimal("150.25"), "date": date(2024, 2, 9), "currency": "usd"},
    )

    assert (updated["category"], updated["amount"], updated["currency"]) == ("servicios", "150.25", "USD")
    assert updated["date"] == "2024-02-01T12:00:00+00:00"
    with pytest.raises(ValueError):
        service.update_transaction("expense", created["id"], {"category_id": sueldo.id})
    with pytest.raises(ValueError):
        service.update_transaction("expense", created["id"], {"concept": "  "})
    with pytest.raises(LookupError):
        service.update_transaction("expense", 999, {"concept": "Gas"})
    assert service.get_transaction("expense", created["id"])["category"] == "servicios"


def test_person_update_and_delete(service) -> None:
    ana = service.create_person("Ana")

    assert service.update_person(ana.id, "Ana María").name == "Ana María"
    service.delete_person(ana.id)

    assert service.list_persons() == []
    with pytest.raises(LookupError):
        service.delete_person(ana.id)


def test_operations_move_the_quantity(service) -> None:
    investment = service.create_investment("acciones", "GGAL", Decimal("5000"), Decimal("5200"), quantity=Decimal("10"))

    service.create_operation(investment.id, "COMPRA", Decimal("5"), price=Decimal("500"))
    sell = service.create_operation(investment.id, "VENTA", Decimal("12"))
    assert service.get_investment(investment.id).current_quantity == Decimal("3")

    with pytest.raises(ValueError):
        service.create_operation(investment.id, "VENTA", Decimal("4"))
    assert len(service.list_operations(investment.id)) == 2

    service.create_operation(investment.id, "AJUSTE", Decimal("7"))
    assert service.get_investment(investment.id).current_quantity == Decimal("7")

    service.delete_operation(sell.id)
    assert service.get_investment(investment.id).current_quantity == Decimal("7")
    assert service.get_investment(investment.id).original_quantity == Decimal("10")


def test_operation_edit_replays_and_rolls_back(service) -> None:
    investment = service.create_investment("cripto", "ETH", Decimal("100"), Decimal("100"), quantity=Decimal("2"))
    buy = service.create_operation(investment.id, "COMPRA", Decimal("3"))
    sell = service.create_operation(investment.id, "VENTA", Decimal("4"))

    service.update_operation(sell.id, {"amount": Decimal("2.5")})
    assert service.get_investment(investment.id).current_quantity == Decimal("2.5")

    with pytest.raises(ValueError):
        service.update_operation(sell.id, {"amount": Decimal("6")})
    assert service.get_operation(sell.id).amount == Decimal("2.5")
    assert service.get_investment(investment.id).current_quantity == Decimal("2.5")

    with pytest.raises(ValueError):
        service.delete_operation(buy.id)
    assert len(service.list_operations(investment.id)) == 2


def test_investment_update_and_delete(service) -> None:
    investment = service.create_investment(
        "fci", "Money market", Decimal("1000"), Decimal("1000"), currency="usd", date=date(2024, 5, 20)
    )
    assert investment.currency == "USD"
    assert investment.date == datetime(2024, 5, 20, 12, tzinfo=timezone.utc)

    updated = service.update_investment(investment.id, {"value": Decimal("1100"), "name": " MM "})
    assert (updated.value, updated.name) == (Decimal("1100"), "MM")
    with pytest.raises(ValueError):
        service.update_investment(investment.id, {"original_quantity": Decimal("3")})

    service.delete_investment(investment.id)
    assert service.list_investments() == []
    with pytest.raises(LookupError):
        service.create_operation(investment.id, "COMPRA", Decimal("1"))


def test_investment_summary_converts_currencies(priced_service) -> None:
    priced_service.create_investment("plazo fijo", "Banco", Decimal("1000"), Decimal("1500"), currency="ARS")
    priced_service.create_investment("acciones", "SPY", Decimal("10"), Decimal("12"), currency="USD")

    assert priced_service.investment_summary() == {
        "currency": "ARS",
        "count": 2,
        "total_invested": 11000.0,
        "total_value": 13500.0,
        "profit": 2500.0,
    }
    in_dollars = priced_service.investment_summary("usd")
    assert (in_dollars["total_invested"], in_dollars["total_value"], in_dollars["profit"]) == (11.02, 13.53, 2.51)
