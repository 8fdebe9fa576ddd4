from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from finance_tracker.cells import build_grid
from finance_tracker.errors import ImportFormatError
from finance_tracker.ledger import (
    LedgerContext,
    LedgerParser,
    LedgerState,
    RowOutcome,
    build_month_columns,
    classify_row,
    resolve_year,
    strip_parenthetical,
)

HEADER = ["Conceptos", "Enero", "Febrero", "Marzo"]


def ledger(rows, bold_rows=(), year=2024):
    """Build a ledger grid with a year cell, a bold header and ``rows`` below."""

    all_rows = [[year], HEADER] + list(rows)
    bold = {(1, 0)} | {(index + 2, 0) for index in bold_rows}
    return build_grid("Gastos", all_rows, bold)


def anchor(month: int, year: int = 2024) -> datetime:
    return datetime(year, month, 1, 12, tzinfo=timezone.utc)


def test_category_and_item_rows_produce_monthly_records() -> None:
    grid = ledger([["Supermercado", "", "", ""], ["Carrefour", "1500", "0", "2000"]], bold_rows={0})

    result = LedgerParser().parse(grid)

    assert result.errors == []
    assert result.warnings == []
    assert [(r.concept, r.amount, r.date) for r in result.records] == [
        ("Carrefour", Decimal("1500"), anchor(1)),
        ("Carrefour", Decimal("2000"), anchor(3)),
    ]
    assert {r.category for r in result.records} == {"supermercado"}
    assert {r.kind for r in result.records} == {"expense"}
    assert {r.currency for r in result.records} == {"ARS"}


def test_continuation_row_uses_previous_item_name() -> None:
    grid = ledger(
        [["Supermercado"], ["Carrefour", "1500"], [None, None, "700"]],
        bold_rows={0},
    )

    records = LedgerParser().parse(grid).records

    assert [(r.concept, r.date) for r in records] == [("Carrefour", anchor(1)), ("Carrefour", anchor(2))]


def test_non_bold_category_lookalike_with_values_is_an_item() -> None:
    grid = ledger([["Servicios"], ["Supermercado", "100"]], bold_rows={0})

    records = LedgerParser().parse(grid).records

    assert len(records) == 1
    assert records[0].category == "servicios"
    assert records[0].concept == "Supermercado"


def test_bold_row_with_values_is_an_item() -> None:
    grid = ledger([["Servicios"], ["Luz", "100"]], bold_rows={0, 1})

    records = LedgerParser().parse(grid).records

    assert [(r.category, r.concept) for r in records] == [("servicios", "Luz")]


@pytest.mark.parametrize("zero", ["0", 0, "0,00", "$ 0", "-"])
def test_zero_month_cells_never_produce_records(zero: object) -> None:
    grid = ledger([["Servicios"], ["Luz", zero, zero, zero]], bold_rows={0})

    result = LedgerParser().parse(grid)

    assert result.records == []
    assert result.warnings == []
    assert result.errors == []


def test_income_categories_are_detected_from_text() -> None:
    grid = ledger([["Ingresos fijos"], ["Sueldo", "90000"]], bold_rows={0})

    record = LedgerParser().parse(grid).records[0]

    assert record.kind == "income"
    assert record.category == "ingresos fijos"


def test_parenthetical_notes_are_discarded() -> None:
    grid = ledger([["Servicios"], ["Internet (Fibertel)", "5.000,50"]], bold_rows={0})

    record = LedgerParser().parse(grid).records[0]

    assert record.concept == "Internet"
    assert record.note is None
    assert record.amount == Decimal("5000.50")


def test_empty_category_is_legal() -> None:
    grid = ledger([["Vacia"], ["Servicios"], ["Luz", "10"]], bold_rows={0, 1})

    result = LedgerParser().parse(grid)

    assert [r.category for r in result.records] == ["servicios"]
    assert result.errors == []


def test_non_numeric_month_cell_is_a_warning() -> None:
    grid = ledger([["Servicios"], ["Luz", "pendiente", "300"]], bold_rows={0})

    result = LedgerParser().parse(grid)

    assert [r.date for r in result.records] == [anchor(2)]
    assert len(result.warnings) == 1
    assert result.warnings[0].value == "pendiente"
    assert result.warnings[0].row == 3


def test_items_before_any_category_are_skipped() -> None:
    grid = ledger([["Luz", "10"], ["Servicios"], ["Gas", "20"]], bold_rows={1})

    result = LedgerParser().parse(grid)

    assert [r.concept for r in result.records] == ["Gas"]
    assert len(result.warnings) == 1


def test_continuation_does_not_cross_category_rows() -> None:
    grid = ledger([["Servicios"], ["Luz", "10"], ["Impuestos"], [None, "20"]], bold_rows={0, 2})

    result = LedgerParser().parse(grid)

    assert [r.concept for r in result.records] == ["Luz"]
    assert result.errors[0].reason.startswith("concept is required")


def test_year_hint_overrides_sheet_content() -> None:
    grid = ledger([["Servicios"], ["Luz", "10"]], bold_rows={0}, year=2020)

    record = LedgerParser().parse(grid, year_hint=2023).records[0]

    assert record.date == anchor(1, 2023)


def test_year_read_from_cell_above_header() -> None:
    grid = ledger([["Servicios"], ["Luz", "10"]], bold_rows={0}, year=2021)

    assert LedgerParser().parse(grid).records[0].date == anchor(1, 2021)


def test_year_defaults_to_current_year_with_warning() -> None:
    grid = build_grid("Gastos", [HEADER, ["Servicios"], ["Luz", "10"]], {(0, 0), (1, 0)})

    year, issue = resolve_year(grid, 0)

    assert year == datetime.now(timezone.utc).year
    assert issue is not None and issue.severity == "warning"


@pytest.mark.parametrize("value", [1999, 2101, "dos mil", 2024.5])
def test_out_of_range_year_cells_are_ignored(value: object) -> None:
    grid = build_grid("Gastos", [[value], HEADER], {(1, 0)})

    year, issue = resolve_year(grid, 1)

    assert year == datetime.now(timezone.utc).year
    assert issue is not None


def test_missing_header_is_fatal() -> None:
    grid = build_grid("Gastos", [["Conceptos", "Total"], ["Luz", "10"]])

    with pytest.raises(ImportFormatError):
        LedgerParser().parse(grid)


def test_month_columns_keep_leftmost_duplicate() -> None:
    grid = build_grid("Gastos", [["Conceptos", "Setiembre", "Septiembre", "Octubre", "Enero"]])

    assert build_month_columns(grid, 0) == {1: 4, 9: 1, 10: 3}


def test_strip_parenthetical() -> None:
    assert strip_parenthetical("Coto (efectivo) centro") == "Coto centro"
    assert strip_parenthetical("(solo nota)") == ""


class TestClassifyRow:
    context = LedgerContext(sheet="Gastos", year=2024, month_columns={1: 1, 2: 2, 3: 3})

    def test_bold_empty_row_sets_category(self) -> None:
        grid = build_grid("Gastos", [["Hogar", None, "0", None]], {(0, 0)})

        outcome = classify_row(grid, 0, LedgerState(current_category="Autos", last_item="Nafta"), self.context)

        assert outcome.records == ()
        assert outcome.state == LedgerState(current_category="Hogar", last_item=None)

    def test_item_row_updates_last_item(self) -> None:
        grid = build_grid("Gastos", [["Alquiler", "1000"]])

        outcome = classify_row(grid, 0, LedgerState(current_category="Hogar"), self.context)

        assert outcome.state == LedgerState(current_category="Hogar", last_item="Alquiler")
        assert [record.amount for record in outcome.records] == [Decimal("1000")]

    def test_blank_row_keeps_state(self) -> None:
        grid = build_grid("Gastos", [[None, None, "0"]])
        state = LedgerState(current_category="Hogar", last_item="Alquiler")

        outcome = classify_row(grid, 0, state, self.context)

        assert outcome == RowOutcome(state)
