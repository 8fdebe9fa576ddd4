"""Parser for ledger sheets: concepts down the first column, months across.

A ledger sheet looks roughly like this::

    2024
    Conceptos       Enero   Febrero   Marzo  ...
    Supermercado                                  <- bold: category row
    Carrefour       1500    0         2000        <- item row
    Coto (efectivo) 300                           <- item row, note discarded
                            450                   <- continuation of "Coto"
    Ingresos                                      <- bold: category row
    Sueldo          90000   90000     95000

Rows are processed as a fold: :func:`classify_row` receives the running
:class:`LedgerState` and returns the next state together with the records and
issues the row produced.  Category rows never produce records themselves.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .cells import cell_amount, cell_text, is_blank, month_anchor
from .errors import ImportFormatError
from .layout import locate_ledger_header, month_number
from .models import (
    EXPENSE,
    INCOME,
    CellValue,
    NumberCell,
    ParseIssue,
    ParseResult,
    ParsedRecord,
    Severity,
    SheetGrid,
    TextCell,
)

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100
INCOME_MARKER = "ingreso"

_PARENTHETICAL = re.compile(r"\([^)]*\)")


@dataclass(frozen=True, slots=True)
class LedgerState:
    """Accumulator carried from one row to the next."""

    current_category: Optional[str] = None
    last_item: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LedgerContext:
    """Per-sheet facts every row needs: where the months are and which year."""

    sheet: str
    year: int
    month_columns: dict[int, int]
    currency: str = "ARS"


@dataclass(frozen=True, slots=True)
class RowOutcome:
    state: LedgerState
    records: tuple[ParsedRecord, ...] = ()
    issues: tuple[ParseIssue, ...] = ()


class LedgerParser:
    """Convert a ledger sheet into :class:`ParsedRecord` candidates."""

    def __init__(self, default_currency: str = "ARS") -> None:
        self.default_currency = default_currency

    def parse(self, grid: SheetGrid, year_hint: Optional[int] = None) -> ParseResult:
        header = locate_ledger_header(grid)
        if header is None:
            raise ImportFormatError(f"Sheet '{grid.name}' has no 'Conceptos' header row with month columns")

        result = ParseResult()
        month_columns = build_month_columns(grid, header.row)
        if not month_columns:
            raise ImportFormatError(f"Sheet '{grid.name}' header row has no month columns")

        year, year_issue = resolve_year(grid, header.row, year_hint)
        if year_issue is not None:
            result.add_issue(year_issue)

        context = LedgerContext(
            sheet=grid.name,
            year=year,
            month_columns=month_columns,
            currency=self.default_currency,
        )
        logger.debug(
            "Ledger sheet '%s': header at row %d, year %d, months %s",
            grid.name,
            header.row + 1,
            year,
            sorted(month_columns),
        )

        state = LedgerState()
        for row in range(header.row + 1, grid.row_count):
            outcome = classify_row(grid, row, state, context)
            state = outcome.state
            result.records.extend(outcome.records)
            for issue in outcome.issues:
                result.add_issue(issue)
        return result


def build_month_columns(grid: SheetGrid, header_row: int) -> dict[int, int]:
    """Map month number to column index from the header row.

    When a month appears twice the left-most column wins.
    """

    month_columns: dict[int, int] = {}
    for column in range(1, grid.width(header_row)):
        month = month_number(cell_text(grid.cell(header_row, column)))
        if month is not None and month not in month_columns:
            month_columns[month] = column
    return dict(sorted(month_columns.items()))


def resolve_year(
    grid: SheetGrid,
    header_row: int,
    year_hint: Optional[int] = None,
) -> tuple[int, Optional[ParseIssue]]:
    """Pick the sheet year: explicit hint, cell above the header, or today."""

    if year_hint is not None:
        return year_hint, None
    if header_row > 0:
        year = _year_from_cell(grid.cell(header_row - 1, 0))
        if year is not None:
            return year, None
    current = datetime.now(timezone.utc).year
    issue = ParseIssue(
        severity="warning",
        reason=f"no year found above the header, defaulting to {current}",
        sheet=grid.name,
        row=header_row,
    )
    return current, issue


def _year_from_cell(cell: CellValue) -> Optional[int]:
    if isinstance(cell, NumberCell):
        value = cell.value
    elif isinstance(cell, TextCell) and cell.text.strip().isdigit():
        value = Decimal(cell.text.strip())
    else:
        return None
    if value != value.to_integral_value():
        return None
    if MIN_YEAR <= value <= MAX_YEAR:
        return int(value)
    return None


def strip_parenthetical(name: str) -> str:
    """Remove ``(...)`` annotations from an item name and tidy whitespace."""

    return " ".join(_PARENTHETICAL.sub(" ", name).split())


def classify_row(grid: SheetGrid, row: int, state: LedgerState, context: LedgerContext) -> RowOutcome:
    """Classify one row below the header and emit its records.

    * A row without a first cell and without numbers is skipped.
    * A bold first cell with every month cell empty or zero is a category row.
    * Anything else with a first cell, or following an item, is an item row;
      an empty first cell continues the previous item.
    """

    first = cell_text(grid.cell(row, 0))
    values: list[tuple[int, Decimal]] = []
    unparseable: list[tuple[int, CellValue]] = []
    for month, column in context.month_columns.items():
        cell = grid.cell(row, column)
        if is_blank(cell):
            continue
        amount = cell_amount(cell)
        if amount is None:
            unparseable.append((month, cell))
        elif amount != 0:
            values.append((month, amount))

    if not first and not values:
        return RowOutcome(state)

    if first and grid.is_bold(row, 0) and not values and not unparseable:
        return RowOutcome(LedgerState(current_category=first, last_item=None))

    if first:
        item = first
        next_state = replace(state, last_item=first)
    elif state.last_item:
        item = state.last_item
        next_state = state
    else:
        issue = _row_issue("error", "concept is required for a row with amounts", context, row, None)
        return RowOutcome(state, issues=(issue,))

    if state.current_category is None:
        if not values:
            return RowOutcome(next_state)
        issue = _row_issue("warning", "item appears before any category row", context, row, item)
        return RowOutcome(next_state, issues=(issue,))

    issues = [
        _row_issue("warning", f"value for month {month} is not numeric", context, row, cell_text(cell))
        for month, cell in unparseable
    ]

    concept = strip_parenthetical(item)
    if not concept:
        if values:
            issues.append(_row_issue("error", "concept is required", context, row, item))
        return RowOutcome(next_state, issues=tuple(issues))

    category = state.current_category.strip().lower()
    kind = INCOME if INCOME_MARKER in category else EXPENSE
    records = tuple(
        ParsedRecord(
            kind=kind,
            category=category,
            concept=concept,
            amount=amount,
            date=month_anchor(context.year, month),
            currency=context.currency,
            sheet_name=context.sheet,
            row=row,
        )
        for month, amount in values
    )
    return RowOutcome(next_state, records=records, issues=tuple(issues))


def _row_issue(severity: Severity, reason: str, context: LedgerContext, row: int, value: Optional[str]) -> ParseIssue:
    logger.debug("Row %d of '%s': %s", row + 1, context.sheet, reason)
    return ParseIssue(severity=severity, reason=reason, sheet=context.sheet, row=row, value=value)
