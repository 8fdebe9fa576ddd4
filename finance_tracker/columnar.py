"""Parser for the columnar layout: one row per transaction, named columns."""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from .cells import cell_amount, cell_text, is_blank, parse_date, to_month_anchor
from .errors import ImportFormatError
from .models import EMPTY, EXPENSE, INCOME, CellValue, ParseIssue, ParseResult, ParsedRecord, Severity, SheetGrid

logger = logging.getLogger(__name__)

AMOUNT_COLUMNS = ("amount", "monto", "Monto")
DATE_COLUMNS = ("date", "fecha", "Fecha")
TYPE_COLUMNS = ("type", "tipo", "Tipo")
CATEGORY_COLUMNS = ("category", "categoria", "Categoria", "categoría", "Categoría")
CONCEPT_COLUMNS = ("concept", "concepto", "Concepto", "name", "nombre", "Nombre")
NOTE_COLUMNS = ("note", "notes", "nota", "Nota", "descripcion", "Descripcion", "description")
CURRENCY_COLUMNS = ("currency", "moneda", "Moneda")

INCOME_MARKERS = {"income", "ingreso"}


class ColumnarParser:
    """Convert a columnar sheet into :class:`ParsedRecord` candidates.

    Row 1 holds the column names.  Missing or unparseable amounts and dates
    make a row a warning; a missing category or concept makes it an error.
    """

    def __init__(self, default_currency: str = "ARS") -> None:
        self.default_currency = default_currency

    def parse(self, grid: SheetGrid) -> ParseResult:
        result = ParseResult()
        header = self._read_header(grid)
        self._require_columns(grid, header)

        for row in range(1, grid.row_count):
            values = {name: grid.cell(row, column) for name, column in header.items()}
            if all(is_blank(value) for value in grid.rows[row]):
                continue
            record = self._parse_row(grid.name, row, values, result)
            if record is not None:
                result.records.append(record)

        logger.debug(
            "Columnar sheet '%s': %d records, %d errors, %d warnings",
            grid.name,
            len(result.records),
            len(result.errors),
            len(result.warnings),
        )
        return result

    @staticmethod
    def _read_header(grid: SheetGrid) -> dict[str, int]:
        header: dict[str, int] = {}
        for column in range(grid.width(0)):
            name = cell_text(grid.cell(0, column))
            if name and name not in header:
                header[name] = column
        return header

    @staticmethod
    def _require_columns(grid: SheetGrid, header: dict[str, int]) -> None:
        has_amount = any(name in header for name in AMOUNT_COLUMNS)
        has_date = any(name in header for name in DATE_COLUMNS)
        if has_amount and has_date:
            return
        found = ", ".join(header) or "none"
        raise ImportFormatError(
            f"Sheet '{grid.name}' needs an amount column ({'/'.join(AMOUNT_COLUMNS)}) "
            f"and a date column ({'/'.join(DATE_COLUMNS)}); found columns: {found}"
        )

    def _parse_row(
        self,
        sheet: str,
        row: int,
        values: dict[str, CellValue],
        result: ParseResult,
    ) -> Optional[ParsedRecord]:
        amount_cell = _first_present(values, AMOUNT_COLUMNS)
        amount = cell_amount(amount_cell)
        if amount is None:
            result.add_issue(_issue("warning", "no numeric value in amount column", sheet, row, amount_cell))
            return None
        if amount == 0:
            result.add_issue(_issue("warning", "amount is zero", sheet, row, amount_cell))
            return None

        date_cell = _first_present(values, DATE_COLUMNS)
        parsed_date = parse_date(date_cell)
        if parsed_date is None:
            result.add_issue(_issue("warning", "date could not be parsed", sheet, row, date_cell))
            return None

        category = cell_text(_first_present(values, CATEGORY_COLUMNS)).lower()
        if not category:
            result.add_issue(_issue("error", "category is required", sheet, row, None))
            return None

        concept = cell_text(_first_present(values, CONCEPT_COLUMNS))
        if not concept:
            result.add_issue(_issue("error", "concept is required", sheet, row, None))
            return None

        kind = INCOME if cell_text(_first_present(values, TYPE_COLUMNS)).lower() in INCOME_MARKERS else EXPENSE
        note = cell_text(_first_present(values, NOTE_COLUMNS)) or None

        return ParsedRecord(
            kind=kind,
            category=category,
            concept=concept,
            amount=amount,
            date=to_month_anchor(parsed_date),
            currency=self._currency(_first_present(values, CURRENCY_COLUMNS)),
            note=note,
            sheet_name=sheet,
            row=row,
        )

    def _currency(self, cell: CellValue) -> str:
        code = cell_text(cell).upper()
        if len(code) == 3 and code.isalpha():
            return code
        if code:
            logger.debug("Ignoring invalid currency %r, using %s", code, self.default_currency)
        return self.default_currency


def _first_present(values: dict[str, CellValue], names: Sequence[str]) -> CellValue:
    for name in names:
        value = values.get(name)
        if value is not None and not is_blank(value):
            return value
    return EMPTY


def _issue(severity: Severity, reason: str, sheet: str, row: int, cell: Optional[CellValue]) -> ParseIssue:
    logger.debug("Skipping row %d of '%s': %s", row + 1, sheet, reason)
    return ParseIssue(
        severity=severity,
        reason=reason,
        sheet=sheet,
        row=row,
        value=cell_text(cell) if cell is not None else None,
    )
