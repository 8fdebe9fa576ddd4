"""Excel importers for uploaded finance workbooks.

The importer performs three tasks:

1. Read every worksheet of the upload into a :class:`SheetGrid`, resolving
   cell values and remembering which cells are bold.
2. Decide per sheet whether it follows the ledger or the columnar layout.
3. Run the matching parser and merge the per-sheet results in sheet order.

Nothing here touches the database; persistence is the reconciler's job.
"""
from __future__ import annotations

import io
import logging
import re
import zipfile
from typing import Iterator, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from .cells import build_grid
from .columnar import ColumnarParser
from .config import AppConfig
from .errors import (
    ImportFailedError,
    ImportFormatError,
    SheetTooLargeError,
    UploadTooLargeError,
    WorkbookReadError,
)
from .layout import SheetLayout, detect_layout
from .ledger import LedgerParser
from .models import ParseIssue, ParseResult, SheetGrid

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xlsx", ".xlsm")
_YEAR_IN_NAME = re.compile(r"(20\d\d)")

__all__ = [
    "ImportFailedError",
    "ImportFormatError",
    "SheetTooLargeError",
    "UploadTooLargeError",
    "WorkbookImporter",
    "WorkbookReadError",
    "read_workbook",
    "worksheet_to_grid",
    "year_hint_from_name",
]


class WorkbookImporter:
    """Parse uploaded workbooks into candidate records."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self.columnar_parser = ColumnarParser(config.default_currency)
        self.ledger_parser = LedgerParser(config.default_currency)

    def parse(self, data: bytes, filename: Optional[str] = None) -> ParseResult:
        """Parse every sheet of ``data`` and return the merged result.

        Raises:
            ImportFailedError: for structural failures. No partial result is
                returned in that case.
        """

        if len(data) > self._config.max_upload_bytes:
            raise UploadTooLargeError(
                f"Upload is {len(data)} bytes; the limit is {self._config.max_upload_bytes} bytes"
            )
        if filename is not None and not filename.lower().endswith(ALLOWED_EXTENSIONS):
            raise WorkbookReadError("Only Excel files are allowed")

        logger.info("Parsing upload %s (%d bytes)", filename or "<unnamed>", len(data))
        result = ParseResult()
        for grid in read_workbook(data):
            result.extend(self.parse_grid(grid))
        logger.info(
            "Parsed upload %s: %d records, %d errors, %d warnings",
            filename or "<unnamed>",
            len(result.records),
            len(result.errors),
            len(result.warnings),
        )
        return result

    def parse_grid(self, grid: SheetGrid, year_hint: Optional[int] = None) -> ParseResult:
        """Detect the layout of a single sheet and parse it."""

        if grid.row_count > self._config.max_sheet_rows:
            raise SheetTooLargeError(
                f"Sheet '{grid.name}' has {grid.row_count} rows; the limit is {self._config.max_sheet_rows}"
            )
        if grid.is_empty():
            result = ParseResult()
            result.add_issue(ParseIssue(severity="warning", reason="sheet is empty, skipped", sheet=grid.name))
            return result

        layout = detect_layout(grid)
        logger.info("Sheet '%s' detected as %s layout", grid.name, layout.value)
        if layout is SheetLayout.LEDGER:
            hint = year_hint if year_hint is not None else year_hint_from_name(grid.name)
            return self.ledger_parser.parse(grid, hint)
        return self.columnar_parser.parse(grid)


def year_hint_from_name(name: str) -> Optional[int]:
    """Return the first ``20xx`` year embedded in a sheet name, if any."""

    match = _YEAR_IN_NAME.search(name or "")
    return int(match.group(1)) if match else None


def read_workbook(data: bytes) -> list[SheetGrid]:
    """Load every worksheet of an ``.xlsx`` payload into grids."""

    try:
        workbook = load_workbook(io.BytesIO(data), data_only=True, rich_text=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise WorkbookReadError(f"Unable to read workbook: {exc}") from exc

    try:
        grids = [worksheet_to_grid(sheet) for sheet in workbook.worksheets]
    finally:
        workbook.close()
    if not grids:
        raise WorkbookReadError("Workbook has no sheets")
    return grids


def worksheet_to_grid(sheet: Worksheet) -> SheetGrid:
    """Convert an openpyxl worksheet into a :class:`SheetGrid`.

    Trailing rows without any value are dropped so formatting-only rows do
    not count against the row limit.
    """

    bold: set[tuple[int, int]] = set()
    rows = list(_iter_sheet_rows(sheet, bold))

    while rows and all(value is None for value in rows[-1]):
        rows.pop()
    last_row = len(rows)
    return build_grid(sheet.title, rows, {(r, c) for r, c in bold if r < last_row})


def _iter_sheet_rows(sheet: Worksheet, bold: set[tuple[int, int]]) -> Iterator[list[object]]:
    for row_index, row in enumerate(sheet.iter_rows()):
        values: list[object] = []
        for column_index, cell in enumerate(row):
            values.append(cell.value)
            font = getattr(cell, "font", None)
            if font is not None and font.b:
                bold.add((row_index, column_index))
        yield values
