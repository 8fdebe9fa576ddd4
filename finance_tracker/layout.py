"""Layout detection for uploaded worksheets.

Two layouts are understood: the ledger layout ("Conceptos" header followed by
month columns, bold category rows) and the columnar layout (one row per
transaction).  :func:`locate_ledger_header` is the single predicate used both
to classify a sheet and, later, by the ledger parser to re-derive its header.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .cells import cell_text, normalize_text
from .models import SheetGrid

HEADER_SCAN_ROWS = 100
HEADER_SCAN_COLUMNS = 20
MIN_HEADER_MONTHS = 3
HEADER_KEYWORD = "conceptos"

MONTHS: dict[str, int] = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}


class SheetLayout(str, enum.Enum):
    LEDGER = "ledger"
    COLUMNAR = "columnar"


@dataclass(frozen=True, slots=True)
class HeaderLocation:
    """Row holding the "Conceptos" header of a ledger sheet."""

    row: int
    bold: bool
    month_count: int


def month_number(text: str) -> Optional[int]:
    """Return the month (1-12) named by ``text`` or ``None``.

    Matching ignores case, accents and whitespace and accepts a trailing
    suffix, so ``"Enero 2024"`` is January.
    """

    normalised = normalize_text(text)
    if not normalised:
        return None
    for name, number in MONTHS.items():
        if normalised == name or normalised.startswith(name):
            return number
    return None


def count_header_months(grid: SheetGrid, row: int) -> int:
    count = 0
    for column in range(1, HEADER_SCAN_COLUMNS + 1):
        if month_number(cell_text(grid.cell(row, column))) is not None:
            count += 1
    return count


def locate_ledger_header(grid: SheetGrid) -> Optional[HeaderLocation]:
    """Find the ledger header row, preferring a bold one.

    Only the first :data:`HEADER_SCAN_ROWS` rows are inspected.  A row
    qualifies when its first cell contains "conceptos" and at least
    :data:`MIN_HEADER_MONTHS` of the next :data:`HEADER_SCAN_COLUMNS` cells
    name a month.  The first bold qualifying row wins; otherwise the first
    qualifying row is used.
    """

    fallback: Optional[HeaderLocation] = None
    for row in range(min(grid.row_count, HEADER_SCAN_ROWS)):
        if HEADER_KEYWORD not in normalize_text(cell_text(grid.cell(row, 0))):
            continue
        months = count_header_months(grid, row)
        if months < MIN_HEADER_MONTHS:
            continue
        if grid.is_bold(row, 0):
            return HeaderLocation(row=row, bold=True, month_count=months)
        if fallback is None:
            fallback = HeaderLocation(row=row, bold=False, month_count=months)
    return fallback


def detect_layout(grid: SheetGrid) -> SheetLayout:
    """Classify ``grid`` as a ledger or columnar sheet without modifying it."""

    if locate_ledger_header(grid) is not None:
        return SheetLayout.LEDGER
    return SheetLayout.COLUMNAR
