"""Cell value normalisation shared by every spreadsheet parser.

Raw worksheet values come in many shapes (formula results, rich text, plain
scalars, dates).  They are resolved once, while the grid is built, into the
closed :data:`~finance_tracker.models.CellValue` union so the parsers only
ever deal with empty, text or number cells.
"""
from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence

from dateutil import parser as date_parser
from openpyxl.cell.rich_text import CellRichText
from openpyxl.utils.datetime import from_excel

from .models import EMPTY, CellValue, EmptyCell, NumberCell, SheetGrid, TextCell

NEUTRAL_HOUR = 12

_CURRENCY_SYMBOLS = "$€£¥"
_PLAIN_NUMBER = re.compile(r"^[+-]?\d+(\.\d+)?([eE][+-]?\d+)?$")
_DIGITS_AND_SEPARATORS = re.compile(r"^[\d.,]+$")
_BLANK_MARKERS = {"-", "\u2013", "\u2014"}


def normalize_cell_value(value: object) -> CellValue:
    """Resolve a raw cell value into an empty, text or number cell.

    Formula cells resolve to their computed result and rich text is flattened
    to plain text.  Strings that look like plain numbers become numbers; any
    other value falls back to its string form.
    """

    if value is None:
        return EMPTY
    if isinstance(value, dict):
        if "result" in value:
            return normalize_cell_value(value["result"])
        if "richText" in value:
            runs = value["richText"] or []
            return _text_or_empty("".join(str(run.get("text", "")) for run in runs))
        if "text" in value:
            return _text_or_empty(str(value["text"]))
        return EMPTY
    if isinstance(value, CellRichText):
        return _text_or_empty(str(value))
    if isinstance(value, bool):
        return TextCell(str(value).upper())
    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return EMPTY
        if not number.is_finite():
            return EMPTY
        return NumberCell(number)
    if isinstance(value, (datetime, date)):
        return TextCell(value.isoformat())

    stringified = str(value).strip()
    if not stringified:
        return EMPTY
    if _PLAIN_NUMBER.match(stringified):
        return NumberCell(Decimal(stringified))
    return TextCell(stringified)


def build_grid(
    name: str,
    rows: Iterable[Sequence[object]],
    bold_cells: Iterable[tuple[int, int]] = (),
) -> SheetGrid:
    """Build a :class:`SheetGrid` from raw row values and bold coordinates."""

    return SheetGrid(
        name=name,
        rows=[[normalize_cell_value(value) for value in row] for row in rows],
        bold=frozenset(bold_cells),
    )


def _text_or_empty(text: str) -> CellValue:
    stripped = text.strip()
    return TextCell(stripped) if stripped else EMPTY


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def cell_text(cell: CellValue) -> str:
    """Return the trimmed display text of ``cell`` ("" for empty cells)."""

    if isinstance(cell, TextCell):
        return cell.text.strip()
    if isinstance(cell, NumberCell):
        if cell.value == cell.value.to_integral_value():
            return str(int(cell.value))
        return format(cell.value.normalize(), "f")
    return ""


def normalize_text(value: str) -> str:
    """Lower-case ``value``, strip accents and remove all whitespace."""

    decomposed = unicodedata.normalize("NFKD", value)
    without_accents = "".join(char for char in decomposed if not unicodedata.combining(char))
    return "".join(without_accents.lower().split())


def is_blank(cell: CellValue) -> bool:
    """True for empty cells and dash-only placeholders."""

    if isinstance(cell, EmptyCell):
        return True
    if isinstance(cell, TextCell):
        return cell.text.strip() in _BLANK_MARKERS or not cell.text.strip()
    return False


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def parse_amount(text: str) -> Optional[Decimal]:
    """Parse a human formatted amount such as ``"$ (1.234,56)"``.

    Currency symbols and whitespace are ignored.  A value wrapped in
    parentheses is negative, as is one with a leading minus.  When both ``.``
    and ``,`` appear the last one is the decimal separator; a separator that
    appears more than once on its own is a thousands separator; a single
    occurrence is the decimal separator.  Returns ``None`` when no finite
    number can be extracted.
    """

    if text is None:
        return None
    stripped = "".join(
        char for char in str(text) if char not in _CURRENCY_SYMBOLS and not char.isspace()
    )
    if not stripped:
        return None

    negative = False
    if stripped.startswith("(") and stripped.endswith(")"):
        negative = True
        stripped = stripped[1:-1]
    if stripped.startswith("-"):
        negative = not negative
        stripped = stripped[1:]
    elif stripped.startswith("+"):
        stripped = stripped[1:]

    if not stripped or not _DIGITS_AND_SEPARATORS.match(stripped):
        return None
    if not any(char.isdigit() for char in stripped):
        return None

    canonical = _canonical_separators(stripped)
    if canonical is None:
        return None
    try:
        number = Decimal(canonical)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return -number if negative else number


def _canonical_separators(digits: str) -> Optional[str]:
    last_dot = digits.rfind(".")
    last_comma = digits.rfind(",")

    if last_dot >= 0 and last_comma >= 0:
        decimal_sep, thousands_sep = (".", ",") if last_dot > last_comma else (",", ".")
        if digits.count(decimal_sep) > 1:
            return None
        return digits.replace(thousands_sep, "").replace(decimal_sep, ".")

    for separator in (".", ","):
        occurrences = digits.count(separator)
        if occurrences > 1:
            return digits.replace(separator, "")
        if occurrences == 1:
            return digits.replace(separator, ".")
    return digits


def cell_amount(cell: CellValue) -> Optional[Decimal]:
    """Return the numeric value of ``cell`` or ``None`` if it has none."""

    if isinstance(cell, NumberCell):
        return cell.value
    if isinstance(cell, TextCell):
        return parse_amount(cell.text)
    return None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def month_anchor(year: int, month: int) -> datetime:
    """Return the canonical timestamp for ``(year, month)``: day 1, 12:00 UTC."""

    return datetime(year, month, 1, NEUTRAL_HOUR, tzinfo=timezone.utc)


def day_anchor(value: date | datetime) -> datetime:
    """Return noon UTC on the calendar day written in ``value``."""

    return datetime(value.year, value.month, value.day, NEUTRAL_HOUR, tzinfo=timezone.utc)


def to_month_anchor(value: date | datetime) -> datetime:
    """Discard day-of-month and time-of-day from ``value``.

    The month is the one written in the value itself; an offset on an aware
    datetime is ignored rather than converted, so a late-evening date never
    moves into the next month.
    """

    return month_anchor(value.year, value.month)


def parse_date(cell: CellValue) -> Optional[datetime]:
    """Parse a date cell (ISO text, day-first text or an Excel serial)."""

    if isinstance(cell, NumberCell):
        try:
            converted = from_excel(float(cell.value))
        except (ValueError, OverflowError):
            return None
        if isinstance(converted, datetime):
            return converted
        if isinstance(converted, date):
            return datetime(converted.year, converted.month, converted.day)
        return None
    if not isinstance(cell, TextCell):
        return None

    stringified = cell.text.strip()
    if not stringified:
        return None
    try:
        return datetime.fromisoformat(stringified)
    except ValueError:
        pass
    try:
        return date_parser.parse(stringified, dayfirst=True)
    except (ValueError, OverflowError):
        return None
