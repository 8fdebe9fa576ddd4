"""Domain models used by the finance_tracker backend.

The classes defined here are intentionally lightweight data containers that do
not know anything about persistence or transport concerns.  The spreadsheet
parsers only ever produce these types, and the reconciler only ever consumes
them, which keeps the parsers free of database access.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

RecordKind = Literal["expense", "income"]
Severity = Literal["error", "warning"]
OperationType = Literal["COMPRA", "VENTA", "AJUSTE"]

EXPENSE: RecordKind = "expense"
INCOME: RecordKind = "income"

BUY: OperationType = "COMPRA"
SELL: OperationType = "VENTA"
ADJUST: OperationType = "AJUSTE"


# ---------------------------------------------------------------------------
# Spreadsheet cells
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EmptyCell:
    """A cell without a usable value."""


@dataclass(frozen=True, slots=True)
class TextCell:
    text: str


@dataclass(frozen=True, slots=True)
class NumberCell:
    value: Decimal


CellValue = Union[EmptyCell, TextCell, NumberCell]

EMPTY = EmptyCell()


@dataclass(slots=True)
class SheetGrid:
    """Row-major, 0-indexed view over one worksheet.

    ``rows[r][c]`` holds the resolved value of spreadsheet row ``r + 1`` and
    column ``c + 1``.  Rows may be ragged; reads outside a row yield
    :data:`EMPTY`.  ``bold`` holds the ``(row, column)`` coordinates whose font
    is bold, the only styling information the parsers look at.
    """

    name: str
    rows: list[list[CellValue]] = field(default_factory=list)
    bold: frozenset[tuple[int, int]] = frozenset()

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def width(self, row: int) -> int:
        if 0 <= row < len(self.rows):
            return len(self.rows[row])
        return 0

    def cell(self, row: int, column: int) -> CellValue:
        if 0 <= row < len(self.rows):
            values = self.rows[row]
            if 0 <= column < len(values):
                return values[column]
        return EMPTY

    def is_bold(self, row: int, column: int) -> bool:
        return (row, column) in self.bold

    def is_empty(self) -> bool:
        return all(isinstance(value, EmptyCell) for row in self.rows for value in row)


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ParsedRecord:
    """Candidate transaction extracted from a sheet, not yet persisted.

    ``category`` is stored lower-cased and trimmed.  ``date`` is always a
    month anchor: day one of the month at 12:00 UTC.  ``sheet_name`` and
    ``row`` point back at the originating cell range for auditability.
    """

    kind: RecordKind
    category: str
    concept: str
    amount: Decimal
    date: datetime
    currency: str = "ARS"
    note: Optional[str] = None
    person: Optional[str] = None
    sheet_name: Optional[str] = None
    row: Optional[int] = None

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-friendly representation of the record."""

        return {
            "kind": self.kind,
            "category": self.category,
            "concept": self.concept,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "currency": self.currency,
            "note": self.note,
            "person": self.person,
            "sheet_name": self.sheet_name,
            "row": self.row,
        }


@dataclass(frozen=True, slots=True)
class ParseIssue:
    """A skipped row or record, reported back to the caller unchanged.

    ``row`` is the 0-based grid row the issue refers to (``None`` for
    sheet-level issues) and ``record_index`` is the position inside the batch
    handed to the reconciler (``None`` for parse-phase issues).
    """

    severity: Severity
    reason: str
    sheet: Optional[str] = None
    row: Optional[int] = None
    value: Optional[str] = None
    record_index: Optional[int] = None

    def describe(self) -> str:
        location = []
        if self.sheet:
            location.append(f"sheet '{self.sheet}'")
        if self.row is not None:
            location.append(f"row {self.row + 1}")
        if self.record_index is not None:
            location.append(f"record #{self.record_index}")
        prefix = ", ".join(location)
        suffix = f" (value: {self.value!r})" if self.value not in (None, "") else ""
        if prefix:
            return f"{prefix}: {self.reason}{suffix}"
        return f"{self.reason}{suffix}"

    def to_payload(self) -> dict[str, object]:
        return {
            "severity": self.severity,
            "reason": self.reason,
            "sheet": self.sheet,
            "row": self.row,
            "value": self.value,
            "record_index": self.record_index,
            "message": self.describe(),
        }


@dataclass(slots=True)
class ParseResult:
    """Records and issues produced by parsing one sheet or a whole workbook."""

    records: list[ParsedRecord] = field(default_factory=list)
    errors: list[ParseIssue] = field(default_factory=list)
    warnings: list[ParseIssue] = field(default_factory=list)

    def extend(self, other: "ParseResult") -> None:
        self.records.extend(other.records)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def add_issue(self, issue: ParseIssue) -> None:
        if issue.severity == "error":
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def to_payload(self) -> dict[str, object]:
        return {
            "records": [record.to_payload() for record in self.records],
            "total": len(self.records),
            "errors": [issue.to_payload() for issue in self.errors],
            "warnings": [issue.to_payload() for issue in self.warnings],
        }


# ---------------------------------------------------------------------------
# Persistence-side references
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryRef:
    id: int
    name: str
    kind: RecordKind


@dataclass(frozen=True, slots=True)
class PersonRef:
    id: int
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TransactionRef:
    """A persisted expense or income row."""

    id: int
    kind: RecordKind
    category_id: int
    person_id: Optional[int]
    concept: str
    amount: Decimal
    date: datetime
    currency: str
    notes: Optional[str]

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind,
            "category_id": self.category_id,
            "person_id": self.person_id,
            "concept": self.concept,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "currency": self.currency,
            "notes": self.notes,
        }


@dataclass(slots=True)
class SaveResult:
    """Outcome of persisting a batch of parsed records."""

    saved: list[TransactionRef] = field(default_factory=list)
    errors: list[ParseIssue] = field(default_factory=list)
    warnings: list[ParseIssue] = field(default_factory=list)
    message: str = ""

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    def to_payload(self) -> dict[str, object]:
        return {
            "message": self.message,
            "saved_count": self.saved_count,
            "total": self.saved_count,
            "records": [record.to_payload() for record in self.saved],
            "errors": [issue.to_payload() for issue in self.errors],
            "warnings": [issue.to_payload() for issue in self.warnings],
        }


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Investment:
    """A holding such as a crypto position, a mutual fund or shares.

    ``amount`` is the money invested and ``value`` its current worth.
    ``current_quantity`` starts at ``original_quantity`` and is moved by the
    holding's operations.
    """

    id: int
    type: str
    name: str
    amount: Decimal
    value: Decimal
    currency: str
    date: datetime
    notes: Optional[str] = None
    person_id: Optional[int] = None
    original_quantity: Decimal = Decimal("0")
    current_quantity: Decimal = Decimal("0")

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "amount": str(self.amount),
            "value": str(self.value),
            "currency": self.currency,
            "date": self.date.isoformat(),
            "notes": self.notes,
            "person_id": self.person_id,
            "original_quantity": str(self.original_quantity),
            "current_quantity": str(self.current_quantity),
        }


@dataclass(frozen=True, slots=True)
class InvestmentOperation:
    """A buy (``COMPRA``), sell (``VENTA``) or adjustment (``AJUSTE``) of a holding."""

    id: int
    investment_id: int
    type: OperationType
    amount: Decimal
    price: Optional[Decimal] = None
    note: Optional[str] = None
    created_at: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "investment_id": self.investment_id,
            "type": self.type,
            "amount": str(self.amount),
            "price": str(self.price) if self.price is not None else None,
            "note": self.note,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """Buy/sell quote for one dollar flavour, as returned by the rates API."""

    name: str
    code: str
    buy: float
    sell: float
    last_update: str


__all__ = [
    "ADJUST",
    "BUY",
    "CategoryRef",
    "CellValue",
    "EMPTY",
    "EXPENSE",
    "EmptyCell",
    "ExchangeRate",
    "INCOME",
    "Investment",
    "InvestmentOperation",
    "NumberCell",
    "OperationType",
    "ParseIssue",
    "ParseResult",
    "ParsedRecord",
    "PersonRef",
    "RecordKind",
    "SELL",
    "SaveResult",
    "Severity",
    "SheetGrid",
    "TextCell",
    "TransactionRef",
]
