"""Persist parsed records, resolving their categories and persons.

Each record is saved inside its own savepoint so a record's category/person
creation and its expense/income row succeed or fail together.  A failing
record is reported and the batch carries on.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from .cells import parse_amount, to_month_anchor
from .config import FALLBACK_CURRENCY
from .database import SQLiteRepository, person_key
from .models import (
    EXPENSE,
    INCOME,
    CategoryRef,
    ParseIssue,
    ParsedRecord,
    PersonRef,
    SaveResult,
    TransactionRef,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 200


@dataclass(slots=True)
class ReconciliationCache:
    """Categories and persons already resolved during one upload."""

    categories: dict[tuple[str, str], CategoryRef] = field(default_factory=dict)
    persons: dict[str, PersonRef] = field(default_factory=dict)


class RecordReconciler:
    """Write parsed records through :class:`SQLiteRepository`."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self._repository = repository

    def save(
        self,
        records: Sequence[ParsedRecord],
        parse_errors: Sequence[ParseIssue] = (),
        parse_warnings: Sequence[ParseIssue] = (),
    ) -> SaveResult:
        """Persist ``records`` one by one and merge parse and save issues.

        The returned :class:`SaveResult` lists parse-phase issues first,
        followed by one error per record that could not be written.
        """

        cache = ReconciliationCache()
        result = SaveResult(errors=list(parse_errors), warnings=list(parse_warnings))
        logger.info("Saving %d parsed records", len(records))

        for index, record in enumerate(records):
            try:
                saved = self._save_record(record, cache)
            except (sqlite3.Error, ValueError, OSError) as exc:
                logger.warning("Record #%d (%s) could not be saved: %s", index, record.concept, exc)
                result.errors.append(
                    ParseIssue(
                        severity="error",
                        reason=redact_error(exc),
                        sheet=record.sheet_name,
                        row=record.row,
                        value=record.concept,
                        record_index=index,
                    )
                )
                continue
            result.saved.append(saved)

        result.message = summarise(result)
        logger.info(result.message)
        return result

    def _save_record(self, record: ParsedRecord, cache: ReconciliationCache) -> TransactionRef:
        category_key = (record.category.strip().lower(), record.kind)
        person_cache_key = person_key(record.person) if record.person else None

        with self._repository.savepoint():
            category = cache.categories.get(category_key)
            if category is None:
                category = self._repository.find_or_create_category(record.category, record.kind)

            person: Optional[PersonRef] = None
            if person_cache_key:
                person = cache.persons.get(person_cache_key)
                if person is None:
                    person = self._repository.find_or_create_person(record.person)

            saved = self._repository.create_transaction(
                kind=record.kind,
                category=category,
                person=person,
                concept=record.concept,
                amount=record.amount,
                date=to_month_anchor(record.date),
                currency=record.currency,
                notes=record.note,
            )

        # Only cache references whose savepoint was released.
        cache.categories[category_key] = category
        if person_cache_key and person is not None:
            cache.persons[person_cache_key] = person
        return saved


def redact_error(exc: BaseException) -> str:
    """Return a one-line, length-limited description of ``exc``."""

    lines = str(exc).strip().splitlines()
    detail = lines[0] if lines else ""
    if len(detail) > MAX_ERROR_LENGTH:
        detail = detail[: MAX_ERROR_LENGTH - 3] + "..."
    name = type(exc).__name__
    return f"{name}: {detail}" if detail else name


def summarise(result: SaveResult) -> str:
    message = f"{result.saved_count} records imported successfully"
    issues = []
    if result.errors:
        issues.append(f"{len(result.errors)} errors")
    if result.warnings:
        issues.append(f"{len(result.warnings)} warnings")
    if issues:
        message += f" ({' and '.join(issues)})"
    return message


# ---------------------------------------------------------------------------
# Payload conversion (records coming back from a preview)
# ---------------------------------------------------------------------------


def record_from_payload(payload: Mapping[str, object], default_currency: str = FALLBACK_CURRENCY) -> ParsedRecord:
    """Validate a JSON record previously produced by :meth:`ParsedRecord.to_payload`.

    Raises:
        ValueError: when a required field is missing or malformed.
    """

    kind = str(payload.get("kind") or EXPENSE).strip().lower()
    if kind not in (EXPENSE, INCOME):
        raise ValueError(f"kind must be 'expense' or 'income', got {kind!r}")

    category = str(payload.get("category") or "").strip().lower()
    if not category:
        raise ValueError("category is required")
    concept = str(payload.get("concept") or "").strip()
    if not concept:
        raise ValueError("concept is required")

    amount = _payload_amount(payload.get("amount"))
    if amount is None:
        raise ValueError(f"amount is not a number: {payload.get('amount')!r}")
    if amount == 0:
        raise ValueError("amount must be non-zero")

    raw_date = payload.get("date")
    if isinstance(raw_date, datetime):
        parsed_date = raw_date
    else:
        try:
            parsed_date = datetime.fromisoformat(str(raw_date))
        except ValueError:
            raise ValueError(f"date is not an ISO 8601 timestamp: {raw_date!r}") from None

    currency = str(payload.get("currency") or "").strip().upper()
    if not (len(currency) == 3 and currency.isalpha()):
        currency = default_currency

    row = payload.get("row")
    return ParsedRecord(
        kind=kind,
        category=category,
        concept=concept,
        amount=amount,
        date=to_month_anchor(parsed_date),
        currency=currency,
        note=_optional_text(payload.get("note")),
        person=_optional_text(payload.get("person")),
        sheet_name=_optional_text(payload.get("sheet_name")),
        row=int(row) if isinstance(row, int) else None,
    )


def _payload_amount(value: object) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
        return number if number.is_finite() else None
    return parse_amount(str(value))


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
