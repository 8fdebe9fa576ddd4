"""High-level application services orchestrating the finance_tracker backend."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from .analytics import build_summary
from .cells import day_anchor, to_month_anchor
from .config import AppConfig
from .database import SQLiteRepository
from .errors import ImportFailedError
from .exchange_rates import ExchangeRateService
from .importers import WorkbookImporter
from .investments import apply_operation, replay_quantity, summarise_investments
from .models import (
    CategoryRef,
    ExchangeRate,
    Investment,
    InvestmentOperation,
    OperationType,
    ParseIssue,
    ParseResult,
    ParsedRecord,
    PersonRef,
    RecordKind,
    SaveResult,
)
from .reconciler import RecordReconciler, record_from_payload, redact_error, summarise

logger = logging.getLogger(__name__)


class FinanceService:
    """Coordinates uploads, persistence and summarisation logic."""

    def __init__(
        self,
        config: AppConfig,
        repository: SQLiteRepository,
        exchange_rates: Optional[ExchangeRateService] = None,
    ) -> None:
        self._config = config
        self._repository = repository
        self._importer = WorkbookImporter(config)
        self._reconciler = RecordReconciler(repository)
        self._exchange_rates = exchange_rates or ExchangeRateService(config)

    # ------------------------------------------------------------------
    # Upload workflows
    # ------------------------------------------------------------------
    def parse_upload(self, data: bytes, filename: Optional[str] = None) -> ParseResult:
        """Parse an uploaded workbook without persisting anything (preview)."""

        logger.info("Upload %s received", filename or "<unnamed>")
        try:
            return self._importer.parse(data, filename)
        except ImportFailedError as exc:
            logger.warning("Upload %s failed to parse: %s", filename or "<unnamed>", exc)
            raise

    def confirm_import(
        self,
        records: Sequence[Mapping[str, object]],
        errors: Sequence[ParseIssue] = (),
        warnings: Sequence[ParseIssue] = (),
    ) -> SaveResult:
        """Persist records previously returned by :meth:`parse_upload`.

        Payload records that fail validation become save-phase errors carrying
        their index; the remaining records are still saved.
        """

        candidates: list[ParsedRecord] = []
        positions: list[int] = []
        invalid: list[ParseIssue] = []
        for index, payload in enumerate(records):
            try:
                candidates.append(record_from_payload(payload, self._config.default_currency))
            except ValueError as exc:
                invalid.append(ParseIssue(severity="error", reason=redact_error(exc), record_index=index))
                continue
            positions.append(index)

        result = self._reconciler.save(candidates, errors, warnings)
        # Reconciler indexes refer to the validated subset; map them back to
        # positions in the submitted payload.
        carried = len(errors)
        result.errors = (
            result.errors[:carried]
            + [replace(issue, record_index=positions[issue.record_index]) for issue in result.errors[carried:]]
            + invalid
        )
        result.message = summarise(result)
        return result

    def import_upload(self, data: bytes, filename: Optional[str] = None) -> SaveResult:
        """Parse and persist an uploaded workbook in one step."""

        parsed = self.parse_upload(data, filename)
        return self._reconciler.save(parsed.records, parsed.errors, parsed.warnings)

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def list_transactions(
        self,
        kind: RecordKind,
        category_id: Optional[int] = None,
        person_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[dict[str, object]]:
        return self._repository.list_transactions(kind, category_id, person_id, date_from, date_to, limit)

    def delete_transaction(self, kind: RecordKind, transaction_id: int) -> None:
        self._repository.delete_transaction(kind, transaction_id)

    def get_transaction(self, kind: RecordKind, transaction_id: int) -> dict[str, object]:
        return self._repository.get_transaction(kind, transaction_id)

    def create_manual_transaction(
        self,
        kind: RecordKind,
        category_id: int,
        concept: str,
        amount: Decimal,
        date: date | datetime,
        currency: Optional[str] = None,
        notes: Optional[str] = None,
        person_id: Optional[int] = None,
    ) -> dict[str, object]:
        """Record one expense or income entered by hand.

        Like imported rows, the entry is stored at the month anchor of the
        date given; only the month written in ``date`` is kept.

        Raises:
            LookupError: when the category or person does not exist.
            ValueError: when the category belongs to the other kind or the
                concept is blank.
        """

        cleaned = concept.strip()
        if not cleaned:
            raise ValueError("concept is required")
        with self._repository.savepoint():
            category = self._repository.get_category(category_id)
            person = self._repository.get_person(person_id) if person_id is not None else None
            created = self._repository.create_transaction(
                kind=kind,
                category=category,
                person=person,
                concept=cleaned,
                amount=amount,
                date=to_month_anchor(date),
                currency=self._currency(currency),
                notes=notes,
            )
        logger.info("Created %s %s in category %s", kind, created.id, category.name)
        return self._repository.get_transaction(kind, created.id)

    def update_transaction(
        self,
        kind: RecordKind,
        transaction_id: int,
        changes: Mapping[str, object],
    ) -> dict[str, object]:
        """Apply a partial update to an expense or income and return the stored row."""

        prepared: dict[str, object] = {}
        with self._repository.savepoint():
            for column, value in changes.items():
                if value is None and column in ("category_id", "concept", "amount", "date"):
                    raise ValueError(f"{column} is required")
                if column == "category_id":
                    category = self._repository.get_category(int(value))
                    if category.kind != kind:
                        raise ValueError(f"Category '{category.name}' is not of type '{kind}'")
                elif column == "person_id" and value is not None:
                    self._repository.get_person(int(value))
                elif column == "concept":
                    value = str(value or "").strip()
                    if not value:
                        raise ValueError("concept is required")
                elif column == "amount":
                    value = str(value)
                elif column == "date":
                    value = to_month_anchor(value).isoformat()
                elif column == "currency":
                    value = self._currency(value)
                prepared[column] = value
            self._repository.update_transaction(kind, transaction_id, prepared)
        return self._repository.get_transaction(kind, transaction_id)

    def list_categories(self, kind: Optional[RecordKind] = None) -> list[CategoryRef]:
        return self._repository.list_categories(kind)

    def list_persons(self) -> list[PersonRef]:
        return self._repository.list_persons()

    def create_person(self, name: str, icon: Optional[str] = None, color: Optional[str] = None) -> PersonRef:
        return self._repository.create_person(name, icon, color)

    def update_person(
        self,
        person_id: int,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> PersonRef:
        return self._repository.update_person(person_id, name, icon, color)

    def delete_person(self, person_id: int) -> None:
        self._repository.delete_person(person_id)
        logger.info("Deleted person %s", person_id)

    def summary(self) -> dict[str, object]:
        return build_summary(self._repository.analytics_rows())

    # ------------------------------------------------------------------
    # Investments
    # ------------------------------------------------------------------
    def create_investment(
        self,
        type: str,
        name: str,
        amount: Decimal,
        value: Decimal,
        currency: Optional[str] = None,
        date: Optional[date | datetime] = None,
        notes: Optional[str] = None,
        person_id: Optional[int] = None,
        quantity: Decimal = Decimal("0"),
    ) -> Investment:
        if not type.strip() or not name.strip():
            raise ValueError("Investment type and name are required")
        if quantity < 0:
            raise ValueError("Investment quantity cannot be negative")
        with self._repository.savepoint():
            if person_id is not None:
                self._repository.get_person(person_id)
            investment = self._repository.create_investment(
                type=type.strip(),
                name=name.strip(),
                amount=amount,
                value=value,
                currency=self._currency(currency),
                date=day_anchor(date or datetime.now(timezone.utc)),
                notes=notes,
                person_id=person_id,
                quantity=quantity,
            )
        logger.info("Created investment %s (%s)", investment.id, investment.name)
        return investment

    def get_investment(self, investment_id: int) -> Investment:
        return self._repository.get_investment(investment_id)

    def list_investments(self) -> list[Investment]:
        return self._repository.list_investments()

    def update_investment(self, investment_id: int, changes: Mapping[str, object]) -> Investment:
        prepared: dict[str, object] = {}
        with self._repository.savepoint():
            for column, value in changes.items():
                if value is None and column in ("type", "name", "amount", "value", "date"):
                    raise ValueError(f"{column} is required")
                if column in ("amount", "value"):
                    value = str(value)
                elif column == "date":
                    value = day_anchor(value).isoformat()
                elif column == "currency":
                    value = self._currency(value)
                elif column in ("type", "name"):
                    value = str(value or "").strip()
                    if not value:
                        raise ValueError(f"Investment {column} is required")
                elif column == "person_id" and value is not None:
                    self._repository.get_person(int(value))
                prepared[column] = value
            return self._repository.update_investment(investment_id, prepared)

    def delete_investment(self, investment_id: int) -> None:
        self._repository.delete_investment(investment_id)
        logger.info("Deleted investment %s", investment_id)

    def investment_summary(self, currency: Optional[str] = None) -> dict[str, object]:
        """Totals over every investment, converted to ``currency``.

        Amounts in other currencies go through the blue-dollar quote; the
        configured default currency is used when none is given.
        """

        return summarise_investments(
            self._repository.list_investments(),
            self._exchange_rates.convert,
            self._currency(currency),
        )

    # ------------------------------------------------------------------
    # Investment operations
    # ------------------------------------------------------------------
    def create_operation(
        self,
        investment_id: int,
        type: OperationType,
        amount: Decimal,
        price: Optional[Decimal] = None,
        note: Optional[str] = None,
    ) -> InvestmentOperation:
        """Record a buy, sell or adjustment and move the holding's quantity."""

        with self._repository.savepoint():
            investment = self._repository.get_investment(investment_id)
            quantity = apply_operation(investment.current_quantity, type, amount)
            operation = self._repository.create_operation(investment_id, type, amount, price, note)
            self._repository.set_investment_quantity(investment_id, quantity)
        logger.info("Investment %s: %s %s, quantity now %s", investment_id, type, amount, quantity)
        return operation

    def get_operation(self, operation_id: int) -> InvestmentOperation:
        return self._repository.get_operation(operation_id)

    def list_operations(self, investment_id: Optional[int] = None) -> list[InvestmentOperation]:
        return self._repository.list_operations(investment_id)

    def update_operation(self, operation_id: int, changes: Mapping[str, object]) -> InvestmentOperation:
        """Edit an operation and recompute its holding's quantity.

        The edit is rolled back when the replayed operations would sell more
        than the holding has.
        """

        for column in ("type", "amount"):
            if column in changes and changes[column] is None:
                raise ValueError(f"{column} is required")
        prepared = {
            column: str(value) if column in ("amount", "price") and value is not None else value
            for column, value in changes.items()
        }
        with self._repository.savepoint():
            operation = self._repository.update_operation(operation_id, prepared)
            self._recompute_quantity(operation.investment_id)
        return self._repository.get_operation(operation_id)

    def delete_operation(self, operation_id: int) -> None:
        with self._repository.savepoint():
            operation = self._repository.get_operation(operation_id)
            self._repository.delete_operation(operation_id)
            self._recompute_quantity(operation.investment_id)

    def _recompute_quantity(self, investment_id: int) -> None:
        investment = self._repository.get_investment(investment_id)
        quantity = replay_quantity(
            investment.original_quantity,
            self._repository.list_operations(investment_id),
        )
        self._repository.set_investment_quantity(investment_id, quantity)

    def _currency(self, value: object) -> str:
        cleaned = str(value or "").strip().upper()
        return cleaned or self._config.default_currency

    # ------------------------------------------------------------------
    # Market data utilities
    # ------------------------------------------------------------------
    def exchange_rates(self) -> list[ExchangeRate]:
        return self._exchange_rates.get_rates()
