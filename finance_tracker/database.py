"""SQLite persistence layer for the finance_tracker backend.

Categories, persons, expenses, incomes and investments live in one SQLite file
accessed through :class:`SQLiteRepository`.  The connection runs in autocommit
mode; multi-statement units of work use :meth:`SQLiteRepository.savepoint`.

The single connection is shared by every request thread, so all access goes
through one re-entrant lock.  A savepoint keeps the lock until it is released
or rolled back, which keeps concurrent units of work from interleaving.
"""
from __future__ import annotations

import itertools
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional

from .models import (
    CategoryRef,
    Investment,
    InvestmentOperation,
    OperationType,
    PersonRef,
    RecordKind,
    TransactionRef,
)

_TABLES: dict[str, str] = {"expense": "expenses", "income": "incomes"}

TRANSACTION_COLUMNS = ("category_id", "person_id", "concept", "amount", "date", "currency", "notes")
INVESTMENT_COLUMNS = ("type", "name", "amount", "value", "currency", "date", "notes", "person_id")
OPERATION_COLUMNS = ("type", "amount", "price", "note")


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        self._connection = sqlite3.connect(
            database_path,
            isolation_level=None,
            check_same_thread=False,
        )
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row
        self._savepoint_ids = itertools.count(1)
        self._lock = threading.RLock()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        with self._lock:
            self._connection.close()

    def _execute(self, sql: str, params: Iterable[object] | Mapping[str, object] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._connection.execute(sql, params)

    def _fetchone(self, sql: str, params: Iterable[object] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Iterable[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL CHECK (type IN ('expense', 'income')),
                    UNIQUE(name, type)
                );

                CREATE TABLE IF NOT EXISTS persons (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL UNIQUE,
                    icon TEXT,
                    color TEXT
                );

                CREATE TABLE IF NOT EXISTS expenses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category_id INTEGER NOT NULL REFERENCES categories(id),
                    person_id INTEGER REFERENCES persons(id) ON DELETE SET NULL,
                    concept TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    date TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS incomes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category_id INTEGER NOT NULL REFERENCES categories(id),
                    person_id INTEGER REFERENCES persons(id) ON DELETE SET NULL,
                    concept TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    date TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS investments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    value TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    date TEXT NOT NULL,
                    notes TEXT,
                    person_id INTEGER REFERENCES persons(id) ON DELETE SET NULL,
                    original_quantity TEXT NOT NULL DEFAULT '0',
                    current_quantity TEXT NOT NULL DEFAULT '0',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS investment_operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    investment_id INTEGER NOT NULL REFERENCES investments(id) ON DELETE CASCADE,
                    type TEXT NOT NULL CHECK (type IN ('COMPRA', 'VENTA', 'AJUSTE')),
                    amount TEXT NOT NULL,
                    price TEXT,
                    note TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Run the enclosed statements atomically.

        Everything executed inside the block is rolled back if the block
        raises; the exception is re-raised to the caller.  Other threads wait
        until the block has finished.
        """

        with self._lock:
            name = f"sp_{next(self._savepoint_ids)}"
            self._connection.execute(f"SAVEPOINT {name}")
            try:
                yield
            except BaseException:
                self._connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
                self._connection.execute(f"RELEASE SAVEPOINT {name}")
                raise
            self._connection.execute(f"RELEASE SAVEPOINT {name}")

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def find_category(self, name: str, kind: RecordKind) -> Optional[CategoryRef]:
        row = self._fetchone(
            "SELECT id, name, type FROM categories WHERE name = ? AND type = ?",
            (name.strip().lower(), kind),
        )
        if row is None:
            return None
        return _category_from_row(row)

    def get_category(self, category_id: int) -> CategoryRef:
        row = self._fetchone("SELECT id, name, type FROM categories WHERE id = ?", (category_id,))
        if row is None:
            raise LookupError(f"Category {category_id} not found")
        return _category_from_row(row)

    def find_or_create_category(self, name: str, kind: RecordKind) -> CategoryRef:
        """Return the category named ``name`` within ``kind``, creating it if needed.

        Names are matched case-insensitively and stored lower-cased.
        """

        normalised = name.strip().lower()
        if not normalised:
            raise ValueError("Category name is required")
        with self._lock:
            existing = self.find_category(normalised, kind)
            if existing is not None:
                return existing
            cursor = self._execute(
                "INSERT INTO categories (name, type) VALUES (?, ?)",
                (normalised, kind),
            )
        return CategoryRef(id=cursor.lastrowid, name=normalised, kind=kind)

    def list_categories(self, kind: Optional[RecordKind] = None) -> list[CategoryRef]:
        if kind is None:
            rows = self._fetchall("SELECT id, name, type FROM categories ORDER BY name")
        else:
            rows = self._fetchall(
                "SELECT id, name, type FROM categories WHERE type = ? ORDER BY name",
                (kind,),
            )
        return [_category_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Persons
    # ------------------------------------------------------------------
    def find_person(self, name: str) -> Optional[PersonRef]:
        row = self._fetchone(
            "SELECT id, name, icon, color FROM persons WHERE name_key = ?",
            (person_key(name),),
        )
        return _person_from_row(row) if row is not None else None

    def get_person(self, person_id: int) -> PersonRef:
        row = self._fetchone("SELECT id, name, icon, color FROM persons WHERE id = ?", (person_id,))
        if row is None:
            raise LookupError(f"Person {person_id} not found")
        return _person_from_row(row)

    def create_person(self, name: str, icon: Optional[str] = None, color: Optional[str] = None) -> PersonRef:
        """Insert a person.

        Raises:
            ValueError: when ``name`` is blank.
            sqlite3.IntegrityError: when a person with the same name exists,
                compared after Unicode case folding.
        """

        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Person name is required")
        cursor = self._execute(
            "INSERT INTO persons (name, name_key, icon, color) VALUES (?, ?, ?, ?)",
            (cleaned, person_key(cleaned), icon, color),
        )
        return PersonRef(id=cursor.lastrowid, name=cleaned, icon=icon, color=color)

    def find_or_create_person(self, name: str) -> PersonRef:
        with self._lock:
            existing = self.find_person(name)
            if existing is not None:
                return existing
            return self.create_person(name)

    def update_person(
        self,
        person_id: int,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> PersonRef:
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Person name is required")
        cursor = self._execute(
            "UPDATE persons SET name = ?, name_key = ?, icon = ?, color = ? WHERE id = ?",
            (cleaned, person_key(cleaned), icon, color, person_id),
        )
        if cursor.rowcount == 0:
            raise LookupError(f"Person {person_id} not found")
        return PersonRef(id=person_id, name=cleaned, icon=icon, color=color)

    def delete_person(self, person_id: int) -> None:
        """Delete a person; their expenses, incomes and investments are kept unassigned."""

        cursor = self._execute("DELETE FROM persons WHERE id = ?", (person_id,))
        if cursor.rowcount == 0:
            raise LookupError(f"Person {person_id} not found")

    def list_persons(self) -> list[PersonRef]:
        rows = self._fetchall("SELECT id, name, icon, color FROM persons ORDER BY name_key")
        return [_person_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Expenses and incomes
    # ------------------------------------------------------------------
    def create_transaction(
        self,
        kind: RecordKind,
        category: CategoryRef,
        person: Optional[PersonRef],
        concept: str,
        amount: Decimal,
        date: datetime,
        currency: str,
        notes: Optional[str] = None,
    ) -> TransactionRef:
        """Insert an expense or income row and return a reference to it."""

        if category.kind != kind:
            raise ValueError(f"Category '{category.name}' is not of type '{kind}'")
        table = _table_for(kind)
        cursor = self._execute(
            f"""
            INSERT INTO {table} (
                category_id, person_id, concept, amount, date, currency, notes, created_at
            ) VALUES (
                :category_id, :person_id, :concept, :amount, :date, :currency, :notes, :created_at
            )
            """,
            {
                "category_id": category.id,
                "person_id": person.id if person else None,
                "concept": concept,
                "amount": str(amount),
                "date": date.isoformat(),
                "currency": currency,
                "notes": notes,
                "created_at": _now_iso(),
            },
        )
        return TransactionRef(
            id=cursor.lastrowid,
            kind=kind,
            category_id=category.id,
            person_id=person.id if person else None,
            concept=concept,
            amount=amount,
            date=date,
            currency=currency,
            notes=notes,
        )

    def get_transaction(self, kind: RecordKind, transaction_id: int) -> dict[str, object]:
        rows = self._select_transactions(kind, ["t.id = ?"], [transaction_id], limit=1)
        if not rows:
            raise LookupError(f"{kind.capitalize()} {transaction_id} not found")
        return rows[0]

    def update_transaction(self, kind: RecordKind, transaction_id: int, changes: Mapping[str, object]) -> None:
        """Overwrite the given columns of an expense or income row.

        ``changes`` keys must be among :data:`TRANSACTION_COLUMNS`; values are
        stored as given, so callers pass decimals and dates already converted.
        """

        self._update_row(_table_for(kind), transaction_id, changes, TRANSACTION_COLUMNS, kind.capitalize())

    def list_transactions(
        self,
        kind: RecordKind,
        category_id: Optional[int] = None,
        person_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[dict[str, object]]:
        """Return the most recent expenses or incomes matching the filters."""

        clauses: list[str] = []
        params: list[object] = []
        if category_id is not None:
            clauses.append("t.category_id = ?")
            params.append(category_id)
        if person_id is not None:
            clauses.append("t.person_id = ?")
            params.append(person_id)
        if date_from is not None:
            clauses.append("t.date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("t.date <= ?")
            params.append(date_to.isoformat())
        return self._select_transactions(kind, clauses, params, limit)

    def _select_transactions(
        self,
        kind: RecordKind,
        clauses: list[str],
        params: list[object],
        limit: int,
    ) -> list[dict[str, object]]:
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"""
            SELECT t.*, c.name AS category, p.name AS person
            FROM {_table_for(kind)} AS t
            JOIN categories AS c ON c.id = t.category_id
            LEFT JOIN persons AS p ON p.id = t.person_id
            {where}
            ORDER BY t.date DESC, t.id DESC
            LIMIT ?
            """,
            [*params, limit],
        )
        return [dict(row) for row in rows]

    def delete_transaction(self, kind: RecordKind, transaction_id: int) -> None:
        cursor = self._execute(
            f"DELETE FROM {_table_for(kind)} WHERE id = ?",
            (transaction_id,),
        )
        if cursor.rowcount == 0:
            raise LookupError(f"{kind.capitalize()} {transaction_id} not found")

    def analytics_rows(self) -> list[dict[str, object]]:
        """Return every expense and income with its kind and category name."""

        rows = self._fetchall(
            """
            SELECT 'expense' AS kind, c.name AS category, e.amount, e.date
            FROM expenses AS e JOIN categories AS c ON c.id = e.category_id
            UNION ALL
            SELECT 'income' AS kind, c.name AS category, i.amount, i.date
            FROM incomes AS i JOIN categories AS c ON c.id = i.category_id
            """
        )
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Investments
    # ------------------------------------------------------------------
    def create_investment(
        self,
        type: str,
        name: str,
        amount: Decimal,
        value: Decimal,
        currency: str,
        date: datetime,
        notes: Optional[str] = None,
        person_id: Optional[int] = None,
        quantity: Decimal = Decimal("0"),
    ) -> Investment:
        cursor = self._execute(
            """
            INSERT INTO investments (
                type, name, amount, value, currency, date, notes, person_id,
                original_quantity, current_quantity, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                type,
                name,
                str(amount),
                str(value),
                currency,
                date.isoformat(),
                notes,
                person_id,
                str(quantity),
                str(quantity),
                _now_iso(),
            ),
        )
        return self.get_investment(cursor.lastrowid)

    def get_investment(self, investment_id: int) -> Investment:
        row = self._fetchone("SELECT * FROM investments WHERE id = ?", (investment_id,))
        if row is None:
            raise LookupError(f"Investment {investment_id} not found")
        return _investment_from_row(row)

    def list_investments(self) -> list[Investment]:
        rows = self._fetchall("SELECT * FROM investments ORDER BY date DESC, id DESC")
        return [_investment_from_row(row) for row in rows]

    def update_investment(self, investment_id: int, changes: Mapping[str, object]) -> Investment:
        with self._lock:
            self._update_row("investments", investment_id, changes, INVESTMENT_COLUMNS, "Investment")
            return self.get_investment(investment_id)

    def set_investment_quantity(self, investment_id: int, quantity: Decimal) -> None:
        cursor = self._execute(
            "UPDATE investments SET current_quantity = ? WHERE id = ?",
            (str(quantity), investment_id),
        )
        if cursor.rowcount == 0:
            raise LookupError(f"Investment {investment_id} not found")

    def delete_investment(self, investment_id: int) -> None:
        """Delete an investment together with its operations."""

        cursor = self._execute("DELETE FROM investments WHERE id = ?", (investment_id,))
        if cursor.rowcount == 0:
            raise LookupError(f"Investment {investment_id} not found")

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
        created_at = _now_iso()
        cursor = self._execute(
            """
            INSERT INTO investment_operations (investment_id, type, amount, price, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (investment_id, type, str(amount), str(price) if price is not None else None, note, created_at),
        )
        return InvestmentOperation(
            id=cursor.lastrowid,
            investment_id=investment_id,
            type=type,
            amount=amount,
            price=price,
            note=note,
            created_at=created_at,
        )

    def get_operation(self, operation_id: int) -> InvestmentOperation:
        row = self._fetchone("SELECT * FROM investment_operations WHERE id = ?", (operation_id,))
        if row is None:
            raise LookupError(f"Investment operation {operation_id} not found")
        return _operation_from_row(row)

    def list_operations(self, investment_id: Optional[int] = None) -> list[InvestmentOperation]:
        """Return operations newest first, optionally for one investment."""

        if investment_id is None:
            rows = self._fetchall("SELECT * FROM investment_operations ORDER BY id DESC")
        else:
            rows = self._fetchall(
                "SELECT * FROM investment_operations WHERE investment_id = ? ORDER BY id DESC",
                (investment_id,),
            )
        return [_operation_from_row(row) for row in rows]

    def update_operation(self, operation_id: int, changes: Mapping[str, object]) -> InvestmentOperation:
        with self._lock:
            self._update_row("investment_operations", operation_id, changes, OPERATION_COLUMNS, "Investment operation")
            return self.get_operation(operation_id)

    def delete_operation(self, operation_id: int) -> None:
        cursor = self._execute("DELETE FROM investment_operations WHERE id = ?", (operation_id,))
        if cursor.rowcount == 0:
            raise LookupError(f"Investment operation {operation_id} not found")

    def _update_row(
        self,
        table: str,
        row_id: int,
        changes: Mapping[str, object],
        allowed: tuple[str, ...],
        label: str,
    ) -> None:
        unknown = set(changes) - set(allowed)
        if unknown:
            raise ValueError(f"Cannot update {', '.join(sorted(unknown))} on {table}")
        if not changes:
            if self._fetchone(f"SELECT id FROM {table} WHERE id = ?", (row_id,)) is None:
                raise LookupError(f"{label} {row_id} not found")
            return
        assignments = ", ".join(f"{column} = :{column}" for column in changes)
        cursor = self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = :row_id",
            {**changes, "row_id": row_id},
        )
        if cursor.rowcount == 0:
            raise LookupError(f"{label} {row_id} not found")


def person_key(name: str) -> str:
    """Return the lookup key for a person name: trimmed, single-spaced, case-folded."""

    return " ".join(name.split()).casefold()


def _table_for(kind: str) -> str:
    try:
        return _TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown transaction kind: {kind!r}") from None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _category_from_row(row: sqlite3.Row) -> CategoryRef:
    return CategoryRef(id=row["id"], name=row["name"], kind=row["type"])


def _person_from_row(row: sqlite3.Row) -> PersonRef:
    return PersonRef(id=row["id"], name=row["name"], icon=row["icon"], color=row["color"])


def _investment_from_row(row: sqlite3.Row) -> Investment:
    return Investment(
        id=row["id"],
        type=row["type"],
        name=row["name"],
        amount=Decimal(row["amount"]),
        value=Decimal(row["value"]),
        currency=row["currency"],
        date=datetime.fromisoformat(row["date"]),
        notes=row["notes"],
        person_id=row["person_id"],
        original_quantity=Decimal(row["original_quantity"]),
        current_quantity=Decimal(row["current_quantity"]),
    )


def _operation_from_row(row: sqlite3.Row) -> InvestmentOperation:
    return InvestmentOperation(
        id=row["id"],
        investment_id=row["investment_id"],
        type=row["type"],
        amount=Decimal(row["amount"]),
        price=Decimal(row["price"]) if row["price"] is not None else None,
        note=row["note"],
        created_at=row["created_at"],
    )
