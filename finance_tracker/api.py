"""FastAPI application exposing the finance_tracker backend."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Iterator, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import load_config
from .database import SQLiteRepository
from .errors import ImportFailedError, UploadTooLargeError
from .models import OperationType, ParseIssue, PersonRef
from .services import FinanceService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    finance_service = FinanceService(config, repository)

    app.state.config = config
    app.state.repository = repository
    app.state.finance = finance_service

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="finance_tracker backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request bodies ------------------------------------------------------------


class IssuePayload(BaseModel):
    severity: str = "error"
    reason: str = ""
    sheet: Optional[str] = None
    row: Optional[int] = None
    value: Optional[str] = None
    record_index: Optional[int] = None

    def to_issue(self) -> ParseIssue:
        return ParseIssue(
            severity="warning" if self.severity == "warning" else "error",
            reason=self.reason,
            sheet=self.sheet,
            row=self.row,
            value=self.value,
            record_index=self.record_index,
        )


class ConfirmImportBody(BaseModel):
    records: list[dict[str, Any]]
    errors: list[IssuePayload] = Field(default_factory=list)
    warnings: list[IssuePayload] = Field(default_factory=list)


class PersonBody(BaseModel):
    name: str = Field(min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None


class TransactionBody(BaseModel):
    category_id: int
    concept: str = Field(min_length=1)
    amount: Decimal
    date: datetime
    currency: Optional[str] = None
    notes: Optional[str] = None
    person_id: Optional[int] = None


class TransactionUpdateBody(BaseModel):
    category_id: Optional[int] = None
    concept: Optional[str] = None
    amount: Optional[Decimal] = None
    date: Optional[datetime] = None
    currency: Optional[str] = None
    notes: Optional[str] = None
    person_id: Optional[int] = None


class InvestmentBody(BaseModel):
    type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    amount: Decimal
    value: Decimal
    currency: Optional[str] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None
    person_id: Optional[int] = None
    quantity: Decimal = Field(default=Decimal("0"), ge=0)


class InvestmentUpdateBody(BaseModel):
    type: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[Decimal] = None
    value: Optional[Decimal] = None
    currency: Optional[str] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None
    person_id: Optional[int] = None


class OperationBody(BaseModel):
    investment_id: int
    type: OperationType
    amount: Decimal = Field(ge=0)
    price: Optional[Decimal] = None
    note: Optional[str] = None


class OperationUpdateBody(BaseModel):
    type: Optional[OperationType] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    price: Optional[Decimal] = None
    note: Optional[str] = None


# Dependency injection ------------------------------------------------------


def get_finance_service() -> FinanceService:
    service: FinanceService = app.state.finance
    return service


FinanceDep = Annotated[FinanceService, Depends(get_finance_service)]


def _raise_for_import_failure(exc: ImportFailedError) -> None:
    status = 413 if isinstance(exc, UploadTooLargeError) else 400
    raise HTTPException(status_code=status, detail=str(exc)) from exc


@contextmanager
def _service_errors() -> Iterator[None]:
    """Map service exceptions onto HTTP status codes."""

    try:
        yield
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _person_payload(person: PersonRef) -> dict[str, object]:
    return {"id": person.id, "name": person.name, "icon": person.icon, "color": person.color}


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/upload/preview")
def preview_upload(finance: FinanceDep, file: UploadFile = File(...)) -> dict[str, object]:
    """Parse an uploaded workbook and return the candidate records."""

    data = file.file.read()
    try:
        result = finance.parse_upload(data, file.filename)
    except ImportFailedError as exc:
        _raise_for_import_failure(exc)
    return result.to_payload()


@app.post("/upload/confirm")
def confirm_upload(body: ConfirmImportBody, finance: FinanceDep) -> dict[str, object]:
    """Persist records previously returned by ``/upload/preview``."""

    result = finance.confirm_import(
        body.records,
        [issue.to_issue() for issue in body.errors],
        [issue.to_issue() for issue in body.warnings],
    )
    return result.to_payload()


@app.post("/upload/excel")
def import_upload(finance: FinanceDep, file: UploadFile = File(...)) -> dict[str, object]:
    """Parse and persist an uploaded workbook in one request."""

    data = file.file.read()
    try:
        result = finance.import_upload(data, file.filename)
    except ImportFailedError as exc:
        _raise_for_import_failure(exc)
    return result.to_payload()


@app.get("/expenses")
def list_expenses(
    finance: FinanceDep,
    category_id: Optional[int] = None,
    person_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> dict[str, object]:
    expenses = finance.list_transactions("expense", category_id, person_id, date_from, date_to, limit)
    return {"expenses": expenses, "count": len(expenses)}


@app.get("/income")
def list_income(
    finance: FinanceDep,
    category_id: Optional[int] = None,
    person_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> dict[str, object]:
    incomes = finance.list_transactions("income", category_id, person_id, date_from, date_to, limit)
    return {"income": incomes, "count": len(incomes)}


@app.get("/expenses/{expense_id}")
def get_expense(expense_id: int, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.get_transaction("expense", expense_id)


@app.post("/expenses", status_code=201)
def create_expense(body: TransactionBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.create_manual_transaction("expense", **body.model_dump())


@app.put("/expenses/{expense_id}")
def update_expense(expense_id: int, body: TransactionUpdateBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.update_transaction("expense", expense_id, body.model_dump(exclude_unset=True))


@app.delete("/expenses/{expense_id}")
def delete_expense(expense_id: int, finance: FinanceDep) -> dict[str, int]:
    with _service_errors():
        finance.delete_transaction("expense", expense_id)
    return {"id": expense_id}


@app.get("/income/{income_id}")
def get_income(income_id: int, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.get_transaction("income", income_id)


@app.post("/income", status_code=201)
def create_income(body: TransactionBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.create_manual_transaction("income", **body.model_dump())


@app.put("/income/{income_id}")
def update_income(income_id: int, body: TransactionUpdateBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.update_transaction("income", income_id, body.model_dump(exclude_unset=True))


@app.delete("/income/{income_id}")
def delete_income(income_id: int, finance: FinanceDep) -> dict[str, int]:
    with _service_errors():
        finance.delete_transaction("income", income_id)
    return {"id": income_id}


@app.get("/categories")
def list_categories(
    finance: FinanceDep,
    kind: Annotated[Optional[str], Query(pattern="^(expense|income)$")] = None,
) -> list[dict[str, object]]:
    return [
        {"id": category.id, "name": category.name, "type": category.kind}
        for category in finance.list_categories(kind)
    ]


@app.get("/persons")
def list_persons(finance: FinanceDep) -> list[dict[str, object]]:
    return [_person_payload(person) for person in finance.list_persons()]


@app.post("/persons", status_code=201)
def create_person(body: PersonBody, finance: FinanceDep) -> dict[str, object]:
    try:
        person = finance.create_person(body.name, body.icon, body.color)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=409, detail=f"Person '{body.name}' already exists") from exc
    return _person_payload(person)


@app.put("/persons/{person_id}")
def update_person(person_id: int, body: PersonBody, finance: FinanceDep) -> dict[str, object]:
    try:
        person = finance.update_person(person_id, body.name, body.icon, body.color)
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=409, detail=f"Person '{body.name}' already exists") from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _person_payload(person)


@app.delete("/persons/{person_id}")
def delete_person(person_id: int, finance: FinanceDep) -> dict[str, int]:
    with _service_errors():
        finance.delete_person(person_id)
    return {"id": person_id}


@app.get("/investments")
def list_investments(finance: FinanceDep) -> list[dict[str, object]]:
    return [investment.to_payload() for investment in finance.list_investments()]


@app.get("/investments/summary")
def investments_summary(finance: FinanceDep, currency: Optional[str] = None) -> dict[str, object]:
    """Total invested, current value and profit converted to one currency."""

    return finance.investment_summary(currency)


@app.post("/investments", status_code=201)
def create_investment(body: InvestmentBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.create_investment(**body.model_dump()).to_payload()


@app.get("/investments/{investment_id}")
def get_investment(investment_id: int, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.get_investment(investment_id).to_payload()


@app.patch("/investments/{investment_id}")
def update_investment(investment_id: int, body: InvestmentUpdateBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.update_investment(investment_id, body.model_dump(exclude_unset=True)).to_payload()


@app.delete("/investments/{investment_id}")
def delete_investment(investment_id: int, finance: FinanceDep) -> dict[str, int]:
    with _service_errors():
        finance.delete_investment(investment_id)
    return {"id": investment_id}


@app.get("/investment-operations")
def list_operations(finance: FinanceDep, investment_id: Optional[int] = None) -> list[dict[str, object]]:
    return [operation.to_payload() for operation in finance.list_operations(investment_id)]


@app.post("/investment-operations", status_code=201)
def create_operation(body: OperationBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.create_operation(**body.model_dump()).to_payload()


@app.get("/investment-operations/{operation_id}")
def get_operation(operation_id: int, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.get_operation(operation_id).to_payload()


@app.patch("/investment-operations/{operation_id}")
def update_operation(operation_id: int, body: OperationUpdateBody, finance: FinanceDep) -> dict[str, object]:
    with _service_errors():
        return finance.update_operation(operation_id, body.model_dump(exclude_unset=True)).to_payload()


@app.delete("/investment-operations/{operation_id}")
def delete_operation(operation_id: int, finance: FinanceDep) -> dict[str, int]:
    with _service_errors():
        finance.delete_operation(operation_id)
    return {"id": operation_id}


@app.get("/analytics/summary")
def analytics_summary(finance: FinanceDep) -> dict[str, object]:
    return finance.summary()


@app.get("/exchange-rates")
def exchange_rates(finance: FinanceDep) -> list[dict[str, object]]:
    return [
        {
            "name": rate.name,
            "code": rate.code,
            "buy": rate.buy,
            "sell": rate.sell,
            "last_update": rate.last_update,
        }
        for rate in finance.exchange_rates()
    ]
