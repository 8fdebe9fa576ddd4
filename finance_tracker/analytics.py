"""Aggregate views over stored expenses and incomes."""
from __future__ import annotations

from typing import Iterable

import pandas as pd

UNCATEGORISED = "sin categoría"
_COLUMNS = ["kind", "category", "amount", "date"]


def build_summary(rows: Iterable[dict[str, object]]) -> dict[str, object]:
    """Return totals, per-month series and the expense split by category.

    ``rows`` are mappings with ``kind``, ``category``, ``amount`` and ``date``
    keys as produced by :meth:`SQLiteRepository.analytics_rows`.
    """

    frame = pd.DataFrame(list(rows), columns=_COLUMNS)
    frame["amount"] = pd.to_numeric(frame["amount"], errors="coerce").fillna(0.0)
    frame["category"] = frame["category"].fillna(UNCATEGORISED)
    frame["month"] = frame["date"].astype(str).str.slice(0, 7)

    expenses = frame[frame["kind"] == "expense"]
    incomes = frame[frame["kind"] == "income"]
    income_total = float(incomes["amount"].sum())
    expense_total = float(expenses["amount"].sum())

    return {
        "totals": {
            "income": round(income_total, 2),
            "expenses": round(expense_total, 2),
            "balance": round(income_total - expense_total, 2),
        },
        "by_month": {
            "income": _by_month(incomes),
            "expenses": _by_month(expenses),
        },
        "by_category": _by_category(expenses),
    }


def _by_month(frame: pd.DataFrame) -> list[dict[str, object]]:
    if frame.empty:
        return []
    grouped = (
        frame.groupby("month")["amount"]
        .agg(total="sum", entries="size")
        .reset_index()
        .sort_values("month", ascending=False)
    )
    return [
        {"month": row.month, "total": round(float(row.total), 2), "count": int(row.entries)}
        for row in grouped.itertuples(index=False)
    ]


def _by_category(frame: pd.DataFrame) -> list[dict[str, object]]:
    if frame.empty:
        return []
    grouped = (
        frame.groupby("category")["amount"]
        .agg(total="sum", entries="size")
        .reset_index()
        .sort_values("total", ascending=False)
    )
    denominator = float(grouped["total"].sum()) or 1.0
    return [
        {
            "category": row.category,
            "total": round(float(row.total), 2),
            "count": int(row.entries),
            "percent": round(100 * float(row.total) / denominator, 2),
        }
        for row in grouped.itertuples(index=False)
    ]
