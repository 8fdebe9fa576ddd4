"""Quantity bookkeeping and totals for investments.

An investment starts at its original quantity.  Each operation then moves the
current quantity: a buy adds to it, a sell subtracts from it and an adjustment
replaces it outright.  A sell may never take the quantity below zero.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable

from .models import ADJUST, BUY, SELL, Investment, InvestmentOperation, OperationType

Converter = Callable[[float, str, str], float]


def apply_operation(quantity: Decimal, operation_type: OperationType, amount: Decimal) -> Decimal:
    """Return the quantity left after one operation.

    Raises:
        ValueError: for a negative amount, a sell larger than ``quantity`` or
            an unknown operation type.
    """

    if amount < 0:
        raise ValueError("Operation amount cannot be negative")
    if operation_type == BUY:
        return quantity + amount
    if operation_type == SELL:
        if amount > quantity:
            raise ValueError(f"Cannot sell {amount}: only {quantity} available")
        return quantity - amount
    if operation_type == ADJUST:
        return amount
    raise ValueError(f"Unknown operation type: {operation_type!r}")


def replay_quantity(original: Decimal, operations: Iterable[InvestmentOperation]) -> Decimal:
    """Recompute a holding's quantity from its operations, oldest first."""

    quantity = original
    for operation in sorted(operations, key=lambda op: op.id):
        quantity = apply_operation(quantity, operation.type, operation.amount)
    return quantity


def summarise_investments(
    investments: Iterable[Investment],
    convert: Converter,
    currency: str,
) -> dict[str, object]:
    """Total invested amount, current value and profit in ``currency``."""

    invested = 0.0
    value = 0.0
    count = 0
    for investment in investments:
        invested += convert(float(investment.amount), investment.currency, currency)
        value += convert(float(investment.value), investment.currency, currency)
        count += 1
    return {
        "currency": currency,
        "count": count,
        "total_invested": round(invested, 2),
        "total_value": round(value, 2),
        "profit": round(value - invested, 2),
    }
