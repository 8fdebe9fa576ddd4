"""Dollar exchange-rate helpers for the finance_tracker backend."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import requests

from .config import AppConfig
from .models import ExchangeRate

logger = logging.getLogger(__name__)

CACHE_SECONDS = 60 * 60
REQUEST_TIMEOUT = 5

_RATE_BLOCKS = (
    ("oficial", "Dólar Oficial", "USD_OFICIAL"),
    ("blue", "Dólar Blue", "USD_BLUE"),
)


class ExchangeRateService:
    """Fetch the current ARS/USD quotes and keep them for an hour.

    When the provider fails the last fetched quotes are returned even if they
    are stale; without any cached quotes zero-valued placeholders are
    returned instead.
    """

    def __init__(self, config: AppConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._cache: Optional[tuple[float, list[ExchangeRate]]] = None

    def get_rates(self) -> list[ExchangeRate]:
        if self._cache is not None and self._clock() - self._cache[0] < CACHE_SECONDS:
            return self._cache[1]

        try:
            response = requests.get(self._config.exchange_rates_url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            rates = _rates_from_payload(response.json())
        except (requests.RequestException, ValueError) as exc:
            logger.error("Failed to fetch exchange rates: %s", exc)
            if self._cache is not None:
                return self._cache[1]
            return default_rates()

        self._cache = (self._clock(), rates)
        return rates

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert between ARS and USD using the blue-dollar quote.

        USD amounts are converted to ARS at the sell price and ARS amounts to
        USD at the buy price.  Other currencies are returned unchanged.
        """

        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return amount

        blue = next((rate for rate in self.get_rates() if rate.code == "USD_BLUE"), None)
        amount_ars = amount
        if source == "USD" and blue is not None:
            amount_ars = amount * blue.sell
        if target == "USD" and blue is not None and blue.buy:
            return amount_ars / blue.buy
        return amount_ars


def _rates_from_payload(payload: object) -> list[ExchangeRate]:
    if not isinstance(payload, dict):
        raise ValueError("Unexpected exchange-rate payload")
    rates: list[ExchangeRate] = []
    for key, name, code in _RATE_BLOCKS:
        body = payload.get(key)
        if not body:
            continue
        rates.append(
            ExchangeRate(
                name=name,
                code=code,
                buy=float(body.get("value_buy") or 0),
                sell=float(body.get("value_sell") or 0),
                last_update=str(body.get("last_update") or payload.get("last_update") or _now_iso()),
            )
        )
    return rates


def default_rates() -> list[ExchangeRate]:
    now = _now_iso()
    return [ExchangeRate(name=name, code=code, buy=0.0, sell=0.0, last_update=now) for _, name, code in _RATE_BLOCKS]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
