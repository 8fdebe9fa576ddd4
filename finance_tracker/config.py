"""Application configuration utilities for the finance_tracker backend.

Every setting the tracker reads from the environment is collected here, so
the parsers, the repository and the API receive one immutable object.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# A local .env never overrides variables already set in the environment.
load_dotenv()

FALLBACK_CURRENCY = "ARS"


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings for the tracker backend.

    Attributes:
        project_root: Checkout directory; the default database lives here.
        database_file: SQLite file holding categories, persons, expenses and
            incomes.
        default_currency: ISO 4217 code assigned to records that do not carry
            an explicit currency.
        max_upload_bytes: Uploads larger than this are rejected before the
            workbook is opened.
        max_sheet_rows: Sheets with more rows than this are rejected before
            any row is classified.
        exchange_rates_url: Endpoint returning the current dollar quotes.
        log_level: Name of the root logging level.
    """

    project_root: Path
    database_file: Path
    default_currency: str = FALLBACK_CURRENCY
    max_upload_bytes: int = 10 * 1024 * 1024
    max_sheet_rows: int = 10_000
    exchange_rates_url: str = "https://api.bluelytics.com.ar/v2/latest"
    log_level: str = "INFO"


def load_config() -> AppConfig:
    """Build an :class:`AppConfig` from ``FINANCE_TRACKER_*`` variables.

    Unset variables keep the defaults declared on :class:`AppConfig`.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "FINANCE_TRACKER_DB_FILE",
            project_root / "finance_tracker.db",
        )
    )

    default_currency = normalise_currency_setting(
        getenv_with_default("FINANCE_TRACKER_DEFAULT_CURRENCY", FALLBACK_CURRENCY)
    )
    max_upload_bytes = int(getenv_with_default("FINANCE_TRACKER_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    max_sheet_rows = int(getenv_with_default("FINANCE_TRACKER_MAX_SHEET_ROWS", "10000"))
    exchange_rates_url = getenv_with_default(
        "FINANCE_TRACKER_EXCHANGE_RATES_URL",
        "https://api.bluelytics.com.ar/v2/latest",
    )
    log_level = getenv_with_default("FINANCE_TRACKER_LOG_LEVEL", "INFO").upper()

    # sqlite3 does not create missing parent directories.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        default_currency=default_currency,
        max_upload_bytes=max_upload_bytes,
        max_sheet_rows=max_sheet_rows,
        exchange_rates_url=exchange_rates_url,
        log_level=log_level,
    )


def normalise_currency_setting(value: Optional[str]) -> str:
    """Return ``value`` as an upper-case ISO 4217 code or the fallback currency."""

    candidate = (value or "").strip().upper()
    if len(candidate) != 3 or not candidate.isalpha():
        return FALLBACK_CURRENCY
    return candidate


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Read ``name`` from the environment, falling back to ``default`` as a string."""

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)
