"""Shared pytest fixtures."""
from __future__ import annotations

import io
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest
from openpyxl import Workbook
from openpyxl.styles import Font

from finance_tracker.config import AppConfig
from finance_tracker.database import SQLiteRepository

SheetSpec = dict[str, list[list[object]]]
BoldSpec = dict[str, set[tuple[int, int]]]


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(project_root=tmp_path, database_file=tmp_path / "finance.db")


@pytest.fixture()
def repository(config: AppConfig) -> Iterator[SQLiteRepository]:
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture()
def make_workbook() -> Callable[..., bytes]:
    """Return a builder producing ``.xlsx`` bytes.

    ``sheets`` maps sheet names to rows; ``bold`` maps sheet names to
    0-based ``(row, column)`` coordinates that should use a bold font.
    """

    def build(sheets: SheetSpec, bold: Optional[BoldSpec] = None) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for name, rows in sheets.items():
            sheet = workbook.create_sheet(name)
            for r, row in enumerate(rows):
                for c, value in enumerate(row):
                    if value is None:
                        continue
                    sheet.cell(row=r + 1, column=c + 1, value=value)
            for r, c in (bold or {}).get(name, set()):
                cell = sheet.cell(row=r + 1, column=c + 1)
                cell.font = Font(bold=True)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return build
