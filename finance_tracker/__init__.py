"""finance_tracker backend package."""
from __future__ import annotations

from .api import app

__all__ = ["app"]
