"""Exceptions that abort a whole upload.

Row-level problems are never raised; they are reported as
:class:`~finance_tracker.models.ParseIssue` values instead.
"""
from __future__ import annotations


class ImportFailedError(Exception):
    """Base class for structural failures that return no records."""


class WorkbookReadError(ImportFailedError):
    """Raised when the upload is not a readable workbook or has no sheets."""


class UploadTooLargeError(ImportFailedError):
    """Raised when the raw upload exceeds the configured byte cap."""


class SheetTooLargeError(ImportFailedError):
    """Raised when a sheet has more rows than the configured cap."""


class ImportFormatError(ImportFailedError):
    """Raised when a sheet does not have the structure its layout requires."""
