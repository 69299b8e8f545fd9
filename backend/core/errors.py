"""
errors.py — Error taxonomy shared by the gateway, import and export layers.

Every error is terminal to the action that raised it only. Routes translate
these into HTTP responses; none of them touch the session snapshot.
"""

from typing import Optional


class DashboardError(Exception):
    """Base class for user-facing failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(DashboardError):
    """Invalid credentials, unconfirmed account or missing session."""

    status_code = 401


class FetchError(DashboardError):
    """Network or store failure while reading records."""

    status_code = 502


class SaveError(DashboardError):
    """Insert / update / delete rejected by the store or by form checks."""

    status_code = 400


class StudentImportError(DashboardError):
    """Malformed import file or store rejection during bulk upsert.

    ``upserted_count`` is the number of rows already written before the
    failure. Those rows are not rolled back.
    """

    status_code = 400

    def __init__(self, message: str, upserted_count: int = 0, details: Optional[dict] = None):
        super().__init__(message)
        self.upserted_count = upserted_count
        self.details = details or {}


class ExportError(DashboardError):
    """Document or workbook construction failed."""

    status_code = 500


class EmptyExportError(ExportError):
    """Nothing to export for the requested selection."""

    status_code = 400
