"""
Error taxonomy for statement imports.

File-level errors abort the import of a file and are reported with row 0.
Row errors only reject the offending row.
"""

from enum import Enum
from typing import Optional


class StatementImportError(Exception):
    """Base class for every failure raised by the import pipeline."""

    reason = "ImportFailure"
    row = 0

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FileTooLarge(StatementImportError):
    reason = "FileTooLarge"

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"File too large: {size} bytes (maximum {limit // (1024 * 1024)} MB)"
        )
        self.size = size
        self.limit = limit


class UnsupportedFormat(StatementImportError):
    reason = "UnsupportedFormat"


class FileParseFailure(StatementImportError):
    reason = "FileParseFailure"


class NoTransactionsDetected(StatementImportError):
    reason = "NoTransactionsDetected"


class OcrFailure(StatementImportError):
    reason = "OcrFailure"


class ImportCancelled(StatementImportError):
    reason = "ImportCancelled"


class RowErrorKind(str, Enum):
    INVALID_DATE = "InvalidDate"
    INVALID_AMOUNT = "InvalidAmount"
    MISSING_DESCRIPTION = "MissingDescription"


_ROW_MESSAGES = {
    RowErrorKind.INVALID_DATE: "Invalid date",
    RowErrorKind.INVALID_AMOUNT: "Invalid amount",
    RowErrorKind.MISSING_DESCRIPTION: "Missing description",
}


class RowError(StatementImportError):
    """A single row could not be turned into a transaction."""

    def __init__(
        self,
        index: int,
        kind: RowErrorKind,
        column: Optional[str] = None,
        value: Optional[str] = None,
    ):
        message = f"{_ROW_MESSAGES[kind]} at row {index}"
        if column:
            message += f" (column '{column}'"
            message += f", value '{value}')" if value else ")"
        super().__init__(message)
        self.row = index
        self.kind = kind
        self.column = column
        self.value = value

    @property
    def reason(self) -> str:
        return self.kind.value
