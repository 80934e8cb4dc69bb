import logging
from typing import List

from errors import RowError, StatementImportError
from schema import ImportErrorEntry, ImportResult, Transaction

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Collects the outcome of one import into an ImportResult."""

    def __init__(self):
        self.transactions: List[Transaction] = []
        self.errors: List[ImportErrorEntry] = []
        self.warnings: List[str] = []

    def add_transaction(self, transaction: Transaction):
        self.transactions.append(transaction)

    def add_error(self, error: RowError):
        self.errors.append(ImportErrorEntry(
            row=error.row,
            message=error.message,
            reason=error.reason,
            column=error.column,
            value=error.value,
        ))

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    def build(self, total_rows: int) -> ImportResult:
        result = ImportResult(
            success=not self.errors,
            total_rows=total_rows,
            imported_rows=len(self.transactions),
            skipped_rows=len(self.errors),
            errors=list(self.errors),
            transactions=list(self.transactions),
            warnings=list(self.warnings),
        )
        logger.info(
            f"Import finished: {result.imported_rows}/{result.total_rows} imported, "
            f"{result.skipped_rows} skipped"
        )
        return result

    @classmethod
    def file_failure(cls, error: StatementImportError) -> ImportResult:
        """The short-circuit result for a file-level error."""
        logger.error(f"Import failed ({error.reason}): {error.message}")
        return ImportResult(
            success=False,
            errors=[ImportErrorEntry(row=0, message=error.message, reason=error.reason)],
        )
