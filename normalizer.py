import re
import datetime as dt
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence, Tuple

from dateutil import parser
from dateutil.parser import ParserError

from errors import RowError, RowErrorKind
from schema import (CanonicalField, Cell, CellKind, ColumnMapping, ImportConfig,
                    ImportedRow, NamedTransform, Transaction, TransactionType)

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%d/%m/%Y',
    '%d-%m-%Y',
    '%d.%m.%Y',
    '%Y-%m-%d',
    '%Y/%m/%d',
    '%m/%d/%Y',
    '%d/%m/%y',
    '%d-%m-%y',
    '%d.%m.%y',
]

# dd/MM/yyyy style layouts, as typed by users
_FORMAT_TOKENS = {
    'yyyy': '%Y',
    'yy': '%y',
    'MM': '%m',
    'M': '%m',
    'dd': '%d',
    'd': '%d',
    'HH': '%H',
    'mm': '%M',
    'ss': '%S',
}
_TOKEN_PATTERN = re.compile(r'yyyy|yy|MM|dd|HH|mm|ss|M|d')

# Checked in order; the first matching class wins
TYPE_KEYWORDS = [
    (TransactionType.FEE, re.compile(r'frais|commission|fee|cost|charge', re.IGNORECASE)),
    (TransactionType.INTEREST, re.compile(r'int[eé]r[eê]t|agios|interest', re.IGNORECASE)),
    (TransactionType.TRANSFER, re.compile(r'virement|transfer|vir\b', re.IGNORECASE)),
    (TransactionType.CARD, re.compile(r'carte|card|cb\b|tpe', re.IGNORECASE)),
    (TransactionType.ATM, re.compile(r'retrait|dab|gab|atm|withdrawal', re.IGNORECASE)),
    (TransactionType.CHECK, re.compile(r'ch[eè]que|check|chq', re.IGNORECASE)),
]


def translate_date_format(date_format: str) -> str:
    """Convert a dd/MM/yyyy style layout to a strptime format (strptime formats pass through)."""
    if '%' in date_format:
        return date_format
    return _TOKEN_PATTERN.sub(lambda m: _FORMAT_TOKENS[m.group()], date_format)


class RowNormalizer:
    """Validates imported rows and converts them into canonical transactions."""

    def __init__(self, config: Optional[ImportConfig] = None):
        self.config = config or ImportConfig()
        self.logger = logging.getLogger(self.__class__.__name__)

    def parse_date(self, cell: Cell) -> Optional[dt.date]:
        """
        Parse a date cell, rejecting anything that is not a real calendar date.

        Args:
            cell: Raw cell from the imported row

        Returns:
            Parsed date, or None when the value is not a valid date
        """
        if cell.kind is CellKind.DATE:
            return cell.value
        if cell.kind is not CellKind.TEXT:
            return None

        text = cell.value.strip()
        if not text:
            return None

        formats = list(DATE_FORMATS)
        if self.config.date_format:
            formats.insert(0, translate_date_format(self.config.date_format))

        for date_format in formats:
            try:
                return dt.datetime.strptime(text, date_format).date()
            except ValueError:
                continue

        return self._parse_generic_date(text)

    def _parse_generic_date(self, text: str) -> Optional[dt.date]:
        numbers = [int(group) for group in re.findall(r'\d+', text)]
        if len(numbers) < 3 and not re.search(r'[a-zA-Z]', text):
            return None

        try:
            parsed = parser.parse(text, dayfirst=True)
        except (ParserError, ValueError, OverflowError):
            return None

        # The day we got back must be one the text actually spelled out
        if parsed.day not in numbers:
            self.logger.debug(f"Rejecting date {text!r}: day {parsed.day} not in source")
            return None
        return parsed.date()

    def parse_amount(self, cell: Cell) -> Optional[Decimal]:
        """
        Parse an amount cell using the configured separators.

        Args:
            cell: Raw cell from the imported row

        Returns:
            Decimal amount, or None when the value is not numeric
        """
        if cell.kind is CellKind.NUMBER:
            return cell.value
        if cell.kind is not CellKind.TEXT:
            return None

        text = cell.value.strip()
        negative = False
        if text.startswith('(') and text.endswith(')'):
            negative = True
            text = text[1:-1]

        # Drop currency codes and symbols
        text = re.sub(r"[^\d,.\s'+-]", '', text).strip()

        if text.endswith('-'):
            negative = True
            text = text[:-1]
        elif text.startswith('-'):
            negative = True
            text = text[1:]
        elif text.startswith('+'):
            text = text[1:]

        if self.config.thousands_separator:
            text = text.replace(self.config.thousands_separator, '')
        text = re.sub(r"[\s']", '', text)
        if self.config.decimal_separator != '.':
            text = text.replace(self.config.decimal_separator, '.')

        if not re.fullmatch(r'\d+(\.\d+)?', text):
            return None

        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
        return -value if negative else value

    @staticmethod
    def detect_transaction_type(description: str, amount: Decimal) -> TransactionType:
        for transaction_type, pattern in TYPE_KEYWORDS:
            if pattern.search(description):
                return transaction_type
        return TransactionType.CREDIT if amount >= 0 else TransactionType.DEBIT

    def normalize_rows(self, rows: Sequence[ImportedRow],
                       mappings: Sequence[ColumnMapping]) -> Tuple[List[Transaction], List[RowError]]:
        """
        Normalize every row after the configured skip.

        Args:
            rows: Imported rows in file order
            mappings: Resolved column mappings

        Returns:
            Transactions and row errors, each in row order
        """
        transactions = []
        errors = []
        skip = self.config.skip_rows

        for position, row in enumerate(rows[skip:]):
            index = position + skip + 1
            try:
                transactions.append(self.normalize_row(row, index, mappings))
            except RowError as e:
                self.logger.warning(e.message)
                errors.append(e)

        self.logger.info(f"Normalized {len(transactions)} transactions, rejected {len(errors)} rows")
        return transactions, errors

    def normalize_row(self, row: ImportedRow, index: int, mappings: Sequence[ColumnMapping]) -> Transaction:
        """Convert one row, raising RowError when it cannot be imported."""
        by_field = {}
        for mapping in mappings:
            by_field.setdefault(mapping.target_field, mapping)

        date_cell, date_column = self._field(row, by_field, CanonicalField.DATE)
        date = self.parse_date(date_cell)
        if date is None:
            raise RowError(index, RowErrorKind.INVALID_DATE, date_column, date_cell.as_text())

        amount_cell, amount_column = self._field(row, by_field, CanonicalField.AMOUNT)
        amount = self.parse_amount(amount_cell)
        if amount is None:
            raise RowError(index, RowErrorKind.INVALID_AMOUNT, amount_column, amount_cell.as_text())

        description_cell, description_column = self._field(row, by_field, CanonicalField.DESCRIPTION)
        description = description_cell.as_text().strip()
        if not description:
            raise RowError(index, RowErrorKind.MISSING_DESCRIPTION, description_column)

        value_date = date
        value_date_cell, value_date_column = self._field(row, by_field, CanonicalField.VALUE_DATE)
        if not value_date_cell.is_absent:
            value_date = self.parse_date(value_date_cell)
            if value_date is None:
                raise RowError(index, RowErrorKind.INVALID_DATE, value_date_column, value_date_cell.as_text())

        balance = Decimal('0')
        balance_cell, balance_column = self._field(row, by_field, CanonicalField.BALANCE)
        if not balance_cell.is_absent:
            balance = self.parse_amount(balance_cell)
            if balance is None:
                raise RowError(index, RowErrorKind.INVALID_AMOUNT, balance_column, balance_cell.as_text())

        reference_cell, _ = self._field(row, by_field, CanonicalField.REFERENCE)
        account_cell, _ = self._field(row, by_field, CanonicalField.ACCOUNT_NUMBER)
        account_number = self.config.account_number or account_cell.as_text().strip() or 'N/A'

        return Transaction(
            client_id=self.config.client_id,
            account_number=account_number,
            bank_code=self.config.bank_code,
            date=date,
            value_date=value_date,
            amount=amount,
            balance=balance,
            description=description,
            reference=reference_cell.as_text().strip(),
            type=self.detect_transaction_type(description, amount),
        )

    def _field(self, row: ImportedRow, by_field: Dict[CanonicalField, ColumnMapping],
               target: CanonicalField) -> Tuple[Cell, Optional[str]]:
        mapping = by_field.get(target)
        if mapping is None:
            return Cell.absent(), None

        cell = row.get(mapping.source_column)
        if mapping.transform is None or cell.is_absent:
            return cell, mapping.source_column

        return self._apply_transform(cell, mapping.transform), mapping.source_column

    @staticmethod
    def _apply_transform(cell: Cell, transform: NamedTransform) -> Cell:
        text = transform.apply(cell.as_text())
        if cell.kind is CellKind.NUMBER:
            try:
                return Cell.of_number(Decimal(text))
            except InvalidOperation:
                pass
        return Cell.from_raw(text)
