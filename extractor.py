import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from schema import CanonicalField, Cell, ColumnMapping, ImportConfig, ImportedRow

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r'(?<!\d)(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})(?!\d)')

# Signed digit groups with an optional thousands separator and a mandatory
# decimal part, optionally followed by a trailing minus and a currency marker.
AMOUNT_PATTERN = re.compile(
    r"(?<![\w.,/])"
    r"(?:(?P<sign>[+-])\s?)?"
    r"(?:[€$£]\s?)?"
    r"(?P<integer>\d{1,3}(?:[ \u00a0\u202f.,']\d{3})+|\d+)"
    r"[.,](?P<decimals>\d{1,2})"
    r"(?!\d|[.,/]\d)"
    r"(?P<trailing>-)?"
    r"(?:\s?(?:€|(?:EUR|XAF|XOF|F\s?CFA|USD)\b))?",
    re.IGNORECASE,
)

HEADER_PATTERN = re.compile(
    r'^\s*(date|libell[eé]|description|montant|amount|solde|balance|d[eé]bit|cr[eé]dit|r[eé]f[eé]rence)',
    re.IGNORECASE,
)

SPLIT_AMOUNT_PATTERN = re.compile(r'd[eé]bit|cr[eé]dit', re.IGNORECASE)


@dataclass
class LineReconstruction:
    rows: List[ImportedRow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class LineReconstructor:
    """Rebuilds statement rows from plain text lines (PDF text layer or OCR)."""

    MIN_LINE_LENGTH = 10
    MIN_DESCRIPTION_LENGTH = 3

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def reconstruct(self, lines: Sequence[str]) -> LineReconstruction:
        """
        Extract date/description/amount/balance rows from text lines.

        Args:
            lines: Text lines in reading order

        Returns:
            Reconstructed rows plus warnings for amounts that were left unassigned
        """
        result = LineReconstruction()

        for line_num, line in enumerate(lines, 1):
            line = line.strip()
            if len(line) < self.MIN_LINE_LENGTH or HEADER_PATTERN.match(line):
                continue

            date_match = DATE_PATTERN.search(line)
            if not date_match:
                continue

            amounts = list(AMOUNT_PATTERN.finditer(line, date_match.end()))
            if not amounts:
                continue

            row = {
                'date': Cell.of_text(date_match.group(1)),
                'description': Cell.from_raw(self._description(line, date_match.end(), amounts)),
                'amount': Cell.of_number(self._to_decimal(amounts[0])),
            }
            if len(amounts) > 1:
                row['balance'] = Cell.of_number(self._to_decimal(amounts[1]))
            if len(amounts) > 2:
                unclaimed = ', '.join(match.group(0).strip() for match in amounts[2:])
                message = f"Line {line_num}: {len(amounts) - 2} amount(s) not assigned ({unclaimed})"
                self.logger.warning(message)
                result.warnings.append(message)

            result.rows.append(ImportedRow(row))

        self.logger.info(f"Reconstructed {len(result.rows)} rows from {len(lines)} lines")
        return result

    def _description(self, line: str, date_end: int, amounts: List[re.Match]) -> str:
        description = self._clean(line[date_end:amounts[0].start()])

        if len(description) < self.MIN_DESCRIPTION_LENGTH:
            remainder = AMOUNT_PATTERN.sub(' ', line[date_end:])
            description = self._clean(' '.join(remainder.split()))

        return description

    @staticmethod
    def _clean(text: str) -> str:
        text = re.sub(r'^[\s\-:;,.|/]+', '', text)
        return re.sub(r'[\s\-:;,|/]+$', '', text)

    @staticmethod
    def _to_decimal(match: re.Match) -> Decimal:
        digits = re.sub(r'\D', '', match.group('integer'))
        negative = match.group('sign') == '-' or match.group('trailing') == '-'
        value = Decimal(f"{digits}.{match.group('decimals')}")
        return -value if negative else value


class ColumnMappingResolver:
    """Maps source column labels onto canonical transaction fields."""

    # More specific fields come first so that "Date valeur" is claimed by
    # valueDate before the generic date patterns see it.
    FIELD_PATTERNS = [
        (CanonicalField.VALUE_DATE, [r'date.*val', r'val.*date', r'value.*date']),
        (CanonicalField.DATE, [r'date', r'(?<![a-z])dt(?![a-z])', r'jour']),
        (CanonicalField.AMOUNT, [r'montant', r'amount', r'somme', r'd[eé]bit|cr[eé]dit']),
        (CanonicalField.BALANCE, [r'solde', r'balance']),
        (CanonicalField.DESCRIPTION, [r'libell[eé]', r'description', r'motif', r'label', r'narration', r'd[eé]tail', r'particulars']),
        (CanonicalField.REFERENCE, [r'r[eé]f', r'^(?!.*(?:compte|account|iban)).*(?:num[eé]ro|number)']),
        (CanonicalField.ACCOUNT_NUMBER, [r'compte', r'account', r'iban']),
    ]

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._patterns = [
            (target, [re.compile(pattern, re.IGNORECASE) for pattern in patterns])
            for target, patterns in self.FIELD_PATTERNS
        ]

    def resolve(self, labels: Sequence[str], config: Optional[ImportConfig] = None) -> List[ColumnMapping]:
        """Use explicit mappings when configured, otherwise detect them from labels."""
        if config is not None and config.column_mappings:
            self.logger.info(f"Using {len(config.column_mappings)} configured column mappings")
            return list(config.column_mappings)

        return self.auto_detect(labels)

    def auto_detect(self, labels: Sequence[str]) -> List[ColumnMapping]:
        mappings = []
        claimed = set()

        for target, regexes in self._patterns:
            for label in labels:
                if label in claimed:
                    continue
                if any(regex.search(label) for regex in regexes):
                    mappings.append(ColumnMapping(source_column=label, target_field=target))
                    claimed.add(label)
                    break

        column_map = {m.target_field.value: m.source_column for m in mappings}
        self.logger.info(f"Column mapping: {column_map}")

        split_columns = [label for label in labels if SPLIT_AMOUNT_PATTERN.search(label)]
        if len(split_columns) > 1:
            self.logger.warning(
                f"Separate debit/credit columns {split_columns}: only "
                f"'{column_map.get(CanonicalField.AMOUNT.value)}' is mapped to amount, "
                f"pass explicit column mappings to import the others"
            )
        return mappings

    @staticmethod
    def row_labels(rows: Sequence[ImportedRow]) -> List[str]:
        """Ordered union of the labels present across rows."""
        labels = {}
        for row in rows:
            for label in row.labels():
                labels.setdefault(label, None)
        return list(labels)
