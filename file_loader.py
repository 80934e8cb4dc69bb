import csv
import io
import logging
from pathlib import PurePath
from typing import List, Optional, Tuple

import pandas as pd

from errors import FileParseFailure, FileTooLarge, UnsupportedFormat
from schema import FileKind, ImportConfig, ImportedRow, RawDocument

logger = logging.getLogger(__name__)


class FileLoader:
    """Detects statement formats and reads tabular files into imported rows."""

    EXTENSIONS = {
        '.csv': FileKind.DELIMITED_TABLE,
        '.tsv': FileKind.DELIMITED_TABLE,
        '.txt': FileKind.DELIMITED_TABLE,
        '.xlsx': FileKind.SPREADSHEET,
        '.xls': FileKind.SPREADSHEET,
        '.pdf': FileKind.TEXT_DOCUMENT,
        '.jpg': FileKind.IMAGE,
        '.jpeg': FileKind.IMAGE,
        '.png': FileKind.IMAGE,
        '.webp': FileKind.IMAGE,
        '.bmp': FileKind.IMAGE,
        '.tif': FileKind.IMAGE,
        '.tiff': FileKind.IMAGE,
    }

    MEDIA_TYPES = {
        'text/csv': FileKind.DELIMITED_TABLE,
        'text/tab-separated-values': FileKind.DELIMITED_TABLE,
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': FileKind.SPREADSHEET,
        'application/vnd.ms-excel': FileKind.SPREADSHEET,
        'application/pdf': FileKind.TEXT_DOCUMENT,
    }

    ENCODINGS = ['utf-8-sig', 'cp1252', 'latin1']
    DELIMITERS = [',', ';', '\t', '|']

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def check_size(self, document: RawDocument, max_size: int):
        """Fail fast on files above the configured limit."""
        if document.size > max_size:
            self.logger.error(f"Rejecting {document.name}: {document.size} bytes exceeds {max_size}")
            raise FileTooLarge(document.size, max_size)

    def detect_format(self, document: RawDocument) -> FileKind:
        """
        Classify a document from its extension, falling back to the declared media type.

        Args:
            document: Raw uploaded document

        Returns:
            Detected file kind (never UNSUPPORTED; that case raises)
        """
        file_ext = PurePath(document.name or '').suffix.lower()
        kind = self.EXTENSIONS.get(file_ext)

        if kind is None:
            media_type = (document.media_type or '').split(';')[0].strip().lower()
            kind = self.MEDIA_TYPES.get(media_type)
            if kind is None and media_type.startswith('image/'):
                kind = FileKind.IMAGE

        if kind is None:
            declared = document.media_type or file_ext or 'unknown'
            raise UnsupportedFormat(f"Unsupported file type: {declared}")

        self.logger.info(f"Detected {kind.value} for {document.name}")
        return kind

    def read_rows(self, document: RawDocument, kind: FileKind, config: ImportConfig) -> List[ImportedRow]:
        if kind is FileKind.DELIMITED_TABLE:
            return self.load_csv(document.content, config)
        if kind is FileKind.SPREADSHEET:
            return self.load_excel(document.content, config)
        raise UnsupportedFormat(f"{kind.value} is not a tabular format")

    def load_csv(self, content: bytes, config: ImportConfig, max_rows: Optional[int] = None) -> List[ImportedRow]:
        """Load a delimited table with encoding and delimiter detection."""
        text = self._decode(content)
        delimiter = self._sniff_delimiter(text)

        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                header=0 if config.has_header else None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                nrows=max_rows,
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as e:
            raise FileParseFailure(f"CSV parsing error: {str(e)}") from e

        self.logger.info(f"Loaded CSV with delimiter {delimiter!r}: {len(df)} rows")
        return self._to_rows(df, config)

    def load_excel(self, content: bytes, config: ImportConfig, max_rows: Optional[int] = None) -> List[ImportedRow]:
        """Load the first worksheet of a workbook."""
        try:
            with pd.ExcelFile(io.BytesIO(content)) as excel_file:
                if not excel_file.sheet_names:
                    raise FileParseFailure("No worksheet found in the Excel file")

                sheet_name = excel_file.sheet_names[0]
                df = excel_file.parse(
                    sheet_name=sheet_name,
                    header=0 if config.has_header else None,
                    nrows=max_rows,
                )
        except FileParseFailure:
            raise
        except Exception as e:
            raise FileParseFailure(f"Excel parsing error: {str(e)}") from e

        df = df.dropna(how='all')
        self.logger.info(f"Using first sheet: {sheet_name} ({len(df)} rows)")
        return self._to_rows(df, config)

    def preview(self, document: RawDocument, config: ImportConfig, max_rows: int = 10) -> Tuple[List[str], List[ImportedRow]]:
        """Return the column labels and the first rows of a tabular file."""
        kind = self.detect_format(document)
        if kind is FileKind.DELIMITED_TABLE:
            rows = self.load_csv(document.content, config, max_rows=max_rows)
        elif kind is FileKind.SPREADSHEET:
            rows = self.load_excel(document.content, config, max_rows=max_rows)
        else:
            raise UnsupportedFormat(f"Preview is not available for {kind.value} files")

        headers = rows[0].labels() if rows else []
        return headers, rows

    def _decode(self, content: bytes) -> str:
        for encoding in self.ENCODINGS:
            try:
                text = content.decode(encoding)
                self.logger.debug(f"Decoded CSV with {encoding} encoding")
                return text
            except UnicodeDecodeError:
                continue

        raise FileParseFailure(f"Could not decode CSV file with any of the tried encodings: {self.ENCODINGS}")

    def _sniff_delimiter(self, text: str) -> str:
        """Pick the candidate delimiter that splits the first line the most."""
        first_line = next((line for line in text.splitlines() if line.strip()), '')
        counts = {delimiter: first_line.count(delimiter) for delimiter in self.DELIMITERS}
        best = max(self.DELIMITERS, key=lambda d: counts[d])
        return best if counts[best] > 0 else ','

    def _to_rows(self, df: pd.DataFrame, config: ImportConfig) -> List[ImportedRow]:
        labels = []
        for idx, column in enumerate(df.columns):
            label = str(column).strip()
            if not config.has_header or not label or label.startswith('Unnamed:'):
                label = f"Col{idx + 1}"
            labels.append(label)
        df.columns = labels

        return [ImportedRow.from_values(record) for record in df.to_dict('records')]
