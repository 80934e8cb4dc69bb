import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError

import settings
from aggregator import ResultAggregator
from cancellation import CancellationToken
from document_extractor import DocumentReader, ProgressCallback
from errors import StatementImportError
from extractor import ColumnMappingResolver
from file_loader import FileLoader
from normalizer import RowNormalizer
from ocr_processor import OCRProcessor
from schema import FileKind, ImportConfig, ImportedRow, ImportResult, RawDocument

logger = logging.getLogger(__name__)


class StatementImporter:
    """Runs a bank statement through detection, extraction and normalization."""

    def __init__(self, ocr: Optional[OCRProcessor] = None, file_loader: Optional[FileLoader] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.ocr = ocr
        self.file_loader = file_loader or FileLoader()
        self.document_reader = DocumentReader(ocr=ocr, progress_callback=progress_callback)
        self.resolver = ColumnMappingResolver()

    def import_document(self, document: RawDocument, config: Optional[ImportConfig] = None,
                        cancel_token: Optional[CancellationToken] = None) -> ImportResult:
        """
        Import a bank statement end-to-end.

        Args:
            document: Raw uploaded statement
            config: Import options (defaults apply when omitted)
            cancel_token: Optional token checked between long-running steps

        Returns:
            ImportResult; file-level errors are reported in it, never raised
        """
        config = config or ImportConfig()
        logger.info(f"Starting import of {document.name} ({document.size} bytes)")

        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            self.file_loader.check_size(document, config.max_file_size)
            kind = self.file_loader.detect_format(document)

            aggregator = ResultAggregator()
            if kind in (FileKind.DELIMITED_TABLE, FileKind.SPREADSHEET):
                rows = self.file_loader.read_rows(document, kind, config)
            else:
                if kind is FileKind.TEXT_DOCUMENT:
                    reading = self.document_reader.read_pdf(document.content, config, cancel_token)
                else:
                    reading = self.document_reader.read_image(document.content, cancel_token)
                logger.info(f"Read {len(reading.rows)} rows via {reading.stage.value}")
                rows = reading.rows
                for warning in reading.warnings:
                    aggregator.add_warning(warning)

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
        except StatementImportError as e:
            return ResultAggregator.file_failure(e)

        mappings = self.resolver.resolve(self.resolver.row_labels(rows), config)
        transactions, errors = RowNormalizer(config).normalize_rows(rows, mappings)
        for transaction in transactions:
            aggregator.add_transaction(transaction)
        for error in errors:
            aggregator.add_error(error)

        return aggregator.build(total_rows=max(len(rows) - config.skip_rows, 0))

    def import_file(self, file_path: Union[str, Path], config: Optional[ImportConfig] = None,
                    cancel_token: Optional[CancellationToken] = None) -> ImportResult:
        return self.import_document(RawDocument.from_path(file_path), config, cancel_token)

    def preview(self, document: RawDocument, config: Optional[ImportConfig] = None,
                max_rows: int = 10) -> Tuple[List[str], List[ImportedRow]]:
        """First rows of a tabular file, for choosing column mappings."""
        return self.file_loader.preview(document, config or ImportConfig(), max_rows)


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(settings.LOG_FILE)
        ]
    )


def build_config(args: argparse.Namespace) -> ImportConfig:
    return ImportConfig(
        has_header=not args.no_header,
        skip_rows=args.skip_rows,
        date_format=args.date_format,
        decimal_separator=args.decimal_separator,
        thousands_separator=args.thousands_separator,
        client_id=args.client_id,
        bank_code=args.bank_code,
        account_number=args.account_number,
        min_text_chars=args.min_text_chars,
    )


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description='Import transactions from bank statements')
    parser.add_argument('file_path', help='Path to bank statement file (CSV, Excel, PDF or image)')
    parser.add_argument('-o', '--output', help='Output JSON file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    parser.add_argument('--no-header', action='store_true', help='First row is data, not column labels')
    parser.add_argument('--skip-rows', type=int, default=0, help='Leading rows to ignore')
    parser.add_argument('--date-format', help="Date layout, e.g. 'dd/MM/yyyy' or '%%d/%%m/%%Y'")
    parser.add_argument('--decimal-separator', default=',', help="Decimal separator (',' or '.')")
    parser.add_argument('--thousands-separator', default=' ', help="Thousands separator (',', '.', ' ' or '')")
    parser.add_argument('--client-id', default='default', help='Client identifier stamped on transactions')
    parser.add_argument('--bank-code', default='UNKNOWN', help='Bank code stamped on transactions')
    parser.add_argument('--account-number', help='Account number (overrides any account column)')
    parser.add_argument('--min-text-chars', type=int, default=settings.MIN_TEXT_CHARS,
                        help='First-page characters below which a PDF is sent to OCR')

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not Path(args.file_path).exists():
        print(f"Error: File not found - {args.file_path}")
        sys.exit(1)

    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"Error: Invalid options - {str(e)}")
        sys.exit(1)

    with OCRProcessor() as ocr:
        result = StatementImporter(ocr=ocr).import_file(args.file_path, config)

    output_data = result.model_dump(mode='json', by_alias=True)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)
        print(f"Results written to: {args.output}")
    else:
        print(json.dumps(output_data, indent=2, ensure_ascii=False))

    print(f"\nSummary:")
    print(f"- Total rows: {result.total_rows}")
    print(f"- Imported: {result.imported_rows}")
    print(f"- Skipped: {result.skipped_rows}")
    for warning in result.warnings:
        print(f"- Warning: {warning}")

    if any(error.row == 0 for error in result.errors):
        print(f"Error: {result.errors[0].message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
