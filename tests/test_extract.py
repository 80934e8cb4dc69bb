import datetime as dt
import json
from decimal import Decimal

import pandas as pd
import pytest

from cancellation import CancellationToken
from conftest import FakeOcr, make_pdf, make_xlsx
from extract import StatementImporter, main
from schema import CanonicalField, ColumnMapping, ImportConfig, RawDocument, TransactionType

VOLATILE = {"id", "created_at", "updated_at"}


def stable(result):
    return [t.model_dump(exclude=VOLATILE) for t in result.transactions]


def test_csv_statement(csv_document):
    result = StatementImporter().import_document(csv_document)

    assert result.success
    assert result.total_rows == 2
    assert result.imported_rows == 2
    assert result.skipped_rows == 0

    fee = result.transactions[0]
    assert fee.date == dt.date(2024, 3, 15)
    assert fee.amount == Decimal("-5000")
    assert fee.balance == Decimal("120000")
    assert fee.type is TransactionType.FEE
    assert result.transactions[1].type is TransactionType.ATM


def test_invalid_date_row_is_reported_with_index():
    content = (
        "Date,Libellé,Montant\n"
        "15/03/2024,Salaire,500000\n"
        "31/02/2024,Achat,-1000\n"
        "16/03/2024,Retrait DAB,-20000\n"
    ).encode("utf-8")

    result = StatementImporter().import_document(RawDocument(content, "releve.csv"))

    assert not result.success
    assert result.total_rows == 3
    assert result.imported_rows == 2
    assert result.skipped_rows == 1
    assert result.errors[0].row == 2
    assert result.errors[0].reason == "InvalidDate"
    assert result.errors[0].column == "Date"
    assert result.errors[0].value == "31/02/2024"


def test_value_date_column():
    content = "Date;Date valeur;Libellé;Montant\n15/03/2024;17/03/2024;Virement recu;150 000,00\n".encode("utf-8")

    result = StatementImporter().import_document(RawDocument(content, "releve.csv"))

    transaction = result.transactions[0]
    assert transaction.date == dt.date(2024, 3, 15)
    assert transaction.value_date == dt.date(2024, 3, 17)
    assert transaction.amount == Decimal("150000.00")


def test_import_is_repeatable(csv_document):
    importer = StatementImporter()
    first = importer.import_document(csv_document)
    second = importer.import_document(csv_document)

    assert stable(first) == stable(second)
    assert first.transactions[0].id != second.transactions[0].id


def test_excel_statement():
    df = pd.DataFrame(
        {
            "Date opération": [dt.datetime(2024, 3, 15), dt.datetime(2024, 3, 16)],
            "Libellé": ["Agios", "Paiement carte"],
            "Débit": [-1200, -8000],
        }
    )
    document = RawDocument(make_xlsx(df), "releve.xlsx")

    result = StatementImporter().import_document(document, ImportConfig(bank_code="SGC"))

    assert result.success
    assert [t.type for t in result.transactions] == [TransactionType.INTEREST, TransactionType.CARD]
    assert result.transactions[0].bank_code == "SGC"
    assert result.transactions[1].amount == Decimal("-8000")


def test_explicit_mappings_without_header():
    content = b"15/03/2024;Salaire;500 000,00\n16/03/2024;Loyer;-150 000,00\n"
    config = ImportConfig(
        has_header=False,
        column_mappings=[
            ColumnMapping(source_column="Col1", target_field=CanonicalField.DATE),
            ColumnMapping(source_column="Col2", target_field=CanonicalField.DESCRIPTION),
            ColumnMapping(source_column="Col3", target_field=CanonicalField.AMOUNT),
        ],
    )

    result = StatementImporter().import_document(RawDocument(content, "releve.csv"), config)

    assert result.imported_rows == 2
    assert [t.type for t in result.transactions] == [TransactionType.CREDIT, TransactionType.DEBIT]


def test_oversized_file(csv_document):
    result = StatementImporter().import_document(csv_document, ImportConfig(max_file_size=10))

    assert not result.success
    assert result.total_rows == 0
    assert result.transactions == []
    assert len(result.errors) == 1
    assert result.errors[0].row == 0
    assert result.errors[0].reason == "FileTooLarge"


def test_unsupported_format():
    result = StatementImporter().import_document(RawDocument(b"PK", "releve.docx", "application/msword"))

    assert len(result.errors) == 1
    assert result.errors[0].reason == "UnsupportedFormat"


def test_corrupt_workbook():
    result = StatementImporter().import_document(RawDocument(b"garbage", "releve.xlsx"))

    assert result.errors[0].reason == "FileParseFailure"
    assert result.transactions == []


def test_text_pdf_matches_ocr_of_scanned_pdf(statement_lines):
    native = StatementImporter().import_document(RawDocument(make_pdf([statement_lines]), "releve.pdf"))

    ocr = FakeOcr(["\n".join(statement_lines[:2]), "\n".join(statement_lines[2:])])
    scanned = StatementImporter(ocr=ocr).import_document(RawDocument(make_pdf([[], []]), "scan.pdf"))

    assert ocr.calls == 2
    assert native.imported_rows == 3
    assert stable(native) == stable(scanned)

    transfer = native.transactions[0]
    assert transfer.amount == Decimal("150000.00")
    assert transfer.balance == Decimal("1250000.00")
    assert transfer.type is TransactionType.TRANSFER


def test_pdf_without_transactions():
    ocr = FakeOcr(["Aucun mouvement sur la periode"])
    result = StatementImporter(ocr=ocr).import_document(RawDocument(make_pdf([[]]), "releve.pdf"))

    assert result.errors[0].reason == "NoTransactionsDetected"
    assert result.total_rows == 0


def test_image_needs_ocr_processor():
    result = StatementImporter().import_document(RawDocument(b"\xff\xd8", "photo.jpg"))

    assert result.errors[0].reason == "OcrFailure"


def test_image_statement(statement_lines):
    ocr = FakeOcr(["\n".join(statement_lines + ["19/03/2024 Achat 10,00 20,00 30,00"])])

    result = StatementImporter(ocr=ocr).import_document(RawDocument(b"\xff\xd8", "photo.jpg"))

    assert result.imported_rows == 4
    assert len(result.warnings) == 1


def test_cancelled_before_start(csv_document):
    token = CancellationToken()
    token.cancel()

    result = StatementImporter().import_document(csv_document, cancel_token=token)

    assert result.errors[0].reason == "ImportCancelled"
    assert result.transactions == []


def test_skip_rows_reduces_total():
    content = b"Date,Description,Montant\n15/03/2024,Salaire,1\n16/03/2024,Loyer,-1\n"
    result = StatementImporter().import_document(RawDocument(content, "releve.csv"), ImportConfig(skip_rows=1))

    assert result.total_rows == 1
    assert result.transactions[0].description == "Loyer"


def test_preview(csv_document):
    headers, rows = StatementImporter().preview(csv_document, max_rows=1)

    assert headers == ["Date", "Description", "Montant", "Solde"]
    assert len(rows) == 1


def test_cli_writes_camel_case_json(tmp_path, monkeypatch, csv_document):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "releve.csv"
    source.write_bytes(csv_document.content)
    output = tmp_path / "out.json"

    main([str(source), "-o", str(output), "--bank-code", "BICEC"])

    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["success"] is True
    assert data["importedRows"] == 2
    first = data["transactions"][0]
    assert first["bankCode"] == "BICEC"
    assert first["valueDate"] == "2024-03-15"
    assert first["type"] == "FEE"


def test_cli_exits_on_file_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "releve.docx"
    source.write_bytes(b"PK")

    with pytest.raises(SystemExit) as exc_info:
        main([str(source)])
    assert exc_info.value.code == 1


def test_short_text_pdf_imports_without_ocr():
    document = RawDocument(make_pdf([["15/03/2024 Achat 10,00 20,00"]]), "releve.pdf")

    result = StatementImporter().import_document(document)

    assert result.success
    assert result.imported_rows == 1
    assert result.transactions[0].balance == Decimal("20.00")
    assert len(result.warnings) == 1
