import io
from typing import List, Optional

import fitz
import pandas as pd
import pytest

from errors import OcrFailure
from ocr_processor import OcrResult
from schema import RawDocument


class FakeOcr:
    """Stands in for OCRProcessor: returns canned page texts and records calls."""

    def __init__(self, pages: List[str], fail_pages: Optional[set] = None):
        self.pages = pages
        self.fail_pages = fail_pages or set()
        self.calls = 0

    def recognize(self, image_bytes: bytes) -> OcrResult:
        self.calls += 1
        if self.calls in self.fail_pages:
            raise OcrFailure(f"engine error on call {self.calls}")
        return OcrResult(text=self.pages[self.calls - 1], confidence=95.0)


def make_pdf(pages: List[List[str]]) -> bytes:
    """Build a PDF with one text line per entry; an empty list gives a blank (image-like) page."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        for i, line in enumerate(lines):
            page.insert_text((50, 72 + i * 20), line, fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def make_xlsx(df: pd.DataFrame, header: bool = True) -> bytes:
    buffer = io.BytesIO()
    df.to_excel(buffer, index=False, header=header)
    return buffer.getvalue()


@pytest.fixture
def statement_lines():
    return [
        "Date Libelle Montant Solde",
        "15/03/2024 Virement recu 150 000,00 1 250 000,00",
        "16/03/2024 Retrait DAB Akwa -20 000,00 1 230 000,00",
        "18/03/2024 Frais de tenue de compte -5 000,00 1 225 000,00",
    ]


@pytest.fixture
def csv_document():
    content = (
        "Date,Description,Montant,Solde\n"
        "15/03/2024,Frais de tenue de compte,-5000,120000\n"
        "16/03/2024,Retrait DAB,-20000,100000\n"
    ).encode("utf-8")
    return RawDocument(content=content, name="releve.csv", media_type="text/csv")
