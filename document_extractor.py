"""
Text extraction for PDF statements and the OCR fallback for scanned documents.
"""
import io
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

import fitz  # PyMuPDF for rasterizing pages
import pdfplumber

import settings
from cancellation import CancellationToken
from errors import FileParseFailure, NoTransactionsDetected, OcrFailure
from extractor import LineReconstruction, LineReconstructor
from schema import ImportConfig, ImportedRow

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class TextRun(NamedTuple):
    text: str
    top: float
    x0: float


def cluster_lines(runs: Sequence[TextRun], tolerance: float, sort_by_x: bool = False) -> List[str]:
    """
    Group positioned text runs into lines.

    Runs whose vertical position rounds to the same multiple of `tolerance`
    share a line. Lines are returned top to bottom; within a line runs keep
    their original order unless `sort_by_x` is set.
    """
    buckets: Dict[float, List[TextRun]] = {}
    for run in runs:
        key = math.floor(run.top / tolerance + 0.5) * tolerance
        buckets.setdefault(key, []).append(run)

    lines = []
    for key in sorted(buckets):
        line_runs = buckets[key]
        if sort_by_x:
            line_runs = sorted(line_runs, key=lambda run: run.x0)
        text = ' '.join(run.text.strip() for run in line_runs if run.text.strip())
        if text:
            lines.append(text)
    return lines


@dataclass
class PdfText:
    lines: List[str]
    page_count: int
    first_page_chars: int


class DocumentTextExtractor:
    """Reads the text layer of PDFs and renders pages for OCR."""

    def __init__(self, line_tolerance: float = settings.LINE_TOLERANCE):
        self.line_tolerance = line_tolerance
        self.logger = logging.getLogger(self.__class__.__name__)

    def extract(self, content: bytes) -> PdfText:
        """
        Extract text lines from every page using pdfplumber.

        Args:
            content: PDF bytes

        Returns:
            Lines in reading order, page count and first-page character count
        """
        lines = []
        first_page_chars = 0

        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                page_count = len(pdf.pages)
                for page_num, page in enumerate(pdf.pages):
                    words = page.extract_words(keep_blank_chars=True)
                    runs = [TextRun(word['text'], word['top'], word['x0']) for word in words]
                    page_lines = cluster_lines(runs, self.line_tolerance)
                    if page_num == 0:
                        first_page_chars = len('\n'.join(page_lines).strip())
                    lines.extend(page_lines)
                    self.logger.debug(f"Page {page_num + 1}: {len(page_lines)} lines")
        except Exception as e:
            raise FileParseFailure(f"Error reading PDF file: {str(e)}") from e

        self.logger.info(f"Extracted {len(lines)} lines from {page_count} PDF pages")
        return PdfText(lines=lines, page_count=page_count, first_page_chars=first_page_chars)

    def render_pages(self, content: bytes, scale: float = settings.OCR_RENDER_SCALE) -> List[bytes]:
        """Rasterize every page to PNG bytes at the given scale."""
        images = []
        try:
            with fitz.open(stream=content, filetype="pdf") as pdf_document:
                matrix = fitz.Matrix(scale, scale)
                for page in pdf_document:
                    pix = page.get_pixmap(matrix=matrix)
                    images.append(pix.tobytes("png"))
        except Exception as e:
            raise FileParseFailure(f"Error rendering PDF pages: {str(e)}") from e

        self.logger.info(f"Rendered {len(images)} pages at {scale}x for OCR")
        return images


class ExtractionStage(str, Enum):
    DIRECT_EXTRACTION = "direct-extraction"
    OCR_FALLBACK = "ocr-fallback"


def needs_ocr(row_count: int, first_page_chars: int, threshold: int) -> bool:
    """A document goes to OCR when direct extraction found nothing or the first page is (almost) image-only."""
    return row_count == 0 or first_page_chars < threshold


@dataclass
class DocumentReading:
    stage: ExtractionStage
    rows: List[ImportedRow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    pages: int = 0


class DocumentReader:
    """Turns PDFs and images into imported rows, falling back to OCR once."""

    def __init__(
        self,
        ocr=None,
        text_extractor: Optional[DocumentTextExtractor] = None,
        reconstructor: Optional[LineReconstructor] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.ocr = ocr
        self.text_extractor = text_extractor or DocumentTextExtractor()
        self.reconstructor = reconstructor or LineReconstructor()
        self.progress_callback = progress_callback
        self.logger = logging.getLogger(self.__class__.__name__)

    def read_pdf(self, content: bytes, config: ImportConfig,
                 cancel_token: Optional[CancellationToken] = None) -> DocumentReading:
        stage = ExtractionStage.DIRECT_EXTRACTION
        self.logger.info(f"Stage {stage.value}")
        pdf_text = self.text_extractor.extract(content)
        direct = self.reconstructor.reconstruct(pdf_text.lines)

        if not needs_ocr(len(direct.rows), pdf_text.first_page_chars, config.min_text_chars):
            return DocumentReading(stage, direct.rows, direct.warnings, pdf_text.page_count)

        stage = ExtractionStage.OCR_FALLBACK
        self.logger.info(
            f"Stage {stage.value}: {len(direct.rows)} rows, "
            f"{pdf_text.first_page_chars} chars on first page (threshold {config.min_text_chars})"
        )
        if self.ocr is None and direct.rows:
            return self._keep_direct(direct, pdf_text.page_count, "no OCR processor was provided")

        pages = self.text_extractor.render_pages(content, config.ocr_render_scale)
        try:
            reading = self._ocr_pages(pages, cancel_token)
        except (OcrFailure, NoTransactionsDetected) as e:
            # Rows already found in the text layer are never thrown away
            if not direct.rows:
                raise
            return self._keep_direct(direct, pdf_text.page_count, e.message)

        reading.pages = len(pages)
        return reading

    def _keep_direct(self, direct: LineReconstruction, page_count: int, cause: str) -> DocumentReading:
        warning = f"OCR fallback skipped or empty ({cause}); keeping {len(direct.rows)} rows from the PDF text layer"
        self.logger.warning(warning)
        return DocumentReading(ExtractionStage.DIRECT_EXTRACTION, direct.rows,
                               direct.warnings + [warning], page_count)

    def read_image(self, content: bytes,
                   cancel_token: Optional[CancellationToken] = None) -> DocumentReading:
        self.logger.info(f"Stage {ExtractionStage.OCR_FALLBACK.value} for image")
        return self._ocr_pages([content], cancel_token)

    def _ocr_pages(self, pages: List[bytes], cancel_token: Optional[CancellationToken]) -> DocumentReading:
        if self.ocr is None:
            raise OcrFailure("OCR is required for this document but no OCR processor was provided")

        texts = []
        failures = 0
        for page_num, image in enumerate(pages, 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                result = self.ocr.recognize(image)
                texts.append(result.text)
                self.logger.info(f"OCR page {page_num}/{len(pages)}: {result.confidence:.1f}% confidence")
            except OcrFailure as e:
                failures += 1
                self.logger.warning(f"OCR failed on page {page_num}: {e.message}")

            if self.progress_callback is not None:
                self.progress_callback(page_num, len(pages))

        if pages and failures == len(pages):
            raise OcrFailure(f"OCR failed on all {len(pages)} pages")

        joined = f"\n{settings.PAGE_BREAK_MARKER}\n".join(texts)
        reconstruction = self.reconstructor.reconstruct(joined.splitlines())
        if not reconstruction.rows:
            raise NoTransactionsDetected("No transactions detected in the document, even after OCR")

        return DocumentReading(ExtractionStage.OCR_FALLBACK, reconstruction.rows,
                               reconstruction.warnings, len(pages))
