import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import cv2
import numpy as np

import settings
from document_extractor import TextRun, cluster_lines
from errors import OcrFailure

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    text: str
    confidence: float  # 0-100


def _default_engine(lang: str):
    from paddleocr import PaddleOCR

    return PaddleOCR(use_angle_cls=True, lang=lang, show_log=False)


class OCRProcessor:
    """Recognizes text on rasterized statement pages with PaddleOCR.

    One processor is meant to be created by the caller and shared across
    imports. The engine is loaded on first use; recognition calls are
    serialized because the engine is not safe for concurrent use.
    """

    def __init__(
        self,
        lang: str = settings.OCR_LANG,
        min_confidence: float = settings.OCR_MIN_CONFIDENCE,
        line_tolerance: float = settings.OCR_LINE_TOLERANCE,
        engine_factory: Optional[Callable[[str], object]] = None,
    ):
        self.lang = lang
        self.min_confidence = min_confidence
        self.line_tolerance = line_tolerance
        self.engine_factory = engine_factory or _default_engine
        self.logger = logging.getLogger(self.__class__.__name__)

        self._engine = None
        self._init_lock = threading.Lock()
        self._recognize_lock = threading.Lock()

    @property
    def engine(self):
        if self._engine is None:
            with self._init_lock:
                if self._engine is None:
                    self.logger.info(f"Initializing OCR engine (lang={self.lang})")
                    try:
                        self._engine = self.engine_factory(self.lang)
                    except Exception as e:
                        raise OcrFailure(f"Could not initialize OCR engine: {str(e)}") from e
        return self._engine

    def recognize(self, image_bytes: bytes) -> OcrResult:
        """
        Run OCR on an encoded image.

        Args:
            image_bytes: PNG/JPEG/... bytes of a page or photo

        Returns:
            Recognized text (one line per visual row) and mean confidence
        """
        nparr = np.frombuffer(image_bytes, np.uint8)
        img = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
        if img is None:
            raise OcrFailure("Could not decode image for OCR")

        engine = self.engine
        with self._recognize_lock:
            try:
                ocr_results = engine.ocr(img, cls=True)
            except Exception as e:
                self.logger.error(f"OCR processing failed: {str(e)}")
                raise OcrFailure(f"OCR processing failed: {str(e)}") from e

        runs: List[TextRun] = []
        confidences = []
        if ocr_results and ocr_results[0]:
            for box, (text, confidence) in ocr_results[0]:
                if confidence < self.min_confidence:
                    continue
                runs.append(TextRun(text, min(point[1] for point in box), min(point[0] for point in box)))
                confidences.append(confidence)

        lines = cluster_lines(runs, self.line_tolerance, sort_by_x=True)
        confidence = 100.0 * sum(confidences) / len(confidences) if confidences else 0.0

        self.logger.info(f"Extracted {len(runs)} text blocks ({confidence:.1f}% confidence)")
        return OcrResult(text='\n'.join(lines), confidence=confidence)

    def close(self):
        with self._init_lock:
            self._engine = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
