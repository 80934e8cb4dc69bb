import threading
import time

import cv2
import numpy as np
import pytest

from errors import OcrFailure
from ocr_processor import OCRProcessor


def png_bytes():
    ok, encoded = cv2.imencode(".png", np.full((20, 40, 3), 255, dtype=np.uint8))
    assert ok
    return encoded.tobytes()


def box(x, y, width=40, height=10):
    return [[x, y], [x + width, y], [x + width, y + height], [x, y + height]]


class FakeEngine:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def ocr(self, img, cls=True):
        self.calls.append(img.shape)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_recognize_groups_fragments_into_lines():
    engine = FakeEngine([[
        [box(100, 10), ("Virement recu", 0.90)],
        [box(10, 12), ("15/03/2024", 0.95)],
        [box(200, 11), ("150 000,00", 0.80)],
        [box(10, 40), ("16/03/2024 Retrait DAB -20 000,00", 0.85)],
        [box(10, 70), ("~~~", 0.20)],
    ]])
    processor = OCRProcessor(engine_factory=lambda lang: engine)

    result = processor.recognize(png_bytes())

    assert result.text.splitlines() == [
        "15/03/2024 Virement recu 150 000,00",
        "16/03/2024 Retrait DAB -20 000,00",
    ]
    assert result.confidence == pytest.approx(87.5)
    assert len(engine.calls) == 1


def test_recognize_empty_page():
    processor = OCRProcessor(engine_factory=lambda lang: FakeEngine([None]))

    result = processor.recognize(png_bytes())

    assert result.text == ""
    assert result.confidence == 0.0


def test_recognize_undecodable_image():
    engine = FakeEngine([[]])
    processor = OCRProcessor(engine_factory=lambda lang: engine)

    with pytest.raises(OcrFailure):
        processor.recognize(b"not an image")
    assert engine.calls == []


def test_engine_error_becomes_ocr_failure():
    processor = OCRProcessor(engine_factory=lambda lang: FakeEngine(RuntimeError("boom")))

    with pytest.raises(OcrFailure) as exc_info:
        processor.recognize(png_bytes())
    assert "boom" in exc_info.value.message


def test_engine_factory_failure():
    def broken_factory(lang):
        raise RuntimeError("model download failed")

    processor = OCRProcessor(engine_factory=broken_factory)
    with pytest.raises(OcrFailure):
        processor.recognize(png_bytes())


def test_concurrent_first_use_initializes_once():
    created = []

    def slow_factory(lang):
        time.sleep(0.05)
        created.append(lang)
        return FakeEngine([[]])

    processor = OCRProcessor(lang="fr", engine_factory=slow_factory)
    barrier = threading.Barrier(8)
    engines = []

    def worker():
        barrier.wait()
        engines.append(processor.engine)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert created == ["fr"]
    assert len(engines) == 8
    assert all(engine is engines[0] for engine in engines)


def test_engine_is_lazy_and_released_on_close():
    created = []

    def factory(lang):
        created.append(lang)
        return FakeEngine([[]])

    with OCRProcessor(engine_factory=factory) as processor:
        assert created == []
        processor.recognize(png_bytes())
        assert len(created) == 1

    assert processor._engine is None
    processor.recognize(png_bytes())
    assert len(created) == 2
