"""Pytest configuration, builders and fakes for subtitle_ocr tests."""

import threading
import time

import numpy as np
import pytest

from subtitle_ocr.backends.base import RecognitionEngine, RecognitionResult
from subtitle_ocr.bitmap.pgs import CompositionObject, CompositionState, WindowDefinition, encode_pgs_display_set
from subtitle_ocr.bitmap.vobsub import encode_spu_packet
from subtitle_ocr.config import get_settings
from subtitle_ocr.models import Packet, Track

# VobSub .idx header: palette entry 1 is black, 2 white, 3 grey.
BLACK_ON_CLEAR_IDX = (
    b"# VobSub index file, v7\n"
    b"size: 720x480\n"
    b"palette: 000000, 000000, ffffff, 808080, 000000, 000000, 000000, 000000, "
    b"000000, 000000, 000000, 000000, 000000, 000000, 000000, 000000\n"
)

# PGS palette entries as (Y, Cr, Cb, alpha)
PGS_WHITE = (255, 128, 128, 255)
PGS_BLACK = (0, 128, 128, 255)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; reset around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def square_codes(size: int = 8, square: int = 4, offset: int = 2, code: int = 1) -> np.ndarray:
    """Code grid with a filled square of ``code`` on background 0."""
    codes = np.zeros((size, size), dtype=np.uint8)
    codes[offset : offset + square, offset : offset + square] = code
    return codes


def text_track(track_id: int = 1, texts=(("Hello", 1000, 2000),), codec_id: str = "S_TEXT/UTF8", language="eng"):
    packets = tuple(Packet(text.encode("utf-8"), start, end) for text, start, end in texts)
    return Track(track_id=track_id, codec_id=codec_id, language=language, packets=packets)


def vobsub_track(track_id: int = 2, payloads=None, start: int = 0, step: int = 2000) -> Track:
    if payloads is None:
        payloads = [encode_spu_packet(square_codes())]
    packets = tuple(
        Packet(payload, start + n * step, start + n * step + step - 500) for n, payload in enumerate(payloads)
    )
    return Track(
        track_id=track_id,
        codec_id="S_VOBSUB",
        language="eng",
        codec_private=BLACK_ON_CLEAR_IDX,
        packets=packets,
    )


def pgs_display_set(grid=None, x: int = 100, y: int = 900, **kwargs) -> bytes:
    """Epoch-start display set showing one object (entry 1 white) inside a matching window."""
    if grid is None:
        grid = square_codes(size=6, square=4, offset=1)
    grid = np.asarray(grid, dtype=np.uint8)
    window = WindowDefinition(window_id=0, x=x, y=y, width=grid.shape[1], height=grid.shape[0])
    obj = CompositionObject(object_id=0, window_id=0, x=x, y=y)
    options = {
        "state": CompositionState.EPOCH_START,
        "palette": {1: PGS_WHITE},
        "windows": [window],
        "objects": [(obj, grid)],
    }
    options.update(kwargs)
    return encode_pgs_display_set(**options)


def pgs_clear_set(composition_number: int = 1) -> bytes:
    return encode_pgs_display_set(
        composition_number=composition_number,
        state=CompositionState.NORMAL,
        objects=[],
    )


class FakeEngine(RecognitionEngine):
    """Recognition engine returning a fixed result and recording every call."""

    name = "fake"

    def __init__(self, text: str = "SUBTITLE", confidence: float = 0.9, error: Exception | None = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls: list[tuple[bytes, str]] = []
        self._lock = threading.Lock()

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        with self._lock:
            self.calls.append((image_bytes, language))
        if self.error is not None:
            raise self.error
        return RecognitionResult(text=self.text, confidence=self.confidence)


class BlockingEngine(RecognitionEngine):
    """Engine that blocks until released, for timeout tests."""

    name = "blocking"

    def __init__(self):
        self.release = threading.Event()

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        self.release.wait(5)
        return RecognitionResult(text="late", confidence=1.0)


class SlowEngine(RecognitionEngine):
    """Engine that takes a fixed time per call and counts overlapping calls."""

    name = "slow"

    def __init__(self, delay: float):
        self.delay = delay
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        time.sleep(self.delay)
        with self._lock:
            self.running -= 1
        return RecognitionResult(text="slow", confidence=1.0)

@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def blocking_engine():
    engine = BlockingEngine()
    yield engine
    engine.release.set()
