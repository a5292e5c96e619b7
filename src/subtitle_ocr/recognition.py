"""Recognition adapter: serialize, call the engine with a bounded wait, normalize."""

import io
import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from PIL import Image

from .backends.base import RecognitionEngine, RecognitionResult
from .config import DEFAULT_MAX_WORKERS, DEFAULT_RECOGNITION_TIMEOUT_SECONDS, Settings
from .errors import LowConfidenceRecognition, RecognitionFailed
from .models import PreprocessedImage

logger = logging.getLogger(__name__)


def encode_png(image: PreprocessedImage) -> bytes:
    """Serialize a binary image as an 8-bit grayscale PNG."""
    buffer = io.BytesIO()
    Image.fromarray(image.pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def normalize_result(result: RecognitionResult) -> tuple[str, float]:
    """Trim each line, drop blank lines and clamp confidence to 0-1.

    Empty recognition becomes ``("", 0.0)``.
    """
    lines = (line.strip() for line in (result.text or "").splitlines())
    text = "\n".join(line for line in lines if line)
    if not text:
        return "", 0.0

    confidence = float(result.confidence or 0.0)
    if math.isnan(confidence):
        confidence = 0.0
    return text, min(1.0, max(0.0, confidence))


class RecognitionAdapter:
    """Runs a recognition engine on preprocessed images.

    Each engine call gets its own worker thread, so ``timeout`` bounds the
    call itself rather than time spent queued behind other calls. At most
    ``workers`` calls run at once; waiting for a free slot happens before the
    clock starts. A call that outlives ``timeout`` is abandoned and reported as
    ``RecognitionFailed``. Its thread is left to finish on its own and its slot
    is released immediately.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        timeout: float = DEFAULT_RECOGNITION_TIMEOUT_SECONDS,
        language: str = "eng",
        workers: int = DEFAULT_MAX_WORKERS,
        min_confidence: float = 0.0,
    ):
        if timeout <= 0:
            raise ValueError(f"Recognition timeout must be positive, got {timeout}")
        self.engine = engine
        self.timeout = timeout
        self.language = language
        self.min_confidence = min_confidence
        self._slots = threading.BoundedSemaphore(max(1, workers))
        self._abandoned: list[Future] = []
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, engine: RecognitionEngine, settings: Settings) -> "RecognitionAdapter":
        return cls(
            engine,
            timeout=settings.recognition_timeout_seconds,
            language=settings.language,
            workers=settings.recognition_workers,
            min_confidence=settings.min_confidence,
        )

    def recognize(self, image: PreprocessedImage, language: str | None = None) -> tuple[str, float]:
        """Recognize one image.

        Raises:
            RecognitionFailed: On engine fault or timeout
            LowConfidenceRecognition: If text was found below ``min_confidence``
        """
        if not image.has_foreground():
            return "", 0.0

        image_bytes = encode_png(image)
        with self._slots:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognize")
            try:
                future = executor.submit(
                    self.engine.recognize, image_bytes, language or self.language, self.timeout
                )
                raw = future.result(timeout=self.timeout)
            except FutureTimeout as e:
                with self._lock:
                    self._abandoned.append(future)
                raise RecognitionFailed(f"Recognition timed out after {self.timeout:g}s") from e
            except Exception as e:
                raise RecognitionFailed(f"Engine fault: {type(e).__name__}: {e}") from e
            finally:
                executor.shutdown(wait=False)

        text, confidence = normalize_result(raw)
        logger.debug(f"{self.engine.name}: {len(text)} chars at confidence {confidence:.2f}")
        if text and confidence < self.min_confidence:
            raise LowConfidenceRecognition(
                f"Confidence {confidence:.2f} below minimum {self.min_confidence:.2f} for {text!r}"
            )
        return text, confidence

    def close(self) -> None:
        with self._lock:
            running = sum(1 for future in self._abandoned if not future.done())
            self._abandoned.clear()
        if running:
            logger.warning(f"{self.engine.name}: {running} timed-out engine calls still running")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
