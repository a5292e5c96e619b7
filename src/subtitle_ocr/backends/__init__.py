"""Recognition engines with pluggable backends.

Usage:
    from subtitle_ocr.backends import get_backend

    engine = get_backend()                 # SUBTITLE_OCR_OCR_BACKEND, default tesseract
    engine = get_backend("google_vision")  # or "livetext", "ocr_service"

Environment variables:
    SUBTITLE_OCR_OCR_BACKEND: Backend used when no name is passed
    SUBTITLE_OCR_OCR_SERVICE_URL: Base URL for the ocr_service backend
    SUBTITLE_OCR_TESSERACT_CMD: Path to the tesseract binary
"""

from ..config import get_settings
from .base import RecognitionEngine, RecognitionResult, bcp47_language, tesseract_language
from .ocr_service import OCRServiceBackend, OCRServiceError

# Optional backend imports - these may not be available in all environments
try:
    from .tesseract import TesseractBackend
except ImportError:
    TesseractBackend = None  # type: ignore

try:
    from .google_vision import GoogleVisionBackend
except ImportError:
    GoogleVisionBackend = None  # type: ignore

try:
    from .livetext import OCRMAC_AVAILABLE, LiveTextBackend
except ImportError:
    LiveTextBackend = None  # type: ignore
    OCRMAC_AVAILABLE = False

AVAILABLE_BACKENDS = ("tesseract", "google_vision", "livetext", "ocr_service")


def get_backend(backend_name: str | None = None) -> RecognitionEngine:
    """Get a recognition engine by explicit name or from settings.

    Backend selection priority:
    1. Explicit backend_name parameter
    2. SUBTITLE_OCR_OCR_BACKEND setting
    3. "tesseract"

    Raises:
        ValueError: If the backend is unknown or its library is not installed
    """
    settings = get_settings()
    backend_name = (backend_name or settings.ocr_backend or "tesseract").lower()

    if backend_name == "tesseract":
        if TesseractBackend is None:
            raise ValueError("TesseractBackend not available. Install pytesseract: pip install pytesseract")
        return TesseractBackend(tesseract_cmd=settings.tesseract_cmd or None)
    elif backend_name == "google_vision":
        if GoogleVisionBackend is None:
            raise ValueError(
                "GoogleVisionBackend not available. Install google-cloud-vision: "
                "pip install google-cloud-vision"
            )
        return GoogleVisionBackend()
    elif backend_name == "livetext":
        if LiveTextBackend is None or not OCRMAC_AVAILABLE:
            raise ValueError("LiveTextBackend not available. Install ocrmac: pip install ocrmac")
        return LiveTextBackend()
    elif backend_name == "ocr_service":
        return OCRServiceBackend(settings.ocr_service_url, timeout=settings.recognition_timeout_seconds)
    else:
        raise ValueError(f"Unknown backend: {backend_name}. Available: {', '.join(AVAILABLE_BACKENDS)}")


__all__ = [
    "RecognitionEngine",
    "RecognitionResult",
    "TesseractBackend",
    "GoogleVisionBackend",
    "LiveTextBackend",
    "OCRServiceBackend",
    "OCRServiceError",
    "get_backend",
    "tesseract_language",
    "bcp47_language",
]
