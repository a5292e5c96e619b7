"""macOS LiveText backend using ocrmac."""

import os
import tempfile
from pathlib import Path

from .base import RecognitionEngine, RecognitionResult, bcp47_language

# Import ocrmac only on macOS
try:
    from ocrmac import ocrmac

    OCRMAC_AVAILABLE = True
except ImportError:
    ocrmac = None
    OCRMAC_AVAILABLE = False


class LiveTextBackend(RecognitionEngine):
    """macOS LiveText backend using the ocrmac library.

    ocrmac annotations are ``[text, confidence, [x, y, width, height]]`` with
    fractional, bottom-referenced coordinates. Lines are ordered top to bottom.
    """

    name = "livetext"

    def __init__(self):
        if not OCRMAC_AVAILABLE:
            raise RuntimeError("ocrmac is not available. This backend requires macOS with ocrmac installed.")

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        # ocrmac.OCR requires a file path, so write to temp file
        temp_fd, temp_path = tempfile.mkstemp(suffix=".png")
        try:
            Path(temp_path).write_bytes(image_bytes)
            annotations = ocrmac.OCR(
                temp_path, framework="livetext", language_preference=[bcp47_language(language)]
            ).recognize()
        finally:
            os.close(temp_fd)
            Path(temp_path).unlink(missing_ok=True)

        return parse_annotations(annotations)


def parse_annotations(annotations: list) -> RecognitionResult:
    """Order annotations top to bottom, left to right and join them into lines."""
    # Higher y is closer to the top in bottom-referenced coordinates.
    ordered = sorted(annotations, key=lambda a: (-round(a[2][1], 2), a[2][0]))
    texts = [a[0].strip() for a in ordered if a[0].strip()]
    if not texts:
        return RecognitionResult(text="", confidence=0.0)
    confidences = [float(a[1]) for a in ordered if a[0].strip()]
    return RecognitionResult(text="\n".join(texts), confidence=sum(confidences) / len(confidences))
