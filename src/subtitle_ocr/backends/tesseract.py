"""Tesseract backend using pytesseract."""

import io

import pytesseract
from PIL import Image
from pytesseract import Output

from .base import RecognitionEngine, RecognitionResult, tesseract_language

# Subtitles are a single block of one or two uniform lines.
DEFAULT_TESSERACT_CONFIG = "--psm 6"


class TesseractBackend(RecognitionEngine):
    """Local Tesseract engine. Requires the ``tesseract`` binary on PATH (or ``tesseract_cmd``)."""

    name = "tesseract"

    def __init__(self, tesseract_cmd: str | None = None, config: str = DEFAULT_TESSERACT_CONFIG):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.config = config

    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        with Image.open(io.BytesIO(image_bytes)) as image:
            data = pytesseract.image_to_data(
                image,
                lang=tesseract_language(language),
                config=self.config,
                output_type=Output.DICT,
                timeout=timeout or 0,
            )
        return parse_image_data(data)


def parse_image_data(data: dict) -> RecognitionResult:
    """Join word-level ``image_to_data`` output into lines with a mean confidence."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences = []
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        conf = float(data["conf"][i])
        if not word or conf < 0:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        lines.setdefault(key, []).append(word)
        confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    confidence = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0
    return RecognitionResult(text=text, confidence=confidence)
