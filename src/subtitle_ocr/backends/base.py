"""Abstract base class for recognition engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RecognitionResult:
    """Raw engine output. ``confidence`` is on a 0-1 scale but not yet clamped."""

    text: str
    confidence: float


# ISO 639-2 (bibliographic and terminological) -> (Tesseract, BCP 47)
LANGUAGE_CODES: dict[str, tuple[str, str]] = {
    "eng": ("eng", "en"),
    "fre": ("fra", "fr"),
    "fra": ("fra", "fr"),
    "ger": ("deu", "de"),
    "deu": ("deu", "de"),
    "spa": ("spa", "es"),
    "ita": ("ita", "it"),
    "por": ("por", "pt"),
    "dut": ("nld", "nl"),
    "nld": ("nld", "nl"),
    "rus": ("rus", "ru"),
    "pol": ("pol", "pl"),
    "swe": ("swe", "sv"),
    "dan": ("dan", "da"),
    "nor": ("nor", "no"),
    "fin": ("fin", "fi"),
    "tur": ("tur", "tr"),
    "gre": ("ell", "el"),
    "ell": ("ell", "el"),
    "heb": ("heb", "he"),
    "ara": ("ara", "ar"),
    "hin": ("hin", "hi"),
    "tha": ("tha", "th"),
    "vie": ("vie", "vi"),
    "kor": ("kor", "ko"),
    "jpn": ("jpn", "ja"),
    "chi": ("chi_sim", "zh-Hans"),
    "zho": ("chi_sim", "zh-Hans"),
}


def tesseract_language(language: str) -> str:
    """Tesseract traineddata name for an ISO 639-2 tag; unknown tags pass through."""
    return LANGUAGE_CODES.get(language.lower(), (language, language))[0]


def bcp47_language(language: str) -> str:
    """BCP 47 tag for an ISO 639-2 tag; unknown tags pass through."""
    return LANGUAGE_CODES.get(language.lower(), (language, language))[1]


class RecognitionEngine(ABC):
    """Black-box text recognizer. Engines process SINGLE images only."""

    name: str = ""

    @abstractmethod
    def recognize(self, image_bytes: bytes, language: str, timeout: float | None = None) -> RecognitionResult:
        """Recognize text in one PNG image.

        Args:
            image_bytes: PNG-encoded black-on-white image
            language: ISO 639-2 language tag of the track
            timeout: Seconds the caller will wait; engines may use it as a hint

        Raises:
            Exception: Any engine fault; the caller records it as a recognition failure
        """
        ...
