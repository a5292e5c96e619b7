"""Configuration for subtitle extraction.

Fixed constants are module-level ``Final`` values. Runtime settings are read
from ``SUBTITLE_OCR_*`` environment variables (or a ``.env`` file) through
``get_settings()``.
"""

from functools import lru_cache
from typing import Final

from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Timing
# =============================================================================

# Display duration used when neither the packet nor the cue data has an end.
DEFAULT_CUE_DURATION_MS: Final[int] = 4000

# DVD SPU control delays count in units of 1024 / 90 kHz.
SPU_TICK_NUMERATOR: Final[int] = 1024
SPU_TICK_DENOMINATOR: Final[int] = 90

# =============================================================================
# Imaging
# =============================================================================

# ITU-R BT.601 luma weights (per mille) used for grayscale conversion.
LUMA_WEIGHTS: Final[tuple[int, int, int]] = (299, 587, 114)

# Binarized pixel values: black glyphs on white.
FOREGROUND: Final[int] = 0
BACKGROUND: Final[int] = 255

# Largest bitmap dimension accepted from a packet header.
MAX_BITMAP_DIMENSION: Final[int] = 4096

# Grey ramp used when a VobSub track carries no .idx palette.
DEFAULT_VOBSUB_PALETTE: Final[tuple[tuple[int, int, int], ...]] = tuple(
    (level * 17, level * 17, level * 17) for level in range(16)
)

# =============================================================================
# Preprocessing defaults
# =============================================================================

DEFAULT_TRANSPARENCY_THRESHOLD: Final[int] = 128
DEFAULT_BINARIZATION_THRESHOLD: Final[int] = 128
DEFAULT_UPSCALE_FACTOR: Final[float] = 2.0
MAX_UPSCALE_FACTOR: Final[float] = 16.0

# =============================================================================
# Orchestration defaults
# =============================================================================

DEFAULT_WORK_UNIT_SIZE: Final[int] = 50
DEFAULT_MAX_WORKERS: Final[int] = 4
DEFAULT_RECOGNITION_TIMEOUT_SECONDS: Final[float] = 30.0


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SUBTITLE_OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Recognition
    ocr_backend: str = "tesseract"
    language: str = "eng"
    recognition_timeout_seconds: float = DEFAULT_RECOGNITION_TIMEOUT_SECONDS
    recognition_workers: int = DEFAULT_MAX_WORKERS
    min_confidence: float = 0.0
    ocr_service_url: str = "https://ocr-service.fly.dev"
    tesseract_cmd: str = ""

    # Orchestration
    work_unit_size: int = DEFAULT_WORK_UNIT_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS

    # Preprocessing
    transparency_threshold: int = DEFAULT_TRANSPARENCY_THRESHOLD
    binarization_threshold: int = DEFAULT_BINARIZATION_THRESHOLD
    upscale_factor: float = DEFAULT_UPSCALE_FACTOR

    def display(self) -> dict:
        """Return settings grouped for display."""
        return {
            "recognition": {
                "ocr_backend": self.ocr_backend,
                "language": self.language,
                "timeout_seconds": self.recognition_timeout_seconds,
                "workers": self.recognition_workers,
                "min_confidence": self.min_confidence,
                "ocr_service_url": self.ocr_service_url,
            },
            "orchestration": {
                "work_unit_size": self.work_unit_size,
                "max_workers": self.max_workers,
            },
            "preprocessing": {
                "transparency_threshold": self.transparency_threshold,
                "binarization_threshold": self.binarization_threshold,
                "upscale_factor": self.upscale_factor,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
