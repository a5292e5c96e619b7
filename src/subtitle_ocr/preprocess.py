"""Raster to OCR-ready binary image.

Steps, in order:

1. Composite: pixels with alpha below ``transparency_threshold`` are background.
2. Grayscale: BT.601 luma, ``(299 R + 587 G + 114 B) / 1000`` rounded.
3. Binarize: opaque pixels on the text side of ``binarization_threshold`` become
   foreground (black), everything else background (white).
4. Optional crop to the foreground bounding box.
5. Optional despeckle (3x3 median).
6. Upscale by ``upscale_factor`` (nearest or bilinear, re-thresholded).
7. Optional white border.

The transform is pure: identical input and config give identical output.
"""

from typing import Literal

import numpy as np
from PIL import Image, ImageFilter
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    BACKGROUND,
    DEFAULT_BINARIZATION_THRESHOLD,
    DEFAULT_TRANSPARENCY_THRESHOLD,
    DEFAULT_UPSCALE_FACTOR,
    FOREGROUND,
    LUMA_WEIGHTS,
    MAX_UPSCALE_FACTOR,
    Settings,
)
from .errors import InvalidPreprocessConfig
from .models import PreprocessedImage, RasterImage

_RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
}


class PreprocessConfig(BaseModel):
    """Preprocessing options. Invalid values raise ``InvalidPreprocessConfig``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    transparency_threshold: int = Field(default=DEFAULT_TRANSPARENCY_THRESHOLD, ge=0, le=255)
    binarization_threshold: int = Field(default=DEFAULT_BINARIZATION_THRESHOLD, ge=0, le=255)
    upscale_factor: float = Field(
        default=DEFAULT_UPSCALE_FACTOR, gt=0, le=MAX_UPSCALE_FACTOR, allow_inf_nan=False
    )
    resample: Literal["nearest", "bilinear"] = "nearest"
    # "light": glyphs brighter than the threshold, "dark": darker, "auto": light if any exist
    text_polarity: Literal["auto", "light", "dark"] = "auto"
    crop_to_content: bool = False
    border_px: int = Field(default=0, ge=0, le=256)
    despeckle: bool = False

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise InvalidPreprocessConfig(str(e)) from e

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "PreprocessConfig":
        values = {
            "transparency_threshold": settings.transparency_threshold,
            "binarization_threshold": settings.binarization_threshold,
            "upscale_factor": settings.upscale_factor,
        }
        values.update(overrides)
        return cls(**values)


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Integer BT.601 luma of an RGB(A) array, shaped (height, width), uint8."""
    rgb = pixels[:, :, :3].astype(np.uint32)
    red_w, green_w, blue_w = LUMA_WEIGHTS
    luma = (rgb[:, :, 0] * red_w + rgb[:, :, 1] * green_w + rgb[:, :, 2] * blue_w + 500) // 1000
    return luma.astype(np.uint8)


def binarize(raster: RasterImage, config: PreprocessConfig) -> np.ndarray:
    """Steps 1-3: boolean foreground mask, shaped like the raster."""
    opaque = raster.alpha >= config.transparency_threshold
    luma = luminance(raster.pixels)
    light = opaque & (luma >= config.binarization_threshold)
    dark = opaque & (luma < config.binarization_threshold)

    if config.text_polarity == "light":
        return light
    if config.text_polarity == "dark":
        return dark
    return light if light.any() else dark


def crop_to_content(mask: np.ndarray) -> np.ndarray:
    """Trim a foreground mask to its bounding box. All-background masks are returned as-is."""
    rows = np.flatnonzero(mask.any(axis=1))
    cols = np.flatnonzero(mask.any(axis=0))
    if rows.size == 0:
        return mask
    return mask[rows[0] : rows[-1] + 1, cols[0] : cols[-1] + 1]


def _threshold(image: Image.Image) -> np.ndarray:
    gray = np.asarray(image, dtype=np.uint8)
    return np.where(gray < 128, FOREGROUND, BACKGROUND).astype(np.uint8)


def preprocess(raster: RasterImage, config: PreprocessConfig | None = None) -> PreprocessedImage:
    """Turn an RGBA raster into a black-on-white binary image."""
    config = config or PreprocessConfig()

    mask = binarize(raster, config)
    if config.crop_to_content:
        mask = crop_to_content(mask)

    pixels = np.where(mask, FOREGROUND, BACKGROUND).astype(np.uint8)
    height, width = pixels.shape
    if width == 0 or height == 0:
        return PreprocessedImage(pixels=pixels)

    if config.despeckle:
        pixels = _threshold(Image.fromarray(pixels).filter(ImageFilter.MedianFilter(3)))

    if config.upscale_factor != 1.0:
        size = (
            max(1, round(width * config.upscale_factor)),
            max(1, round(height * config.upscale_factor)),
        )
        resized = Image.fromarray(pixels).resize(size, resample=_RESAMPLE[config.resample])
        pixels = _threshold(resized)

    if config.border_px:
        pixels = np.pad(pixels, config.border_px, mode="constant", constant_values=BACKGROUND)

    return PreprocessedImage(pixels=np.ascontiguousarray(pixels))
