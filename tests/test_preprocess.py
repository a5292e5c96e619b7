"""Unit tests for raster preprocessing."""

import numpy as np
import pytest
from pydantic import ValidationError

from conftest import BLACK_ON_CLEAR_IDX, square_codes
from subtitle_ocr.bitmap.palette import parse_idx
from subtitle_ocr.bitmap.vobsub import decode_spu_packet, encode_spu_packet
from subtitle_ocr.config import BACKGROUND, FOREGROUND, Settings
from subtitle_ocr.errors import InvalidPreprocessConfig
from subtitle_ocr.models import RasterImage
from subtitle_ocr.preprocess import PreprocessConfig, binarize, crop_to_content, luminance, preprocess

pytestmark = pytest.mark.unit


def rgba(height: int, width: int, color=(0, 0, 0), alpha: int = 0) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = color
    pixels[:, :, 3] = alpha
    return pixels


@pytest.fixture
def black_square() -> RasterImage:
    """VobSub black 4x4 square on a transparent 8x8 raster."""
    payload = encode_spu_packet(square_codes())
    return decode_spu_packet(payload, parse_idx(BLACK_ON_CLEAR_IDX)).image


class TestPreprocess:
    """Composite, binarize, scale."""

    def test_square_at_scale(self, black_square):
        """Test the square becomes foreground and the image scales by the factor."""
        image = preprocess(black_square, PreprocessConfig(upscale_factor=2.0))
        assert image.pixels.shape == (16, 16)
        assert image.pixels.dtype == np.uint8
        assert (image.pixels[4:12, 4:12] == FOREGROUND).all()
        assert (image.pixels[:4] == BACKGROUND).all()
        assert set(np.unique(image.pixels)) <= {FOREGROUND, BACKGROUND}

    def test_decoded_square_is_opaque(self, black_square):
        """Test only the square pixels are opaque after decoding."""
        assert (black_square.alpha[2:6, 2:6] == 255).all()
        assert black_square.alpha.sum() == 16 * 255

    def test_identical_output(self, black_square):
        """Test the same raster and config produce byte-identical images."""
        config = PreprocessConfig(upscale_factor=3.0, resample="bilinear", border_px=2, despeckle=True)
        first = preprocess(black_square, config)
        second = preprocess(black_square, config)
        assert first.pixels.tobytes() == second.pixels.tobytes()

    def test_input_not_modified(self, black_square):
        """Test preprocessing leaves the raster untouched."""
        before = black_square.pixels.copy()
        preprocess(black_square, PreprocessConfig(crop_to_content=True, border_px=4))
        np.testing.assert_array_equal(black_square.pixels, before)

    def test_all_transparent(self):
        """Test a fully transparent raster becomes all background."""
        raster = RasterImage(pixels=rgba(10, 20, color=(255, 255, 255), alpha=100))
        image = preprocess(raster, PreprocessConfig(transparency_threshold=128, upscale_factor=1.0))
        assert image.pixels.shape == (10, 20)
        assert (image.pixels == BACKGROUND).all()
        assert not image.has_foreground()

    def test_all_transparent_with_crop(self):
        """Test cropping an empty mask keeps the full background image."""
        raster = RasterImage(pixels=rgba(10, 20))
        image = preprocess(raster, PreprocessConfig(crop_to_content=True, upscale_factor=1.0))
        assert image.pixels.shape == (10, 20)
        assert not image.has_foreground()

    def test_crop_and_border(self, black_square):
        """Test the crop keeps only the square and the border pads it."""
        config = PreprocessConfig(crop_to_content=True, upscale_factor=1.0, border_px=3)
        image = preprocess(black_square, config)
        assert image.pixels.shape == (10, 10)
        assert (image.pixels[3:7, 3:7] == FOREGROUND).all()
        assert (image.pixels[:3] == BACKGROUND).all()

    def test_fractional_scale_rounds(self, black_square):
        """Test output dimensions are rounded and never zero."""
        assert preprocess(black_square, PreprocessConfig(upscale_factor=1.5)).pixels.shape == (12, 12)
        assert preprocess(black_square, PreprocessConfig(upscale_factor=0.01)).pixels.shape == (1, 1)

    def test_despeckle_removes_isolated_pixel(self):
        """Test a single opaque pixel is removed by the median filter."""
        pixels = rgba(9, 9)
        pixels[4, 4] = (255, 255, 255, 255)
        config = PreprocessConfig(despeckle=True, upscale_factor=1.0)
        assert not preprocess(RasterImage(pixels=pixels), config).has_foreground()


class TestBinarize:
    """Text polarity and thresholds."""

    def test_light_text_preferred_in_auto(self):
        """Test white glyphs with a black outline keep the glyph as foreground."""
        pixels = rgba(3, 3, color=(0, 0, 0), alpha=255)
        pixels[1, 1, :3] = 255
        mask = binarize(RasterImage(pixels=pixels), PreprocessConfig())
        assert mask.sum() == 1
        assert mask[1, 1]

    def test_dark_polarity(self):
        """Test explicit dark polarity selects the outline instead."""
        pixels = rgba(3, 3, color=(0, 0, 0), alpha=255)
        pixels[1, 1, :3] = 255
        mask = binarize(RasterImage(pixels=pixels), PreprocessConfig(text_polarity="dark"))
        assert mask.sum() == 8
        assert not mask[1, 1]

    def test_transparency_threshold(self):
        """Test semi-transparent pixels below the threshold are background."""
        pixels = rgba(1, 2, color=(255, 255, 255), alpha=255)
        pixels[0, 1, 3] = 127
        mask = binarize(RasterImage(pixels=pixels), PreprocessConfig(transparency_threshold=128))
        assert mask.tolist() == [[True, False]]

    def test_luminance(self):
        """Test BT.601 integer luma."""
        pixels = np.array([[[255, 0, 0, 255], [0, 255, 0, 255], [0, 0, 255, 255], [255, 255, 255, 0]]], np.uint8)
        assert luminance(pixels).tolist() == [[76, 150, 29, 255]]

    def test_crop_to_content(self):
        """Test the bounding box of a mask."""
        mask = np.zeros((5, 5), dtype=bool)
        mask[1, 2] = mask[3, 3] = True
        assert crop_to_content(mask).shape == (3, 2)


class TestPreprocessConfig:
    """Configuration validation."""

    @pytest.mark.parametrize(
        "options",
        [
            {"upscale_factor": 0},
            {"upscale_factor": -1.0},
            {"upscale_factor": float("inf")},
            {"upscale_factor": float("nan")},
            {"upscale_factor": 17},
            {"transparency_threshold": 300},
            {"binarization_threshold": -1},
            {"resample": "lanczos"},
            {"border_px": -2},
            {"unknown_option": True},
        ],
    )
    def test_invalid(self, options):
        """Test invalid options raise InvalidPreprocessConfig."""
        with pytest.raises(InvalidPreprocessConfig):
            PreprocessConfig(**options)

    def test_invalid_is_value_error(self):
        """Test callers catching ValueError also see config errors."""
        with pytest.raises(ValueError):
            PreprocessConfig(upscale_factor=0)

    def test_from_settings(self):
        """Test settings supply defaults and overrides win."""
        settings = Settings(upscale_factor=3.0, binarization_threshold=100)
        config = PreprocessConfig.from_settings(settings, crop_to_content=True)
        assert config.upscale_factor == 3.0
        assert config.binarization_threshold == 100
        assert config.crop_to_content

    def test_frozen(self):
        """Test configs cannot be mutated after validation."""
        config = PreprocessConfig()
        with pytest.raises(ValidationError):
            config.upscale_factor = 4.0
