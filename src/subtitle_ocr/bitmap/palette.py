"""Track color palettes (CLUTs) for bitmap subtitles."""

import logging
import re
from dataclasses import dataclass

from ..config import DEFAULT_VOBSUB_PALETTE
from ..errors import InvalidCodecPrivate

logger = logging.getLogger(__name__)

PALETTE_SIZE = 16

_SIZE_LINE = re.compile(r"^\s*size:\s*(\d+)\s*x\s*(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class Color:
    """RGBA color; ``alpha`` 0 is fully transparent."""

    red: int
    green: int
    blue: int
    alpha: int = 255

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.red, self.green, self.blue, self.alpha)


@dataclass(frozen=True)
class Palette:
    """Ordered color table shared read-only by every cue of a track.

    Index 0 is conventionally the background.
    """

    colors: tuple[Color, ...]
    frame_size: tuple[int, int] | None = None

    def __post_init__(self):
        if not 0 < len(self.colors) <= PALETTE_SIZE:
            raise ValueError(f"Palette must hold 1-{PALETTE_SIZE} colors, got {len(self.colors)}")

    def __len__(self) -> int:
        return len(self.colors)

    def __getitem__(self, index: int) -> Color:
        return self.colors[index]

    @classmethod
    def from_rgb(cls, rgb: list[tuple[int, int, int]], frame_size: tuple[int, int] | None = None):
        return cls(tuple(Color(r, g, b) for r, g, b in rgb), frame_size)

    @classmethod
    def default(cls) -> "Palette":
        return cls.from_rgb(list(DEFAULT_VOBSUB_PALETTE))


def parse_idx(data: bytes) -> Palette:
    """Parse the ``palette:`` line (and ``size:`` if present) of VobSub .idx text.

    Matroska stores the .idx header as the track's codec private data.

    Raises:
        InvalidCodecPrivate: If no palette line exists or an entry is not hex RGB
    """
    frame_size = None
    for line in data.decode("utf-8", errors="replace").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        size_match = _SIZE_LINE.match(stripped)
        if size_match:
            frame_size = (int(size_match.group(1)), int(size_match.group(2)))
            continue

        key, _, value = stripped.partition(":")
        if key.strip().lower() != "palette":
            continue

        return Palette.from_rgb(parse_palette_line(value), frame_size)

    raise InvalidCodecPrivate("No palette line found in VobSub header")


def parse_palette_line(value: str) -> list[tuple[int, int, int]]:
    """Parse comma-separated ``rrggbb`` entries."""
    entries = [segment.strip() for segment in value.split(",") if segment.strip()]
    if not entries or len(entries) > PALETTE_SIZE:
        raise InvalidCodecPrivate(f"Expected 1-{PALETTE_SIZE} palette entries, got {len(entries)}")

    rgb = []
    for entry in entries:
        if len(entry) != 6:
            raise InvalidCodecPrivate(f"Invalid palette entry: {entry!r}")
        try:
            value_int = int(entry, 16)
        except ValueError as e:
            raise InvalidCodecPrivate(f"Invalid palette entry: {entry!r}") from e
        rgb.append(((value_int >> 16) & 0xFF, (value_int >> 8) & 0xFF, value_int & 0xFF))
    return rgb


def palette_for_track(codec_private: bytes | None) -> Palette:
    """Palette from codec private data, or the grey default when there is none."""
    if not codec_private:
        logger.debug("VobSub track has no codec private data, using default palette")
        return Palette.default()
    return parse_idx(codec_private)


def ycbcr_to_rgb(y: int, cb: int, cr: int) -> tuple[int, int, int]:
    """BT.601 YCbCr to RGB, clamped to 0-255."""
    r = y + 1.402 * (cr - 128)
    g = y - 0.344136 * (cb - 128) - 0.714136 * (cr - 128)
    b = y + 1.772 * (cb - 128)
    return tuple(max(0, min(255, int(round(c)))) for c in (r, g, b))
