"""Data models for subtitle tracks, events and results.

Input-side records (packets, tracks, cues, rasters) are dataclasses. Terminal
records handed to callers are pydantic models so they serialize losslessly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .config import FOREGROUND

if TYPE_CHECKING:
    from .bitmap.palette import Palette
    from .bitmap.pgs import PgsFrame


# =============================================================================
# Demuxer-supplied data
# =============================================================================


@dataclass(frozen=True)
class Packet:
    """One raw subtitle packet. Times are milliseconds."""

    payload: bytes
    start_time: int
    end_time: int | None = None


@dataclass(frozen=True)
class Track:
    """A subtitle track as supplied by the demuxer. Read-only."""

    track_id: int
    codec_id: str
    language: str | None = None
    codec_private: bytes | None = None
    packets: tuple[Packet, ...] = ()


# =============================================================================
# Classification
# =============================================================================


class CueFamily(str, Enum):
    """Broad kind of cue payload carried by a track."""

    TEXT = "text"
    BITMAP = "bitmap"
    UNSUPPORTED = "unsupported"


class SubtitleCodec(str, Enum):
    """Concrete subtitle codecs the pipeline can decode."""

    SUBRIP = "subrip"
    SSA = "ssa"
    ASS = "ass"
    WEBVTT = "webvtt"
    VOBSUB = "vobsub"
    PGS = "pgs"


@dataclass(frozen=True)
class TrackFormat:
    """Classifier verdict for a track."""

    family: CueFamily
    codec_id: str
    codec: SubtitleCodec | None = None

    @property
    def is_supported(self) -> bool:
        return self.family is not CueFamily.UNSUPPORTED


@dataclass(frozen=True)
class TextCue:
    """Cue text with markup already stripped."""

    text: str


@dataclass(frozen=True)
class BitmapCue:
    """Reference to a raw bitmap packet plus the track state needed to decode it."""

    packet: Packet
    codec: SubtitleCodec
    palette: Palette | None = None
    frame: PgsFrame | None = None


@dataclass(frozen=True)
class SubtitleEvent:
    """One cue instance with its display window."""

    index: int
    start_time: int
    end_time: int
    cue: TextCue | BitmapCue

    @property
    def is_bitmap(self) -> bool:
        return isinstance(self.cue, BitmapCue)


# =============================================================================
# Images
# =============================================================================


@dataclass
class RasterImage:
    """Decoded bitmap: RGBA pixels shaped (height, width, 4), uint8.

    ``x``/``y`` give the image origin on the video frame.
    """

    pixels: np.ndarray
    x: int = 0
    y: int = 0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]


@dataclass
class PreprocessedImage:
    """Single-channel binary image: every pixel is FOREGROUND or BACKGROUND."""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def has_foreground(self) -> bool:
        return bool((self.pixels == FOREGROUND).any())


# =============================================================================
# Event lifecycle
# =============================================================================


class EventState(str, Enum):
    """Lifecycle state of one subtitle event."""

    PENDING = "pending"
    CLASSIFIED = "classified"
    DECODED = "decoded"
    SKIPPED = "skipped"
    PREPROCESSED = "preprocessed"
    RECOGNIZED = "recognized"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EventState.RECOGNIZED, EventState.FAILED)


# Allowed forward transitions. FAILED is reachable from any non-terminal state.
EVENT_TRANSITIONS: dict[EventState, frozenset[EventState]] = {
    EventState.PENDING: frozenset({EventState.CLASSIFIED}),
    EventState.CLASSIFIED: frozenset({EventState.DECODED, EventState.SKIPPED}),
    EventState.DECODED: frozenset({EventState.PREPROCESSED}),
    EventState.SKIPPED: frozenset({EventState.PREPROCESSED, EventState.RECOGNIZED}),
    EventState.PREPROCESSED: frozenset({EventState.RECOGNIZED}),
    EventState.RECOGNIZED: frozenset(),
    EventState.FAILED: frozenset(),
}


class Stage(str, Enum):
    """Pipeline stage an event failure originated in."""

    CLASSIFY = "classify"
    DECODE = "decode"
    PREPROCESS = "preprocess"
    RECOGNIZE = "recognize"


# =============================================================================
# Terminal records
# =============================================================================


class RecognizedEvent(BaseModel):
    """Timed text recognized for one subtitle event."""

    model_config = ConfigDict(frozen=True)

    index: int
    start_time: int
    end_time: int
    text: str
    confidence: float = Field(ge=0.0, le=1.0)


class EventFailure(BaseModel):
    """Failure record for one subtitle event."""

    model_config = ConfigDict(frozen=True)

    track_id: int
    unit_id: str
    event_index: int
    stage: Stage
    kind: str
    reason: str


class TrackFailure(BaseModel):
    """Failure record for a whole track."""

    model_config = ConfigDict(frozen=True)

    track_id: int | None
    codec_id: str | None = None
    kind: str
    reason: str


class TrackResult(BaseModel):
    """Everything produced for one track, events ordered by start time."""

    track_id: int
    codec_id: str
    language: str | None = None
    events: list[RecognizedEvent] = Field(default_factory=list)
    failures: list[EventFailure] = Field(default_factory=list)

    @property
    def event_count(self) -> int:
        return len(self.events) + len(self.failures)


class PipelineReport(BaseModel):
    """Per-track results plus track-level failures."""

    tracks: list[TrackResult] = Field(default_factory=list)
    track_failures: list[TrackFailure] = Field(default_factory=list)
