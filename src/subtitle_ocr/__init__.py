"""Subtitle extraction and OCR preparation.

Usage:
    from subtitle_ocr import InMemoryDemuxer, RecognitionAdapter, SubtitlePipeline, get_backend

    pipeline = SubtitlePipeline(recognizer=RecognitionAdapter(get_backend()))
    report = pipeline.process_demuxer(InMemoryDemuxer(tracks))

Text tracks never touch the recognition engine; bitmap tracks (VobSub, PGS)
are decoded, binarized and recognized event by event.
"""

from importlib.metadata import PackageNotFoundError, version

from .backends import RecognitionEngine, RecognitionResult, get_backend
from .bitmap import Color, Palette, decode_bitmap, decode_spu_packet, encode_pgs_display_set, encode_spu_packet
from .classifier import classify
from .config import Settings, get_settings
from .demuxer import Demuxer, InMemoryDemuxer
from .errors import (
    BitmapDecodeError,
    InvalidCodecPrivate,
    InvalidPreprocessConfig,
    LowConfidenceRecognition,
    MalformedRunLength,
    NoSubtitleTrackFound,
    RecognitionFailed,
    RecognitionUnavailable,
    SubtitleOCRError,
    TextDecodeError,
    UnsupportedCodec,
)
from .io import format_srt, read_events_jsonl, write_events_jsonl
from .models import (
    BitmapCue,
    CueFamily,
    EventFailure,
    Packet,
    PipelineReport,
    PreprocessedImage,
    RasterImage,
    RecognizedEvent,
    SubtitleEvent,
    TextCue,
    Track,
    TrackFailure,
    TrackFormat,
    TrackResult,
)
from .pipeline import SubtitlePipeline
from .preprocess import PreprocessConfig, preprocess
from .progress import (
    CompositeProgressReporter,
    LoggingProgressReporter,
    ProgressReporter,
    RichProgressReporter,
)
from .recognition import RecognitionAdapter
from .selection import TrackSelector

try:
    __version__ = version("subtitle-ocr")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    "__version__",
    # Models
    "Packet",
    "Track",
    "TrackFormat",
    "CueFamily",
    "TextCue",
    "BitmapCue",
    "SubtitleEvent",
    "RasterImage",
    "PreprocessedImage",
    "RecognizedEvent",
    "EventFailure",
    "TrackFailure",
    "TrackResult",
    "PipelineReport",
    # Errors
    "SubtitleOCRError",
    "NoSubtitleTrackFound",
    "UnsupportedCodec",
    "InvalidCodecPrivate",
    "RecognitionUnavailable",
    "BitmapDecodeError",
    "MalformedRunLength",
    "TextDecodeError",
    "RecognitionFailed",
    "LowConfidenceRecognition",
    "InvalidPreprocessConfig",
    # Stages
    "Demuxer",
    "InMemoryDemuxer",
    "TrackSelector",
    "classify",
    "Color",
    "Palette",
    "decode_bitmap",
    "decode_spu_packet",
    "encode_spu_packet",
    "encode_pgs_display_set",
    "PreprocessConfig",
    "preprocess",
    "RecognitionEngine",
    "RecognitionResult",
    "RecognitionAdapter",
    "get_backend",
    # Orchestration
    "SubtitlePipeline",
    "ProgressReporter",
    "LoggingProgressReporter",
    "RichProgressReporter",
    "CompositeProgressReporter",
    # Config and I/O
    "Settings",
    "get_settings",
    "write_events_jsonl",
    "read_events_jsonl",
    "format_srt",
]
