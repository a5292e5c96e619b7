"""Exception taxonomy for subtitle extraction.

Track-level errors abort one track and are reported once. Event-level errors
are recorded against a single subtitle event and never stop its siblings.
"""


class SubtitleOCRError(Exception):
    """Base class for all subtitle extraction errors."""

    def __init__(self, reason: str = ""):
        super().__init__(reason)
        self.reason = reason

    @property
    def kind(self) -> str:
        """Failure kind reported to the hosting worker."""
        return type(self).__name__


# =============================================================================
# Track-level (fatal for the track)
# =============================================================================


class TrackError(SubtitleOCRError):
    """Raised when a whole track cannot be processed."""

    def __init__(self, reason: str = "", track_id: int | None = None):
        super().__init__(reason)
        self.track_id = track_id


class NoSubtitleTrackFound(TrackError):
    """No supplied track matched the selection rule."""


class UnsupportedCodec(TrackError):
    """The track's codec is neither a known text nor bitmap subtitle format."""

    def __init__(self, codec_id: str, track_id: int | None = None):
        super().__init__(f"Unsupported subtitle codec: {codec_id!r}", track_id)
        self.codec_id = codec_id


class InvalidCodecPrivate(TrackError):
    """The track header (VobSub .idx data) could not be parsed."""


class RecognitionUnavailable(TrackError):
    """A bitmap track was found but no recognition engine is configured."""


# =============================================================================
# Event-level (recorded per event)
# =============================================================================


class EventError(SubtitleOCRError):
    """Raised while turning one subtitle event into text."""


class BitmapDecodeError(EventError):
    """A bitmap subtitle packet could not be decoded."""


class MalformedRunLength(BitmapDecodeError):
    """Run-length data overflows its line, is truncated or is misaligned."""


class TextDecodeError(EventError):
    """A text subtitle payload is not valid in its declared encoding."""


class RecognitionFailed(EventError):
    """The recognition engine faulted or timed out."""


class LowConfidenceRecognition(EventError):
    """Recognition succeeded below the configured confidence floor."""


# =============================================================================
# Configuration
# =============================================================================


class InvalidPreprocessConfig(SubtitleOCRError, ValueError):
    """Preprocessing options are out of range."""
