"""Track format classification and per-track cue construction.

``classify`` maps a codec tag to a ``TrackFormat``. ``CueBuilder`` then turns
the track's packets into cue drafts: text packets become ``TextCue`` directly,
bitmap packets become ``BitmapCue`` references carrying the per-track state
(VobSub palette, PGS epoch snapshot) needed to decode them later.
"""

import logging
from dataclasses import dataclass

from .bitmap.decoder import spu_display_window
from .bitmap.palette import Palette, palette_for_track
from .bitmap.pgs import SEGMENT_PCS, PgsDecoder
from .config import DEFAULT_CUE_DURATION_MS
from .errors import EventError, UnsupportedCodec
from .models import BitmapCue, CueFamily, Packet, SubtitleCodec, TextCue, Track, TrackFormat
from .text_cues import cue_text

logger = logging.getLogger(__name__)

# Matroska codec ids and ffprobe codec names
CODEC_TAGS: dict[str, SubtitleCodec] = {
    "S_TEXT/UTF8": SubtitleCodec.SUBRIP,
    "S_TEXT/ASCII": SubtitleCodec.SUBRIP,
    "S_TEXT/SSA": SubtitleCodec.SSA,
    "S_TEXT/ASS": SubtitleCodec.ASS,
    "S_SSA": SubtitleCodec.SSA,
    "S_ASS": SubtitleCodec.ASS,
    "S_TEXT/WEBVTT": SubtitleCodec.WEBVTT,
    "S_VOBSUB": SubtitleCodec.VOBSUB,
    "S_HDMV/PGS": SubtitleCodec.PGS,
    "subrip": SubtitleCodec.SUBRIP,
    "srt": SubtitleCodec.SUBRIP,
    "mov_text": SubtitleCodec.SUBRIP,
    "ssa": SubtitleCodec.SSA,
    "ass": SubtitleCodec.ASS,
    "webvtt": SubtitleCodec.WEBVTT,
    "dvd_subtitle": SubtitleCodec.VOBSUB,
    "hdmv_pgs_subtitle": SubtitleCodec.PGS,
}

BITMAP_CODECS = frozenset({SubtitleCodec.VOBSUB, SubtitleCodec.PGS})


def _lookup(codec_id: str) -> SubtitleCodec | None:
    return CODEC_TAGS.get(codec_id) or CODEC_TAGS.get(codec_id.lower())


def _looks_like_pgs(payload: bytes) -> bool:
    # A display set opens with a PCS segment whose declared size fits the packet.
    if len(payload) < 3 or payload[0] != SEGMENT_PCS:
        return False
    return 3 + int.from_bytes(payload[1:3], "big") <= len(payload)


def classify(codec_id: str, first_packet: Packet | None = None) -> TrackFormat:
    """Classify a track from its codec tag, sniffing the first packet for untagged PGS."""
    codec = _lookup(codec_id)
    if codec is None and first_packet is not None and _looks_like_pgs(first_packet.payload):
        logger.debug(f"Codec {codec_id!r} sniffed as PGS from first packet")
        codec = SubtitleCodec.PGS

    if codec is None:
        return TrackFormat(family=CueFamily.UNSUPPORTED, codec_id=codec_id)
    family = CueFamily.BITMAP if codec in BITMAP_CODECS else CueFamily.TEXT
    return TrackFormat(family=family, codec_id=codec_id, codec=codec)


@dataclass
class CueDraft:
    """A cue with its display window, or the error that prevented building it."""

    start_time: int
    end_time: int | None
    cue: TextCue | BitmapCue | None = None
    error: EventError | None = None


class CueBuilder:
    """Builds cue drafts for one track, in packet order."""

    def __init__(self, track: Track, track_format: TrackFormat):
        if not track_format.is_supported:
            raise UnsupportedCodec(track_format.codec_id, track.track_id)
        self.track = track
        self.format = track_format
        self.codec = track_format.codec
        self._palette: Palette | None = None
        self._pgs: PgsDecoder | None = None
        if self.codec is SubtitleCodec.VOBSUB:
            # InvalidCodecPrivate propagates: the track cannot be decoded at all.
            self._palette = palette_for_track(track.codec_private)
        elif self.codec is SubtitleCodec.PGS:
            self._pgs = PgsDecoder()

    def build(self, packets) -> list[CueDraft]:
        drafts: list[CueDraft] = []
        for packet in packets:
            if self.format.family is CueFamily.TEXT:
                drafts.append(self._text_draft(packet))
            elif self.codec is SubtitleCodec.VOBSUB:
                drafts.append(self._vobsub_draft(packet))
            else:
                self._pgs_draft(packet, drafts)
        self._close_open_cues(drafts)
        return drafts

    def _text_draft(self, packet: Packet) -> CueDraft:
        draft = CueDraft(start_time=packet.start_time, end_time=packet.end_time)
        try:
            draft.cue = TextCue(cue_text(packet.payload, self.codec))
        except EventError as e:
            draft.error = e
        return draft

    def _vobsub_draft(self, packet: Packet) -> CueDraft:
        start, end = spu_display_window(packet)
        return CueDraft(
            start_time=start,
            end_time=end,
            cue=BitmapCue(packet=packet, codec=SubtitleCodec.VOBSUB, palette=self._palette),
        )

    def _pgs_draft(self, packet: Packet, drafts: list[CueDraft]) -> None:
        try:
            frame = self._pgs.feed(packet.payload)
        except EventError as e:
            drafts.append(CueDraft(start_time=packet.start_time, end_time=packet.end_time, error=e))
            return

        # Any new composition replaces the cue on screen.
        if drafts and drafts[-1].end_time is None:
            drafts[-1].end_time = max(drafts[-1].start_time, packet.start_time)
        if frame.is_empty:
            return

        drafts.append(
            CueDraft(
                start_time=packet.start_time,
                end_time=packet.end_time,
                cue=BitmapCue(packet=packet, codec=SubtitleCodec.PGS, frame=frame),
            )
        )

    @staticmethod
    def _close_open_cues(drafts: list[CueDraft]) -> None:
        for draft in drafts:
            if draft.end_time is None:
                draft.end_time = draft.start_time + DEFAULT_CUE_DURATION_MS
