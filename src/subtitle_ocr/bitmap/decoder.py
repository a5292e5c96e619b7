"""Codec dispatch for bitmap cues."""

import logging

from ..config import DEFAULT_CUE_DURATION_MS
from ..errors import BitmapDecodeError
from ..models import BitmapCue, Packet, RasterImage, SubtitleCodec
from .palette import Palette
from .pgs import render_frame
from .vobsub import decode_spu_packet, parse_control

logger = logging.getLogger(__name__)


def decode_bitmap(cue: BitmapCue) -> RasterImage:
    """Decode a bitmap cue into an RGBA raster.

    Raises:
        BitmapDecodeError: If the cue cannot be decoded (MalformedRunLength for RLE faults)
    """
    if cue.codec is SubtitleCodec.VOBSUB:
        return decode_spu_packet(cue.packet.payload, cue.palette or Palette.default()).image
    if cue.codec is SubtitleCodec.PGS:
        if cue.frame is None:
            raise BitmapDecodeError("PGS cue has no resolved composition")
        return render_frame(cue.frame)
    raise BitmapDecodeError(f"No bitmap decoder for codec {cue.codec}")


def spu_display_window(packet: Packet) -> tuple[int, int]:
    """Display window of a VobSub packet in milliseconds.

    The control sequence start delay shifts the start. The end is the packet
    end, else the stop delay, else the default cue duration. Unreadable
    control data falls back to the packet times; the decode stage reports it.
    """
    start_delay = 0
    stop_delay = None
    payload = packet.payload
    if len(payload) >= 4:
        control_offset = int.from_bytes(payload[2:4], "big")
        try:
            control = parse_control(payload, control_offset)
        except BitmapDecodeError as e:
            logger.debug(f"Control data unreadable at {packet.start_time} ms: {e}")
        else:
            start_delay = control.start_delay_ms
            stop_delay = control.stop_delay_ms

    start = packet.start_time + start_delay
    if packet.end_time is not None:
        end = packet.end_time
    elif stop_delay is not None:
        end = packet.start_time + stop_delay
    else:
        end = start + DEFAULT_CUE_DURATION_MS
    return start, max(start, end)
