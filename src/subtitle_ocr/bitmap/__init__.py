"""Bitmap subtitle decoding: VobSub (DVD) and PGS (Blu-ray)."""

from .decoder import decode_bitmap, spu_display_window
from .palette import Color, Palette, palette_for_track, parse_idx
from .pgs import PgsDecoder, PgsFrame, decode_pgs_rle, encode_pgs_display_set, render_frame
from .vobsub import ControlData, SpuBitmap, decode_spu_packet, encode_spu_packet

__all__ = [
    # Palette
    "Color",
    "Palette",
    "parse_idx",
    "palette_for_track",
    # VobSub
    "ControlData",
    "SpuBitmap",
    "decode_spu_packet",
    "encode_spu_packet",
    # PGS
    "PgsDecoder",
    "PgsFrame",
    "decode_pgs_rle",
    "render_frame",
    "encode_pgs_display_set",
    # Dispatch
    "decode_bitmap",
    "spu_display_window",
]
