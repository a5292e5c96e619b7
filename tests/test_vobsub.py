"""Unit tests for VobSub SPU decoding, encoding and palettes."""

import struct

import numpy as np
import pytest

from conftest import BLACK_ON_CLEAR_IDX, square_codes
from subtitle_ocr.bitmap.decoder import spu_display_window
from subtitle_ocr.bitmap.palette import Color, Palette, palette_for_track, parse_idx, ycbcr_to_rgb
from subtitle_ocr.bitmap.vobsub import (
    decode_rle_fields,
    decode_spu_packet,
    encode_rle_field,
    encode_spu_packet,
    parse_control,
    ticks_to_ms,
)
from subtitle_ocr.errors import BitmapDecodeError, InvalidCodecPrivate, MalformedRunLength
from subtitle_ocr.models import Packet

pytestmark = pytest.mark.unit


class TestRoundTrip:
    """Encoded code grids decode back exactly."""

    def test_square(self):
        """Test a filled square against background."""
        codes = square_codes()
        spu = decode_spu_packet(encode_spu_packet(codes), Palette.default())
        np.testing.assert_array_equal(spu.codes, codes)

    def test_all_codes_odd_height(self):
        """Test every code on an odd number of rows."""
        rng = np.random.default_rng(7)
        codes = rng.integers(0, 4, size=(7, 23), dtype=np.uint8)
        spu = decode_spu_packet(encode_spu_packet(codes), Palette.default())
        np.testing.assert_array_equal(spu.codes, codes)

    def test_long_runs(self):
        """Test runs longer than one code can hold."""
        codes = np.zeros((3, 600), dtype=np.uint8)
        codes[0, :] = 1
        codes[1, 10:400] = 2
        codes[2, 300:] = 3
        spu = decode_spu_packet(encode_spu_packet(codes), Palette.default())
        np.testing.assert_array_equal(spu.codes, codes)

    def test_single_row(self):
        """Test a one-row bitmap with an empty bottom field."""
        codes = np.array([[0, 1, 1, 2, 0]], dtype=np.uint8)
        spu = decode_spu_packet(encode_spu_packet(codes), Palette.default())
        np.testing.assert_array_equal(spu.codes, codes)

    def test_origin(self):
        """Test the display area origin becomes the raster origin."""
        spu = decode_spu_packet(encode_spu_packet(square_codes(), x=120, y=400), Palette.default())
        assert (spu.image.x, spu.image.y) == (120, 400)
        assert (spu.image.width, spu.image.height) == (8, 8)

    def test_field_interleave(self):
        """Test even rows come from the first field and odd rows from the second."""
        top = encode_rle_field(np.array([[1, 1], [3, 3]], dtype=np.uint8))
        bottom = encode_rle_field(np.array([[2, 2]], dtype=np.uint8))
        data = b"\x00" * 4 + top + bottom
        codes = decode_rle_fields(data, (4, 4 + len(top)), width=2, height=3)
        np.testing.assert_array_equal(codes, [[1, 1], [2, 2], [3, 3]])


class TestMalformedRunLength:
    """Invalid RLE data raises MalformedRunLength, never a crash."""

    def test_misaligned_terminator(self):
        """Test a non-zero pad nibble at the end of a line."""
        payload = bytearray(encode_spu_packet(np.array([[1]], dtype=np.uint8)))
        assert payload[4] == 0x50
        payload[4] = 0x57
        with pytest.raises(MalformedRunLength, match="not byte aligned"):
            decode_spu_packet(bytes(payload), Palette.default())

    def test_run_overflows_line(self):
        """Test a run longer than the remaining line."""
        # 3 pixels of code 1 on a 2-pixel line
        with pytest.raises(MalformedRunLength, match="overflows"):
            decode_rle_fields(b"\xd0", (0, 0), width=2, height=1)

    def test_truncated_field(self):
        """Test field data that ends mid-line."""
        with pytest.raises(MalformedRunLength):
            decode_rle_fields(b"\x40", (0, 0), width=4, height=1)

    def test_is_bitmap_decode_error(self):
        """Test MalformedRunLength is caught as a BitmapDecodeError but keeps its own kind."""
        error = MalformedRunLength("bad")
        assert isinstance(error, BitmapDecodeError)
        assert error.kind == "MalformedRunLength"


class TestPacketErrors:
    """Header and control sequence failures."""

    def test_short_packet(self):
        """Test a packet shorter than the header."""
        with pytest.raises(BitmapDecodeError):
            decode_spu_packet(b"\x00\x02", Palette.default())

    def test_control_offset_outside_packet(self):
        """Test a control offset past the end of the packet."""
        with pytest.raises(BitmapDecodeError, match="Control offset"):
            decode_spu_packet(struct.pack(">HH", 8, 200) + b"\x00" * 4, Palette.default())

    def test_missing_area(self):
        """Test a control sequence without a display area command."""
        payload = struct.pack(">HH", 9, 4) + struct.pack(">HH", 0, 4) + b"\xff"
        with pytest.raises(BitmapDecodeError, match="display area"):
            decode_spu_packet(payload, Palette.default())

    def test_unknown_command(self):
        """Test an unknown control command."""
        payload = struct.pack(">HH", 10, 4) + struct.pack(">HH", 0, 4) + b"\x42\xff"
        with pytest.raises(BitmapDecodeError, match="Unknown control command"):
            decode_spu_packet(payload, Palette.default())

    def test_control_loop(self):
        """Test a control chain that loops back to an earlier sequence."""
        # sequence at 4 -> 9 -> 4
        data = struct.pack(">HH", 0, 9) + b"\xff" + struct.pack(">HH", 0, 4) + b"\xff"
        with pytest.raises(BitmapDecodeError, match="loops"):
            parse_control(b"\x00" * 4 + data, 4)

    def test_palette_index_out_of_range(self):
        """Test a color code pointing past the track palette."""
        payload = encode_spu_packet(square_codes(), color_codes=(0, 9, 2, 3))
        with pytest.raises(BitmapDecodeError, match="palette"):
            decode_spu_packet(payload, Palette.from_rgb([(0, 0, 0)] * 4))


class TestControl:
    """Control sequence values."""

    def test_color_and_alpha_maps(self):
        """Test color/alpha maps are applied per code."""
        palette = parse_idx(BLACK_ON_CLEAR_IDX)
        payload = encode_spu_packet(square_codes(), color_codes=(0, 2, 1, 3), alpha_codes=(0, 8, 15, 15))
        spu = decode_spu_packet(payload, palette)
        assert spu.control.color_codes == (0, 2, 1, 3)
        assert spu.control.alpha_codes == (0, 8, 15, 15)
        # code 1 -> palette entry 2 (white) at alpha 8 * 17
        assert tuple(spu.image.pixels[3, 3]) == (255, 255, 255, 136)
        assert spu.image.pixels[0, 0, 3] == 0

    def test_delays(self):
        """Test start/stop delays and the forced flag."""
        payload = encode_spu_packet(square_codes(), start_delay=45, stop_delay=180, forced=True)
        control = decode_spu_packet(payload, Palette.default()).control
        assert control.forced
        assert control.start_delay_ms == ticks_to_ms(45) == 512
        assert control.stop_delay_ms == 2048

    def test_display_window_uses_delays(self):
        """Test the start delay shifts the cue and the stop delay ends it."""
        payload = encode_spu_packet(square_codes(), start_delay=45, stop_delay=180)
        assert spu_display_window(Packet(payload, 10_000)) == (10_512, 12_048)

    def test_display_window_prefers_packet_end(self):
        """Test a packet end time wins over the stop delay."""
        payload = encode_spu_packet(square_codes(), stop_delay=180)
        assert spu_display_window(Packet(payload, 1000, 1500)) == (1000, 1500)

    def test_display_window_default_duration(self):
        """Test the default duration when nothing gives an end."""
        assert spu_display_window(Packet(encode_spu_packet(square_codes()), 1000)) == (1000, 5000)

    def test_display_window_unreadable_control(self):
        """Test unreadable control data falls back to packet times."""
        assert spu_display_window(Packet(b"\x00\x08\x00\x06\xff\xff", 0, 700)) == (0, 700)


class TestPalette:
    """Track palette parsing."""

    def test_parse_idx(self):
        """Test palette and frame size from an .idx header."""
        palette = parse_idx(BLACK_ON_CLEAR_IDX)
        assert len(palette) == 16
        assert palette[2] == Color(255, 255, 255)
        assert palette.frame_size == (720, 480)

    def test_missing_palette_line(self):
        """Test a header without a palette."""
        with pytest.raises(InvalidCodecPrivate):
            parse_idx(b"size: 720x480\n")

    def test_bad_entry(self):
        """Test a non-hex palette entry."""
        with pytest.raises(InvalidCodecPrivate):
            parse_idx(b"palette: 000000, zzzzzz\n")

    def test_default_palette(self):
        """Test tracks without codec private data get the grey ramp."""
        palette = palette_for_track(None)
        assert len(palette) == 16
        assert palette[0] == Color(0, 0, 0)
        assert palette[15] == Color(255, 255, 255)

    def test_palette_size_limit(self):
        """Test palettes hold at most 16 colors."""
        with pytest.raises(ValueError):
            Palette.from_rgb([(0, 0, 0)] * 17)

    def test_ycbcr_to_rgb(self):
        """Test BT.601 conversion of neutral values and clamping."""
        assert ycbcr_to_rgb(255, 128, 128) == (255, 255, 255)
        assert ycbcr_to_rgb(0, 128, 128) == (0, 0, 0)
        red, _, blue = ycbcr_to_rgb(128, 128, 255)
        assert red == 255
        assert blue == 128
