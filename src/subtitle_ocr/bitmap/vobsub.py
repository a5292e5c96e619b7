"""DVD VobSub (SPU) packet decoding and encoding.

Packet layout::

    2 bytes   total packet size
    2 bytes   offset of the first control sequence
    ...       RLE data for the even (top) and odd (bottom) fields
    ...       chain of control sequences

Each control sequence is a 2-byte delay (1024/90000 s ticks), a 2-byte offset
of the next sequence (pointing at itself for the last one) and commands up to
``0xFF``.

RLE codes are read nibble by nibble and pack ``length << 2 | color``:

    Length    Nibbles   Bits
    1-3       1         nncc
    4-15      2         00nn nncc
    16-63     3         0000 nnnn nncc
    64-255    4         0000 00nn nnnn nncc
    0         4         0000 0000 00cc      (fill to end of line)

Every scanline ends on a byte boundary; the pad nibble must be zero.
"""

import logging
import struct
from dataclasses import dataclass

import numpy as np

from ..config import MAX_BITMAP_DIMENSION, SPU_TICK_DENOMINATOR, SPU_TICK_NUMERATOR
from ..errors import BitmapDecodeError, MalformedRunLength
from ..models import RasterImage
from .palette import Palette

logger = logging.getLogger(__name__)

# Control commands
CMD_FORCE_DISPLAY = 0x00
CMD_START_DISPLAY = 0x01
CMD_STOP_DISPLAY = 0x02
CMD_SET_COLOR = 0x03
CMD_SET_ALPHA = 0x04
CMD_SET_AREA = 0x05
CMD_SET_FIELD_OFFSETS = 0x06
CMD_CHANGE_COLOR_CONTRAST = 0x07
CMD_END = 0xFF

DEFAULT_COLOR_CODES = (0, 1, 2, 3)
DEFAULT_ALPHA_CODES = (0, 15, 15, 15)

MAX_RUN_LENGTH = 255


def ticks_to_ms(ticks: int) -> int:
    """Convert SPU control delay ticks to milliseconds."""
    return ticks * SPU_TICK_NUMERATOR // SPU_TICK_DENOMINATOR


@dataclass
class ControlData:
    """Display parameters collected from the control sequence chain.

    ``color_codes`` and ``alpha_codes`` are indexed by the 2-bit RLE code.
    """

    forced: bool = False
    start_delay: int = 0
    stop_delay: int | None = None
    color_codes: tuple[int, int, int, int] = DEFAULT_COLOR_CODES
    alpha_codes: tuple[int, int, int, int] = DEFAULT_ALPHA_CODES
    area: tuple[int, int, int, int] | None = None  # x1, x2, y1, y2 (inclusive)
    field_offsets: tuple[int, int] | None = None  # even, odd

    @property
    def start_delay_ms(self) -> int:
        return ticks_to_ms(self.start_delay)

    @property
    def stop_delay_ms(self) -> int | None:
        return None if self.stop_delay is None else ticks_to_ms(self.stop_delay)


@dataclass
class SpuBitmap:
    """Decoded SPU packet: 2-bit code grid, rendered raster and control data."""

    codes: np.ndarray
    image: RasterImage
    control: ControlData


class NibbleReader:
    """Cursor over a byte buffer that reads 4-bit values, high nibble first."""

    def __init__(self, data: bytes, byte_offset: int = 0):
        self._data = data
        self._cursor = byte_offset * 2

    @property
    def byte_aligned(self) -> bool:
        return self._cursor % 2 == 0

    def take(self) -> int:
        byte_index = self._cursor // 2
        if byte_index >= len(self._data):
            raise MalformedRunLength(f"RLE data ended at byte {byte_index}")
        byte = self._data[byte_index]
        nibble = byte & 0x0F if self._cursor % 2 else byte >> 4
        self._cursor += 1
        return nibble

    def align(self) -> None:
        """Skip to the next byte boundary; the skipped pad nibble must be zero."""
        if self.byte_aligned:
            return
        pad = self.take()
        if pad != 0:
            raise MalformedRunLength(
                f"Line terminator not byte aligned (pad nibble 0x{pad:x} at byte {self._cursor // 2 - 1})"
            )


def read_run(reader: NibbleReader) -> tuple[int, int]:
    """Read one variable-length code. Returns (length, color); length 0 means end of line."""
    n1 = reader.take()
    if n1 >= 0x4:
        value = n1
    elif n1 >= 0x1:
        value = (n1 << 4) | reader.take()
    else:
        n2 = reader.take()
        if n2 >= 0x4:
            value = (n2 << 4) | reader.take()
        else:
            value = (n2 << 8) | (reader.take() << 4) | reader.take()
    return value >> 2, value & 0x3


def decode_rle_fields(
    field_data: bytes,
    field_offsets: tuple[int, int],
    width: int,
    height: int,
) -> np.ndarray:
    """Run-length decode both interlaced fields into a (height, width) code grid.

    Even rows come from the stream at ``field_offsets[0]``, odd rows from the
    stream at ``field_offsets[1]``.

    Raises:
        MalformedRunLength: If a run overflows its line, the data is
            truncated or a line does not end on a byte boundary
    """
    codes = np.zeros((height, width), dtype=np.uint8)
    readers = (
        NibbleReader(field_data, field_offsets[0]),
        NibbleReader(field_data, field_offsets[1]),
    )

    for y in range(height):
        reader = readers[y % 2]
        x = 0
        while x < width:
            length, color = read_run(reader)
            if length == 0:
                length = width - x
            elif length > width - x:
                raise MalformedRunLength(
                    f"Run of {length} overflows line {y} at column {x} (width {width})"
                )
            codes[y, x : x + length] = color
            x += length
        reader.align()

    return codes


def _nibbles_by_code(data: bytes, pos: int) -> tuple[int, int, int, int]:
    # Stored highest code first: code 3, 2, 1, 0.
    b1, b2 = data[pos], data[pos + 1]
    return (b2 & 0x0F, b2 >> 4, b1 & 0x0F, b1 >> 4)


def _require(data: bytes, pos: int, count: int, what: str) -> None:
    if pos + count > len(data):
        raise BitmapDecodeError(f"Control command {what} truncated at byte {pos}")


def parse_control(data: bytes, offset: int) -> ControlData:
    """Walk the control sequence chain starting at ``offset``.

    Raises:
        BitmapDecodeError: On truncated commands, unknown commands or a chain
            that loops back to an earlier sequence
    """
    control = ControlData()
    seen: set[int] = set()
    cursor = offset

    while True:
        if cursor in seen:
            raise BitmapDecodeError(f"Control sequence chain loops back to byte {cursor}")
        seen.add(cursor)

        _require(data, cursor, 4, "sequence header")
        delay, next_offset = struct.unpack_from(">HH", data, cursor)
        pos = cursor + 4

        while True:
            _require(data, pos, 1, "opcode")
            command = data[pos]
            pos += 1

            if command == CMD_END:
                break
            elif command == CMD_FORCE_DISPLAY:
                control.forced = True
            elif command == CMD_START_DISPLAY:
                control.start_delay = delay
            elif command == CMD_STOP_DISPLAY:
                control.stop_delay = delay
            elif command == CMD_SET_COLOR:
                _require(data, pos, 2, "set-color")
                control.color_codes = _nibbles_by_code(data, pos)
                pos += 2
            elif command == CMD_SET_ALPHA:
                _require(data, pos, 2, "set-alpha")
                control.alpha_codes = _nibbles_by_code(data, pos)
                pos += 2
            elif command == CMD_SET_AREA:
                _require(data, pos, 6, "set-area")
                b = data[pos : pos + 6]
                x1 = (b[0] << 4) | (b[1] >> 4)
                x2 = ((b[1] & 0x0F) << 8) | b[2]
                y1 = (b[3] << 4) | (b[4] >> 4)
                y2 = ((b[4] & 0x0F) << 8) | b[5]
                control.area = (x1, x2, y1, y2)
                pos += 6
            elif command == CMD_SET_FIELD_OFFSETS:
                _require(data, pos, 4, "set-field-offsets")
                control.field_offsets = struct.unpack_from(">HH", data, pos)
                pos += 4
            elif command == CMD_CHANGE_COLOR_CONTRAST:
                _require(data, pos, 2, "change-color-contrast")
                (size,) = struct.unpack_from(">H", data, pos)
                if size < 2:
                    raise BitmapDecodeError(f"Invalid change-color-contrast size {size}")
                pos += size
            else:
                raise BitmapDecodeError(f"Unknown control command 0x{command:02x} at byte {pos - 1}")

        if next_offset == cursor:
            break
        cursor = next_offset

    return control


def render_codes(codes: np.ndarray, control: ControlData, palette: Palette) -> np.ndarray:
    """Map the 2-bit code grid through the packet's color/alpha maps and the track palette."""
    lut = np.zeros((4, 4), dtype=np.uint8)
    for code in range(4):
        palette_index = control.color_codes[code]
        if palette_index >= len(palette):
            raise BitmapDecodeError(
                f"Color code {code} references palette entry {palette_index} "
                f"but the palette has {len(palette)} entries"
            )
        color = palette[palette_index]
        alpha = control.alpha_codes[code] * 17 * color.alpha // 255
        lut[code] = (color.red, color.green, color.blue, alpha)
    return lut[codes]


def decode_spu_packet(payload: bytes, palette: Palette) -> SpuBitmap:
    """Decode a complete SPU packet into a raster image.

    Raises:
        BitmapDecodeError: On any header, control or geometry problem
        MalformedRunLength: On invalid RLE data
    """
    if len(payload) < 4:
        raise BitmapDecodeError(f"Packet of {len(payload)} bytes is shorter than the SPU header")

    size, control_offset = struct.unpack_from(">HH", payload, 0)
    if size > len(payload):
        raise BitmapDecodeError(f"Packet declares {size} bytes but only {len(payload)} present")
    if not 4 <= control_offset < len(payload):
        raise BitmapDecodeError(f"Control offset {control_offset} outside packet")

    control = parse_control(payload, control_offset)
    if control.area is None:
        raise BitmapDecodeError("Packet has no display area command")
    if control.field_offsets is None:
        raise BitmapDecodeError("Packet has no field offset command")

    x1, x2, y1, y2 = control.area
    width = x2 - x1 + 1
    height = y2 - y1 + 1
    if not (0 < width <= MAX_BITMAP_DIMENSION and 0 < height <= MAX_BITMAP_DIMENSION):
        raise BitmapDecodeError(f"Invalid display area {width}x{height}")

    for field_offset in control.field_offsets:
        if not 4 <= field_offset <= control_offset:
            raise BitmapDecodeError(f"Field offset {field_offset} outside RLE data")

    codes = decode_rle_fields(payload[:control_offset], control.field_offsets, width, height)
    pixels = render_codes(codes, control, palette)
    logger.debug(
        f"Decoded SPU {width}x{height} at ({x1}, {y1}), "
        f"colors={control.color_codes} alphas={control.alpha_codes}"
    )
    return SpuBitmap(codes=codes, image=RasterImage(pixels=pixels, x=x1, y=y1), control=control)


# =============================================================================
# Encoding
# =============================================================================


def _run_nibbles(length: int, color: int) -> list[int]:
    value = (length << 2) | color
    if length == 0:
        return [0, 0, 0, color]
    if length < 4:
        return [value]
    if length < 16:
        return [value >> 4, value & 0xF]
    if length < 64:
        return [0, value >> 4, value & 0xF]
    return [0, value >> 8, (value >> 4) & 0xF, value & 0xF]


def _pack_nibbles(nibbles: list[int]) -> bytes:
    if len(nibbles) % 2:
        nibbles = nibbles + [0]
    return bytes((nibbles[i] << 4) | nibbles[i + 1] for i in range(0, len(nibbles), 2))


def encode_rle_field(rows: np.ndarray) -> bytes:
    """Run-length encode rows of 2-bit codes. Trailing background uses the end-of-line code."""
    nibbles: list[int] = []
    for row in rows:
        runs: list[tuple[int, int]] = []
        for value in row.tolist():
            if runs and runs[-1][1] == value:
                runs[-1] = (runs[-1][0] + 1, value)
            else:
                runs.append((1, value))

        for position, (length, color) in enumerate(runs):
            if position == len(runs) - 1 and color == 0:
                nibbles.extend(_run_nibbles(0, color))
                break
            while length > 0:
                chunk = min(length, MAX_RUN_LENGTH)
                nibbles.extend(_run_nibbles(chunk, color))
                length -= chunk

        if len(nibbles) % 2:
            nibbles.append(0)
    return _pack_nibbles(nibbles)


def _pack_code_nibbles(values: tuple[int, int, int, int]) -> bytes:
    # Inverse of _nibbles_by_code.
    return bytes(((values[3] << 4) | values[2], (values[1] << 4) | values[0]))


def _pack_area(start: int, end: int) -> bytes:
    return bytes((start >> 4, ((start & 0x0F) << 4) | (end >> 8), end & 0xFF))


def encode_spu_packet(
    codes: np.ndarray,
    *,
    x: int = 0,
    y: int = 0,
    color_codes: tuple[int, int, int, int] = DEFAULT_COLOR_CODES,
    alpha_codes: tuple[int, int, int, int] = DEFAULT_ALPHA_CODES,
    start_delay: int = 0,
    stop_delay: int | None = None,
    forced: bool = False,
) -> bytes:
    """Build an SPU packet from a (height, width) grid of 2-bit codes."""
    codes = np.asarray(codes, dtype=np.uint8)
    height, width = codes.shape
    if width == 0 or height == 0:
        raise ValueError("Cannot encode an empty bitmap")
    if codes.max(initial=0) > 3:
        raise ValueError("SPU codes must be 0-3")

    top = encode_rle_field(codes[0::2])
    bottom = encode_rle_field(codes[1::2])
    top_offset = 4
    bottom_offset = top_offset + len(top)
    control_offset = bottom_offset + len(bottom)

    commands = bytearray()
    if forced:
        commands.append(CMD_FORCE_DISPLAY)
    commands.append(CMD_START_DISPLAY)
    commands += bytes((CMD_SET_COLOR,)) + _pack_code_nibbles(color_codes)
    commands += bytes((CMD_SET_ALPHA,)) + _pack_code_nibbles(alpha_codes)
    commands += bytes((CMD_SET_AREA,)) + _pack_area(x, x + width - 1) + _pack_area(y, y + height - 1)
    commands += bytes((CMD_SET_FIELD_OFFSETS,)) + struct.pack(">HH", top_offset, bottom_offset)
    commands.append(CMD_END)

    first_length = 4 + len(commands)
    if stop_delay is None:
        control = struct.pack(">HH", start_delay, control_offset) + commands
    else:
        second_offset = control_offset + first_length
        control = (
            struct.pack(">HH", start_delay, second_offset)
            + commands
            + struct.pack(">HH", stop_delay, second_offset)
            + bytes((CMD_STOP_DISPLAY, CMD_END))
        )

    body = top + bottom + control
    return struct.pack(">HH", 4 + len(body), control_offset) + body
