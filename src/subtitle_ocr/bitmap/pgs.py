"""Blu-ray PGS (S_HDMV/PGS) display set parsing and rendering.

A Matroska PGS block is one display set: a sequence of segments, each a
1-byte type, a 2-byte size and a body, closed by an END segment.

    0x14  PDS  palette definition (YCbCr + alpha entries)
    0x15  ODS  object definition (RLE bitmap, possibly fragmented)
    0x16  PCS  presentation composition (which objects to show where)
    0x17  WDS  window definitions
    0x80  END

Palettes, windows and objects persist across display sets until the next
epoch start, so display sets must be fed to ``PgsDecoder`` in stream order.
``PgsDecoder.feed`` returns a self-contained ``PgsFrame`` snapshot which can
then be rendered independently of any other frame.
"""

import logging
import struct
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType

import numpy as np

from ..config import MAX_BITMAP_DIMENSION
from ..errors import BitmapDecodeError, MalformedRunLength
from ..models import RasterImage
from .palette import Color, ycbcr_to_rgb

logger = logging.getLogger(__name__)

SEGMENT_PDS = 0x14
SEGMENT_ODS = 0x15
SEGMENT_PCS = 0x16
SEGMENT_WDS = 0x17
SEGMENT_END = 0x80

ODS_FIRST_IN_SEQUENCE = 0x80
ODS_LAST_IN_SEQUENCE = 0x40

OBJECT_CROPPED = 0x80
OBJECT_FORCED = 0x40

MAX_SEGMENT_SIZE = 0xFFFF
MAX_PGS_RUN = 0x3FFF


class CompositionState(IntEnum):
    NORMAL = 0x00
    ACQUISITION_POINT = 0x40
    EPOCH_START = 0x80


@dataclass(frozen=True)
class WindowDefinition:
    window_id: int
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class CompositionObject:
    object_id: int
    window_id: int
    x: int
    y: int
    forced: bool = False
    crop: tuple[int, int, int, int] | None = None  # x, y, width, height within the object


@dataclass(frozen=True)
class PresentationComposition:
    width: int
    height: int
    composition_number: int
    state: CompositionState
    palette_update: bool
    palette_id: int
    objects: tuple[CompositionObject, ...] = ()


@dataclass(frozen=True)
class PaletteDefinition:
    palette_id: int
    version: int
    entries: Mapping[int, Color] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectDefinition:
    object_id: int
    version: int
    width: int
    height: int
    rle_data: bytes


@dataclass
class DisplaySet:
    composition: PresentationComposition
    windows: list[WindowDefinition] = field(default_factory=list)
    palettes: list[PaletteDefinition] = field(default_factory=list)
    objects: list[ObjectDefinition] = field(default_factory=list)


@dataclass(frozen=True)
class PgsFrame:
    """Composition plus the epoch state it references, detached from the decoder."""

    composition: PresentationComposition
    windows: Mapping[int, WindowDefinition]
    palette: PaletteDefinition | None
    objects: Mapping[int, ObjectDefinition]

    @property
    def is_empty(self) -> bool:
        """A composition without objects clears the screen."""
        return not self.composition.objects


class ByteReader:
    """Big-endian cursor over a byte buffer."""

    def __init__(self, data: bytes, error: type[BitmapDecodeError] = BitmapDecodeError):
        self._data = data
        self._pos = 0
        self._error = error

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, count: int) -> bytes:
        if count > self.remaining:
            raise self._error(f"Needed {count} bytes at offset {self._pos}, {self.remaining} left")
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u24(self) -> int:
        return int.from_bytes(self.take(3), "big")

    def rest(self) -> bytes:
        return self.take(self.remaining)


# =============================================================================
# Segment parsing
# =============================================================================


def _parse_pcs(body: bytes) -> PresentationComposition:
    reader = ByteReader(body)
    width = reader.u16()
    height = reader.u16()
    reader.u8()  # frame rate
    composition_number = reader.u16()
    raw_state = reader.u8()
    try:
        state = CompositionState(raw_state)
    except ValueError as e:
        raise BitmapDecodeError(f"Invalid composition state 0x{raw_state:02x}") from e
    palette_update = reader.u8() & 0x80 != 0
    palette_id = reader.u8()

    objects = []
    for _ in range(reader.u8()):
        object_id = reader.u16()
        window_id = reader.u8()
        flags = reader.u8()
        x = reader.u16()
        y = reader.u16()
        crop = None
        if flags & OBJECT_CROPPED:
            crop = (reader.u16(), reader.u16(), reader.u16(), reader.u16())
        objects.append(
            CompositionObject(
                object_id=object_id,
                window_id=window_id,
                x=x,
                y=y,
                forced=bool(flags & OBJECT_FORCED),
                crop=crop,
            )
        )

    return PresentationComposition(
        width=width,
        height=height,
        composition_number=composition_number,
        state=state,
        palette_update=palette_update,
        palette_id=palette_id,
        objects=tuple(objects),
    )


def _parse_wds(body: bytes) -> list[WindowDefinition]:
    reader = ByteReader(body)
    return [
        WindowDefinition(
            window_id=reader.u8(),
            x=reader.u16(),
            y=reader.u16(),
            width=reader.u16(),
            height=reader.u16(),
        )
        for _ in range(reader.u8())
    ]


def _parse_pds(body: bytes) -> PaletteDefinition:
    reader = ByteReader(body)
    palette_id = reader.u8()
    version = reader.u8()
    if reader.remaining % 5:
        raise BitmapDecodeError(f"Palette {palette_id} has a partial entry")

    entries = {}
    while reader.remaining:
        entry_id, luminance, cr, cb, alpha = reader.take(5)
        red, green, blue = ycbcr_to_rgb(luminance, cb, cr)
        entries[entry_id] = Color(red, green, blue, alpha)
    return PaletteDefinition(palette_id=palette_id, version=version, entries=entries)


@dataclass
class _ObjectFragment:
    object_id: int
    version: int
    flags: int
    width: int = 0
    height: int = 0
    data: bytes = b""


def _parse_ods(body: bytes) -> _ObjectFragment:
    reader = ByteReader(body)
    fragment = _ObjectFragment(object_id=reader.u16(), version=reader.u8(), flags=reader.u8())
    if fragment.flags & ODS_FIRST_IN_SEQUENCE:
        reader.u24()  # object data length, includes width and height
        fragment.width = reader.u16()
        fragment.height = reader.u16()
    fragment.data = reader.rest()
    return fragment


def _assemble_objects(fragments: list[_ObjectFragment]) -> list[ObjectDefinition]:
    pending: dict[int, _ObjectFragment] = {}
    objects = []
    for fragment in fragments:
        if fragment.flags & ODS_FIRST_IN_SEQUENCE:
            pending[fragment.object_id] = fragment
        elif fragment.object_id in pending:
            pending[fragment.object_id].data += fragment.data
        else:
            raise BitmapDecodeError(f"Object {fragment.object_id} continues without a first fragment")

        if fragment.flags & ODS_LAST_IN_SEQUENCE:
            objects.append(pending.pop(fragment.object_id))

    if pending:
        logger.debug(f"Objects {sorted(pending)} missing last-in-sequence fragment")
        objects.extend(pending.values())

    return [
        ObjectDefinition(
            object_id=f.object_id,
            version=f.version,
            width=f.width,
            height=f.height,
            rle_data=f.data,
        )
        for f in objects
    ]


def read_display_set(payload: bytes) -> DisplaySet:
    """Parse one display set.

    Raises:
        BitmapDecodeError: On truncated or unknown segments, or a missing PCS
    """
    reader = ByteReader(payload)
    composition = None
    windows: list[WindowDefinition] = []
    palettes: list[PaletteDefinition] = []
    fragments: list[_ObjectFragment] = []

    while reader.remaining:
        segment_type = reader.u8()
        body = reader.take(reader.u16())

        if segment_type == SEGMENT_PCS:
            composition = _parse_pcs(body)
        elif segment_type == SEGMENT_WDS:
            windows.extend(_parse_wds(body))
        elif segment_type == SEGMENT_PDS:
            palettes.append(_parse_pds(body))
        elif segment_type == SEGMENT_ODS:
            fragments.append(_parse_ods(body))
        elif segment_type == SEGMENT_END:
            break
        else:
            raise BitmapDecodeError(f"Unknown PGS segment type 0x{segment_type:02x}")

    if composition is None:
        raise BitmapDecodeError("Display set has no presentation composition segment")

    return DisplaySet(
        composition=composition,
        windows=windows,
        palettes=palettes,
        objects=_assemble_objects(fragments),
    )


class PgsDecoder:
    """Folds display sets into epoch state and hands out immutable frames."""

    def __init__(self):
        self._windows: dict[int, WindowDefinition] = {}
        self._palettes: dict[int, PaletteDefinition] = {}
        self._objects: dict[int, ObjectDefinition] = {}

    def feed(self, payload: bytes) -> PgsFrame:
        display_set = read_display_set(payload)
        composition = display_set.composition

        if composition.state is CompositionState.EPOCH_START:
            self._windows.clear()
            self._palettes.clear()
            self._objects.clear()

        for palette in display_set.palettes:
            previous = self._palettes.get(palette.palette_id)
            entries = dict(previous.entries) if previous else {}
            entries.update(palette.entries)
            self._palettes[palette.palette_id] = PaletteDefinition(
                palette_id=palette.palette_id,
                version=palette.version,
                entries=MappingProxyType(entries),
            )
        for window in display_set.windows:
            self._windows[window.window_id] = window
        for obj in display_set.objects:
            self._objects[obj.object_id] = obj

        return PgsFrame(
            composition=composition,
            windows=MappingProxyType(dict(self._windows)),
            palette=self._palettes.get(composition.palette_id),
            objects=MappingProxyType(
                {
                    o.object_id: self._objects[o.object_id]
                    for o in composition.objects
                    if o.object_id in self._objects
                }
            ),
        )


# =============================================================================
# Rendering
# =============================================================================


def _check_size(what: str, width: int, height: int) -> None:
    if width > MAX_BITMAP_DIMENSION or height > MAX_BITMAP_DIMENSION:
        raise BitmapDecodeError(f"{what} {width}x{height} exceeds {MAX_BITMAP_DIMENSION} pixels")


def decode_pgs_rle(data: bytes, width: int, height: int) -> np.ndarray:
    """Decode object RLE data into a (height, width) grid of palette entry ids.

    Raises:
        BitmapDecodeError: If the object is larger than MAX_BITMAP_DIMENSION
        MalformedRunLength: On truncated codes or runs that overflow a line
    """
    _check_size("Object", width, height)
    indices = np.zeros((height, width), dtype=np.uint8)
    reader = ByteReader(data, error=MalformedRunLength)
    x = y = 0

    while reader.remaining:
        leader = reader.u8()
        if leader:
            length, color = 1, leader
        else:
            flag = reader.u8()
            if flag == 0:
                x, y = 0, y + 1
                continue
            length = flag & 0x3F
            if flag & 0x40:
                length = (length << 8) | reader.u8()
            color = reader.u8() if flag & 0x80 else 0

        if y >= height:
            raise MalformedRunLength(f"Pixel data continues past line {height}")
        if x + length > width:
            raise MalformedRunLength(f"Run of {length} overflows line {y} at column {x} (width {width})")
        indices[y, x : x + length] = color
        x += length

    return indices


def _palette_lut(palette: PaletteDefinition) -> np.ndarray:
    # Undefined entries stay fully transparent.
    lut = np.zeros((256, 4), dtype=np.uint8)
    for entry_id, color in palette.entries.items():
        lut[entry_id] = color.as_tuple()
    return lut


def render_frame(frame: PgsFrame) -> RasterImage:
    """Render the composition's objects onto a raster covering their union.

    Raises:
        BitmapDecodeError: If a referenced palette, object or window is missing
        MalformedRunLength: On invalid object RLE data
    """
    composition = frame.composition
    number = composition.composition_number
    if frame.is_empty:
        raise BitmapDecodeError(f"Composition {number} has no objects to render")
    if frame.palette is None:
        raise BitmapDecodeError(f"Palette {composition.palette_id} missing in composition {number}")
    lut = _palette_lut(frame.palette)

    placements: list[tuple[int, int, np.ndarray]] = []
    for obj in composition.objects:
        definition = frame.objects.get(obj.object_id)
        if definition is None:
            raise BitmapDecodeError(f"Object {obj.object_id} missing in composition {number}")
        window = frame.windows.get(obj.window_id)
        if window is None:
            raise BitmapDecodeError(f"Window {obj.window_id} missing in composition {number}")
        _check_size(f"Window {window.window_id}", window.width, window.height)

        indices = decode_pgs_rle(definition.rle_data, definition.width, definition.height)
        if obj.crop is not None:
            crop_x, crop_y, crop_w, crop_h = obj.crop
            indices = indices[crop_y : crop_y + crop_h, crop_x : crop_x + crop_w]

        # Clip to the window.
        left = max(obj.x, window.x)
        top = max(obj.y, window.y)
        right = min(obj.x + indices.shape[1], window.x + window.width)
        bottom = min(obj.y + indices.shape[0], window.y + window.height)
        if right <= left or bottom <= top:
            logger.debug(f"Object {obj.object_id} lies outside window {obj.window_id}")
            continue
        placements.append(
            (left, top, indices[top - obj.y : bottom - obj.y, left - obj.x : right - obj.x])
        )

    if not placements:
        raise BitmapDecodeError(f"Composition {number} has no visible objects")

    origin_x = min(x for x, _, _ in placements)
    origin_y = min(y for _, y, _ in placements)
    width = max(x + grid.shape[1] for x, _, grid in placements) - origin_x
    height = max(y + grid.shape[0] for _, y, grid in placements) - origin_y
    _check_size(f"Composition {number}", width, height)

    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    for x, y, grid in placements:
        rgba = lut[grid]
        region = pixels[y - origin_y : y - origin_y + grid.shape[0], x - origin_x : x - origin_x + grid.shape[1]]
        visible = rgba[:, :, 3] > 0
        region[visible] = rgba[visible]

    return RasterImage(pixels=pixels, x=origin_x, y=origin_y)


# =============================================================================
# Encoding
# =============================================================================


def encode_pgs_rle(indices: np.ndarray) -> bytes:
    """Run-length encode a grid of palette entry ids, one end-of-line per row."""
    out = bytearray()
    for row in np.asarray(indices, dtype=np.uint8):
        values = row.tolist()
        position = 0
        while position < len(values):
            color = values[position]
            end = position
            while end < len(values) and values[end] == color and end - position < MAX_PGS_RUN:
                end += 1
            length = end - position
            if color == 0:
                if length < 64:
                    out += bytes((0, length))
                else:
                    out += bytes((0, 0x40 | (length >> 8), length & 0xFF))
            elif length == 1:
                out.append(color)
            elif length < 64:
                out += bytes((0, 0x80 | length, color))
            else:
                out += bytes((0, 0xC0 | (length >> 8), length & 0xFF, color))
            position = end
        out += b"\x00\x00"
    return bytes(out)


def _segment(segment_type: int, body: bytes) -> bytes:
    return struct.pack(">BH", segment_type, len(body)) + body


def encode_pgs_display_set(
    *,
    video_size: tuple[int, int] = (1920, 1080),
    composition_number: int = 0,
    state: CompositionState = CompositionState.EPOCH_START,
    palette_id: int = 0,
    palette: Mapping[int, tuple[int, int, int, int]] | None = None,
    windows: list[WindowDefinition] | None = None,
    objects: list[tuple[CompositionObject, np.ndarray]] | None = None,
) -> bytes:
    """Build a display set.

    ``palette`` maps entry ids to (Y, Cr, Cb, alpha). ``objects`` pairs each
    composition object with its index grid; an empty list builds a clearing
    composition.
    """
    objects = objects or []
    composed = bytearray()
    for obj, _ in objects:
        flags = (OBJECT_CROPPED if obj.crop else 0) | (OBJECT_FORCED if obj.forced else 0)
        composed += struct.pack(">HBBHH", obj.object_id, obj.window_id, flags, obj.x, obj.y)
        if obj.crop:
            composed += struct.pack(">HHHH", *obj.crop)

    pcs = struct.pack(
        ">HHBHBBBB",
        video_size[0],
        video_size[1],
        0x10,
        composition_number,
        int(state),
        0x80 if palette else 0,
        palette_id,
        len(objects),
    ) + bytes(composed)
    out = bytearray(_segment(SEGMENT_PCS, pcs))

    if windows:
        wds = bytes((len(windows),)) + b"".join(
            struct.pack(">BHHHH", w.window_id, w.x, w.y, w.width, w.height) for w in windows
        )
        out += _segment(SEGMENT_WDS, wds)

    if palette:
        pds = bytes((palette_id, 0)) + b"".join(
            bytes((entry_id, y, cr, cb, alpha)) for entry_id, (y, cr, cb, alpha) in sorted(palette.items())
        )
        out += _segment(SEGMENT_PDS, pds)

    seen_objects: set[int] = set()
    for obj, grid in objects:
        if obj.object_id in seen_objects:
            continue
        seen_objects.add(obj.object_id)
        grid = np.asarray(grid, dtype=np.uint8)
        rle = encode_pgs_rle(grid)
        header = struct.pack(">HH", grid.shape[1], grid.shape[0])
        first_capacity = MAX_SEGMENT_SIZE - 11
        chunks = [rle[:first_capacity]]
        rest = rle[first_capacity:]
        while rest:
            chunks.append(rest[: MAX_SEGMENT_SIZE - 4])
            rest = rest[MAX_SEGMENT_SIZE - 4 :]

        for position, chunk in enumerate(chunks):
            flags = 0
            if position == 0:
                flags |= ODS_FIRST_IN_SEQUENCE
            if position == len(chunks) - 1:
                flags |= ODS_LAST_IN_SEQUENCE
            body = struct.pack(">HBB", obj.object_id, 0, flags)
            if position == 0:
                body += (len(rle) + 4).to_bytes(3, "big") + header
            out += _segment(SEGMENT_ODS, body + chunk)

    out += _segment(SEGMENT_END, b"")
    return bytes(out)
