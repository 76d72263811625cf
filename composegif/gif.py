"""
GIF container reading.

Parses the GIF87a / GIF89a block structure (logical screen descriptor,
color tables, graphic control and application extensions, image
descriptors) into per-frame records, and exposes them through the
:class:`~composegif.decoder.AnimationSource` interface so the shared
disposal state machine can rebuild every visible frame.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field

import numpy as np

from composegif.decoder import AnimationSource
from composegif.exceptions import DecodeError
from composegif.lzw import lzw_decode
from composegif.types import BlendOp, DisposeOp, FrameControl

logger = logging.getLogger(__name__)

GIF_SIGNATURES = (b"GIF87a", b"GIF89a")

EXTENSION_INTRODUCER = 0x21
IMAGE_SEPARATOR = 0x2C
TRAILER = 0x3B
GRAPHIC_CONTROL_LABEL = 0xF9
APPLICATION_LABEL = 0xFF
NETSCAPE_ID = b"NETSCAPE2.0"

_DISPOSAL_METHODS = {
    2: DisposeOp.BACKGROUND,
    3: DisposeOp.PREVIOUS,
}


@dataclass
class GraphicControl:
    """Contents of a graphic control extension."""
    disposal: int = 0
    delay_cs: int = 0
    transparent_index: int = -1


@dataclass
class GifImage:
    """One image descriptor together with its compressed data."""
    left: int
    top: int
    width: int
    height: int
    interlaced: bool
    local_color_table: bytes | None
    min_code_size: int
    data: bytes
    control: GraphicControl = field(default_factory=GraphicControl)

    def frame_control(self) -> FrameControl:
        return FrameControl(
            width=self.width,
            height=self.height,
            x_offset=self.left,
            y_offset=self.top,
            delay_num=self.control.delay_cs,
            delay_den=100,
            dispose_op=_DISPOSAL_METHODS.get(self.control.disposal, DisposeOp.NONE),
            blend_op=BlendOp.OVER,
        )


@dataclass
class GifStream:
    """A parsed GIF file."""
    version: str
    width: int
    height: int
    global_color_table: bytes | None
    background_index: int
    images: list[GifImage]
    loop_count: int | None = None     # None = no NETSCAPE extension


class _Cursor:
    """Bounds-checked little-endian reader over a byte string."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def read(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise DecodeError(f"Truncated GIF: needed {n} bytes at offset {self.pos}.")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self.read(2))[0]

    def sub_blocks(self) -> bytes:
        """Read a chain of data sub-blocks up to the zero-length terminator."""
        parts = []
        while True:
            n = self.u8()
            if n == 0:
                return b"".join(parts)
            parts.append(self.read(n))


def _color_table(cursor: _Cursor, packed: int) -> bytes | None:
    if not packed & 0x80:
        return None
    return cursor.read(3 * (1 << ((packed & 0x07) + 1)))


def parse_gif(data: bytes) -> GifStream:
    """Parse raw GIF bytes into a :class:`GifStream`."""
    cursor = _Cursor(data)
    signature = cursor.read(6) if len(data) >= 6 else b""
    if signature not in GIF_SIGNATURES:
        raise DecodeError("Not a GIF file (bad signature).")

    width = cursor.u16()
    height = cursor.u16()
    packed = cursor.u8()
    background_index = cursor.u8()
    cursor.u8()  # pixel aspect ratio
    global_table = _color_table(cursor, packed)

    images: list[GifImage] = []
    pending = GraphicControl()
    loop_count: int | None = None

    while True:
        if cursor.at_end():
            if not images:
                raise DecodeError("Truncated GIF: no trailer and no image data.")
            logger.debug("GIF ends without a trailer after %d images.", len(images))
            break
        block = cursor.u8()
        if block == TRAILER:
            break
        if block == EXTENSION_INTRODUCER:
            label = cursor.u8()
            body = cursor.sub_blocks()
            if label == GRAPHIC_CONTROL_LABEL:
                if len(body) < 4:
                    raise DecodeError("Malformed graphic control extension.")
                flags, delay, transparent = struct.unpack("<BHB", body[:4])
                pending = GraphicControl(
                    disposal=(flags >> 2) & 0x07,
                    delay_cs=delay,
                    transparent_index=transparent if flags & 0x01 else -1,
                )
            elif label == APPLICATION_LABEL and body[:11] == NETSCAPE_ID:
                if len(body) >= 14 and body[11] == 1:
                    loop_count = struct.unpack("<H", body[12:14])[0]
            continue
        if block == IMAGE_SEPARATOR:
            left, top, w, h, img_packed = struct.unpack("<HHHHB", cursor.read(9))
            local_table = _color_table(cursor, img_packed)
            min_code_size = cursor.u8()
            images.append(GifImage(
                left=left, top=top, width=w, height=h,
                interlaced=bool(img_packed & 0x40),
                local_color_table=local_table,
                min_code_size=min_code_size,
                data=cursor.sub_blocks(),
                control=pending,
            ))
            pending = GraphicControl()
            continue
        raise DecodeError(f"Unknown GIF block 0x{block:02x} at offset {cursor.pos - 1}.")

    if not images:
        raise DecodeError("GIF contains no frames.")

    return GifStream(
        version=signature.decode("ascii"),
        width=width,
        height=height,
        global_color_table=global_table,
        background_index=background_index,
        images=images,
        loop_count=loop_count,
    )


def _deinterlace(rows: np.ndarray) -> np.ndarray:
    height = rows.shape[0]
    order = (list(range(0, height, 8)) + list(range(4, height, 8))
             + list(range(2, height, 4)) + list(range(1, height, 2)))
    out = np.empty_like(rows)
    out[order] = rows
    return out


def decode_image(image: GifImage, global_table: bytes | None) -> np.ndarray:
    """Decompress one image descriptor into an ``(h, w, 4)`` RGBA sub-frame."""
    table = image.local_color_table or global_table
    if not table:
        raise DecodeError("GIF frame has no color table.")

    expected = image.width * image.height
    indices = lzw_decode(image.data, image.min_code_size)
    if len(indices) < expected:
        raise DecodeError(
            f"Corrupt GIF image data: got {len(indices)} pixels, expected {expected}."
        )
    rows = np.frombuffer(indices[:expected], dtype=np.uint8).reshape(image.height, image.width)
    if image.interlaced:
        rows = _deinterlace(rows)

    lut = np.zeros((256, 4), dtype=np.uint8)
    colors = np.frombuffer(table, dtype=np.uint8).reshape(-1, 3)[:256]
    lut[:len(colors), :3] = colors
    lut[:, 3] = 255
    if 0 <= image.control.transparent_index < 256:
        lut[image.control.transparent_index] = 0
    return lut[rows]


class GifSource(AnimationSource):
    """Format A: frames and timing read from a GIF file."""

    name = "gif"

    def __init__(self, stream: GifStream) -> None:
        self.stream = stream
        self._controls = [img.frame_control() for img in stream.images]

    @classmethod
    def from_bytes(cls, data: bytes) -> GifSource:
        return cls(parse_gif(data))

    @property
    def canvas_size(self) -> tuple[int, int]:
        width, height = self.stream.width, self.stream.height
        if width <= 0 or height <= 0:
            # Fall back to the first frame when the screen size is unset.
            first = self.stream.images[0]
            width, height = first.width, first.height
        return width, height

    @property
    def frame_controls(self) -> list[FrameControl]:
        return self._controls

    def frame_pixels(self, index: int) -> np.ndarray:
        return decode_image(self.stream.images[index], self.stream.global_color_table)


def is_gif(data: bytes) -> bool:
    return data[:6] in GIF_SIGNATURES
