"""
APNG container reading.

An APNG is a PNG whose chunk stream carries an ``acTL`` (animation
control) chunk, one ``fcTL`` (frame control) chunk per frame, and frame
data in ``IDAT`` (first frame, when its fcTL precedes the IDATs) or
``fdAT`` chunks.  Each frame's data is re-wrapped as a standalone PNG
(the original IHDR with the frame size patched in, plus the palette and
transparency chunks) and handed to Pillow for decompression.
"""

from __future__ import annotations

import io
import logging
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image

from composegif.decoder import AnimationSource
from composegif.exceptions import DecodeError
from composegif.types import BlendOp, DisposeOp, FrameControl

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
MAX_CHUNK_LENGTH = 100_000_000

# Chunks that must travel with each re-wrapped frame.
ANCILLARY_CHUNK_TYPES = frozenset({
    b"PLTE", b"tRNS", b"cHRM", b"gAMA", b"iCCP", b"sRGB", b"sBIT",
    b"bKGD", b"pHYs", b"sPLT",
})


@dataclass(frozen=True)
class Chunk:
    type: bytes
    data: bytes


@dataclass
class ApngStream:
    """The parts of an APNG needed to rebuild its frames."""
    ihdr: bytes
    num_frames: int
    num_plays: int
    controls: list[FrameControl]
    frame_data: list[list[bytes]]
    ancillary: list[Chunk] = field(default_factory=list)

    @property
    def width(self) -> int:
        return struct.unpack(">I", self.ihdr[0:4])[0]

    @property
    def height(self) -> int:
        return struct.unpack(">I", self.ihdr[4:8])[0]


def iter_chunks(data: bytes):
    """Yield every chunk of a PNG byte string, stopping after IEND."""
    if data[:8] != PNG_SIGNATURE:
        raise DecodeError("Not a PNG file (bad signature).")
    pos = 8
    while pos < len(data):
        if pos + 8 > len(data):
            raise DecodeError(f"Truncated PNG chunk header at offset {pos}.")
        length, ctype = struct.unpack(">I4s", data[pos:pos + 8])
        if length > MAX_CHUNK_LENGTH:
            raise DecodeError(f"Invalid chunk length: {length}")
        end = pos + 8 + length
        if end + 4 > len(data):
            raise DecodeError(f"Truncated {ctype.decode('latin-1')} chunk at offset {pos}.")
        body = data[pos + 8:end]
        crc = struct.unpack(">I", data[end:end + 4])[0]
        if zlib.crc32(ctype + body) & 0xFFFFFFFF != crc:
            raise DecodeError(f"CRC mismatch in {ctype.decode('latin-1')} chunk at offset {pos}.")
        yield Chunk(ctype, body)
        pos = end + 4
        if ctype == b"IEND":
            return


def has_actl(data: bytes) -> bool:
    """True if *data* is a PNG with an acTL chunk before its first IDAT."""
    if data[:8] != PNG_SIGNATURE:
        return False
    pos = 8
    while pos + 8 <= len(data):
        length, ctype = struct.unpack(">I4s", data[pos:pos + 8])
        if ctype == b"acTL":
            return True
        if ctype == b"IDAT":
            return False
        pos += 12 + length
    return False


def is_apng(path: Path | str) -> bool:
    """Quick check: valid PNG signature and an acTL chunk before IDAT."""
    with open(path, "rb") as fh:
        head = fh.read(8)
        if head != PNG_SIGNATURE:
            return False
        while True:
            header = fh.read(8)
            if len(header) < 8:
                return False
            length, ctype = struct.unpack(">I4s", header)
            if ctype == b"acTL":
                return True
            if ctype == b"IDAT":
                return False
            fh.seek(length + 4, io.SEEK_CUR)


def parse_fctl(data: bytes) -> FrameControl:
    """Decode the 26-byte body of an fcTL chunk."""
    if len(data) < 26:
        raise DecodeError(f"fcTL chunk too short ({len(data)} bytes).")
    (seq, width, height, x_offset, y_offset,
     delay_num, delay_den, dispose, blend) = struct.unpack(">IIIIIHHBB", data[:26])
    try:
        dispose_op = DisposeOp(dispose)
        blend_op = BlendOp(blend)
    except ValueError:
        raise DecodeError(
            f"Invalid fcTL ops (dispose={dispose}, blend={blend}) in frame sequence {seq}."
        ) from None
    return FrameControl(
        width=width,
        height=height,
        x_offset=x_offset,
        y_offset=y_offset,
        delay_num=delay_num,
        delay_den=delay_den,
        dispose_op=dispose_op,
        blend_op=blend_op,
        sequence_number=seq,
    )


def parse_apng(data: bytes) -> ApngStream:
    """Split an APNG byte string into frame controls and frame data."""
    ihdr: bytes | None = None
    num_frames = -1
    num_plays = 0
    controls: list[FrameControl] = []
    frame_data: list[list[bytes]] = []
    ancillary: list[Chunk] = []
    current: list[bytes] | None = None
    idat_seen = False
    default_image_is_frame = False

    for chunk in iter_chunks(data):
        if chunk.type == b"IHDR":
            ihdr = chunk.data
        elif chunk.type == b"acTL":
            if len(chunk.data) < 8:
                raise DecodeError("acTL chunk too short.")
            num_frames, num_plays = struct.unpack(">II", chunk.data[:8])
        elif chunk.type == b"fcTL":
            controls.append(parse_fctl(chunk.data))
            if not idat_seen and len(controls) == 1:
                default_image_is_frame = True
            if current is not None:
                frame_data.append(current)
            current = []
        elif chunk.type == b"IDAT":
            idat_seen = True
            if default_image_is_frame and current is not None:
                current.append(chunk.data)
        elif chunk.type == b"fdAT":
            if current is not None:
                if len(chunk.data) < 4:
                    raise DecodeError("fdAT chunk too short.")
                current.append(chunk.data[4:])
        elif not idat_seen and chunk.type in ANCILLARY_CHUNK_TYPES:
            ancillary.append(chunk)

    if current is not None:
        frame_data.append(current)

    if ihdr is None:
        raise DecodeError("APNG missing IHDR chunk")
    if len(ihdr) < 13:
        raise DecodeError("APNG IHDR chunk too short")
    if num_frames < 0:
        raise DecodeError("APNG missing acTL chunk")
    if len(controls) != num_frames:
        raise DecodeError(
            f"APNG frame count mismatch: acTL says {num_frames} "
            f"but found {len(controls)} fcTL chunks"
        )
    if len(frame_data) != num_frames:
        raise DecodeError(
            f"APNG frame data mismatch: expected {num_frames} frames "
            f"but found image data for {len(frame_data)}"
        )
    logger.debug("APNG: %d frames, %d plays, %d ancillary chunks.",
                 num_frames, num_plays, len(ancillary))
    return ApngStream(
        ihdr=ihdr,
        num_frames=num_frames,
        num_plays=num_plays,
        controls=controls,
        frame_data=frame_data,
        ancillary=ancillary,
    )


def write_chunk(out: io.BytesIO, ctype: bytes, data: bytes) -> None:
    out.write(struct.pack(">I", len(data)))
    out.write(ctype)
    out.write(data)
    out.write(struct.pack(">I", zlib.crc32(ctype + data) & 0xFFFFFFFF))


def build_frame_png(stream: ApngStream, index: int) -> bytes:
    """Wrap frame *index* as a standalone PNG."""
    control = stream.controls[index]
    out = io.BytesIO()
    out.write(PNG_SIGNATURE)
    write_chunk(out, b"IHDR", struct.pack(">II", control.width, control.height) + stream.ihdr[8:])
    for chunk in stream.ancillary:
        write_chunk(out, chunk.type, chunk.data)
    for data in stream.frame_data[index]:
        write_chunk(out, b"IDAT", data)
    write_chunk(out, b"IEND", b"")
    return out.getvalue()


class ApngSource(AnimationSource):
    """Format B: frames and timing read from an APNG file."""

    name = "apng"

    def __init__(self, stream: ApngStream) -> None:
        self.stream = stream

    @classmethod
    def from_bytes(cls, data: bytes) -> ApngSource:
        return cls(parse_apng(data))

    @property
    def canvas_size(self) -> tuple[int, int]:
        return self.stream.width, self.stream.height

    @property
    def frame_controls(self) -> list[FrameControl]:
        return self.stream.controls

    def frame_pixels(self, index: int) -> np.ndarray:
        png = build_frame_png(self.stream, index)
        try:
            with Image.open(io.BytesIO(png)) as img:
                img.load()
                rgba = img.convert("RGBA")
        except (OSError, SyntaxError, ValueError, zlib.error) as exc:
            raise DecodeError(f"Failed to decode APNG frame {index + 1}: {exc}") from exc
        return np.asarray(rgba)
