"""
Animated GIF89a encoding.

Frames are written with a NETSCAPE2.0 looping extension, one graphic
control extension per frame (disposal "restore to background", optional
transparent index, shared delay) and LZW-compressed image data.  When
every frame carries the same palette it is written once as the global
color table; otherwise every frame gets a local table.
"""

from __future__ import annotations

import io
import logging
import struct
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
from PIL import Image

from composegif.config import ALPHA_THRESHOLD, DEFAULT_DURATION_MS, MAX_SCALE, MIN_DELAY_CS
from composegif.exceptions import EncodeError
from composegif.lzw import lzw_encode, min_code_size_for
from composegif.quantize import nearest_indices
from composegif.types import Frame, ResampleFilter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_SUB_BLOCK = 255
_DISPOSE_TO_BACKGROUND = 2


def delay_centiseconds(duration_ms: int) -> int:
    """Round a duration to GIF hundredths, never below ``MIN_DELAY_CS``."""
    return max(MIN_DELAY_CS, (duration_ms + 5) // 10)


def table_size(palette_size: int) -> int:
    """Smallest power of two, at least 2, holding *palette_size* entries."""
    size = 2
    while size < palette_size:
        size <<= 1
    return size


def _padded_table(palette: bytes) -> tuple[bytes, int]:
    """Return the color table padded to a power of two and its size field."""
    n = table_size(len(palette) // 3)
    return palette + b"\x00" * (3 * n - len(palette)), n.bit_length() - 2


def shared_palette(frames: Sequence[Frame]) -> bytes | None:
    """The palette common to every frame, or None if they differ."""
    first = frames[0].palette
    if all(f.palette == first for f in frames[1:]):
        return first
    return None


def scale_frame(frame: Frame, scale: int, resample: ResampleFilter) -> Frame:
    """Upscale *frame* by an integer factor, keeping its palette."""
    if scale == 1:
        return frame
    if resample == ResampleFilter.NEAREST:
        pixels = np.repeat(np.repeat(frame.pixels, scale, axis=0), scale, axis=1)
        return Frame(pixels=pixels, palette=frame.palette,
                     transparent_index=frame.transparent_index)

    size = (frame.width * scale, frame.height * scale)
    resized = np.asarray(Image.fromarray(frame.to_rgba()).resize(size, resample.pillow))
    flat = resized.reshape(-1, 4)
    indices = np.empty(len(flat), dtype=np.uint8)

    transparent = flat[:, 3] < ALPHA_THRESHOLD
    if frame.has_transparency:
        indices[transparent] = frame.transparent_index
        opaque = ~transparent
    else:
        opaque = np.ones(len(flat), dtype=bool)
    if opaque.any():
        colors, inverse = np.unique(flat[opaque, :3], axis=0, return_inverse=True)
        mapped = nearest_indices(colors, frame.palette, frame.transparent_index)
        indices[opaque] = mapped[inverse.reshape(-1)]
    return Frame(pixels=indices.reshape(size[1], size[0]), palette=frame.palette,
                 transparent_index=frame.transparent_index)


def _write_sub_blocks(out: io.BytesIO, data: bytes) -> None:
    for start in range(0, len(data), _SUB_BLOCK):
        block = data[start:start + _SUB_BLOCK]
        out.write(bytes((len(block),)))
        out.write(block)
    out.write(b"\x00")


def _write_frame(out: io.BytesIO, frame: Frame, delay_cs: int,
                 global_table: bool) -> None:
    flags = _DISPOSE_TO_BACKGROUND << 2
    if frame.has_transparency:
        flags |= 0x01
    out.write(b"\x21\xf9\x04")
    out.write(struct.pack("<BHB", flags, delay_cs, max(frame.transparent_index, 0)))
    out.write(b"\x00")

    if global_table:
        packed = 0
        n_colors = table_size(frame.palette_size)
    else:
        table, size_field = _padded_table(frame.palette)
        packed = 0x80 | size_field
        n_colors = len(table) // 3
    out.write(b"\x2c")
    out.write(struct.pack("<HHHHB", 0, 0, frame.width, frame.height, packed))
    if not global_table:
        out.write(table)

    min_code_size = min_code_size_for(n_colors)
    out.write(bytes((min_code_size,)))
    _write_sub_blocks(out, lzw_encode(frame.pixels.tobytes(), min_code_size))


def encode(
    frames: Sequence[Frame],
    *,
    scale: int = 1,
    resample: ResampleFilter = ResampleFilter.NEAREST,
    duration_ms: int = DEFAULT_DURATION_MS,
    progress: ProgressCallback | None = None,
) -> bytes:
    """Encode *frames* as an infinitely looping animated GIF."""
    if not frames:
        raise EncodeError("No frames to encode.")
    if not 1 <= scale <= MAX_SCALE:
        raise EncodeError(f"Scale must be between 1 and {MAX_SCALE}, got {scale}.")

    delay_cs = delay_centiseconds(duration_ms)
    if delay_cs * 10 != duration_ms:
        logger.warning(
            "Frame duration %d ms is not representable in GIF; using %d ms.",
            duration_ms, delay_cs * 10,
        )

    palette = shared_palette(frames)
    width = max(f.width for f in frames) * scale
    height = max(f.height for f in frames) * scale

    out = io.BytesIO()
    out.write(b"GIF89a")
    if palette is not None:
        table, size_field = _padded_table(palette)
        out.write(struct.pack("<HHBBB", width, height, 0x80 | 0x70 | size_field, 0, 0))
        out.write(table)
    else:
        out.write(struct.pack("<HHBBB", width, height, 0x70, 0, 0))

    # NETSCAPE2.0 application extension, loop count 0 = forever.
    out.write(b"\x21\xff\x0bNETSCAPE2.0\x03\x01\x00\x00\x00")

    total = len(frames)
    for i, frame in enumerate(frames):
        _write_frame(out, scale_frame(frame, scale, resample), delay_cs, palette is not None)
        if progress is not None:
            progress(i + 1, total)

    out.write(b"\x3b")
    data = out.getvalue()
    logger.info(
        "Encoded %d frames at %dx%d (%s color table, %d bytes).",
        total, width, height, "global" if palette is not None else "local", len(data),
    )
    return data


def write_gif(frames: Sequence[Frame], path: Path | str, **kwargs) -> Path:
    """Encode *frames* and write the GIF to *path*."""
    path = Path(path)
    data = encode(frames, **kwargs)
    with open(path, "wb") as fh:
        fh.write(data)
    return path
