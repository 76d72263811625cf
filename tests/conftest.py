"""
Shared fixtures for the composegif test suite.
"""

from __future__ import annotations

import io
import struct
import tempfile
import zlib
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from composegif.lzw import lzw_encode, min_code_size_for
from composegif.types import Frame, Layer


# ---------------------------------------------------------------------------
# Raster and frame helpers
# ---------------------------------------------------------------------------

def solid_rgba(width: int, height: int, color=(255, 0, 0, 255)) -> np.ndarray:
    """An (h, w, 4) raster filled with one RGBA color."""
    out = np.empty((height, width, 4), dtype=np.uint8)
    out[...] = color
    return out


def indexed_frame(pixels, palette, transparent_index: int = -1) -> Frame:
    """Build a Frame from nested lists of indices and a list of RGB tuples."""
    return Frame(
        pixels=np.asarray(pixels, dtype=np.uint8),
        palette=b"".join(bytes(c) for c in palette),
        transparent_index=transparent_index,
    )


def solid_frame(width: int, height: int, color=(255, 0, 0)) -> Frame:
    return Frame(
        pixels=np.zeros((height, width), dtype=np.uint8),
        palette=bytes(color),
    )


def make_layer(n_frames: int, duration_ms: int, width: int = 2, height: int = 2,
               **kwargs) -> Layer:
    """A layer of distinct solid frames (frame i has red = i)."""
    frames = [solid_frame(width, height, (i % 256, 0, 0)) for i in range(n_frames)]
    return Layer(frames=frames, width=width, height=height, duration_ms=duration_ms, **kwargs)


# ---------------------------------------------------------------------------
# Container builders
# ---------------------------------------------------------------------------

def _chunk(ctype: bytes, data: bytes) -> bytes:
    return (struct.pack(">I", len(data)) + ctype + data
            + struct.pack(">I", zlib.crc32(ctype + data) & 0xFFFFFFFF))


def _png_idat(rgba: np.ndarray) -> tuple[bytes, bytes]:
    """Return (IHDR body, concatenated IDAT data) of an RGBA raster saved by Pillow."""
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba)).save(buf, format="PNG")
    data = buf.getvalue()
    pos = 8
    ihdr = b""
    idat = []
    while pos < len(data):
        length, ctype = struct.unpack(">I4s", data[pos:pos + 8])
        body = data[pos + 8:pos + 8 + length]
        if ctype == b"IHDR":
            ihdr = body
        elif ctype == b"IDAT":
            idat.append(body)
        pos += 12 + length
    return ihdr, b"".join(idat)


def build_apng(width: int, height: int, frames: list[dict],
               default_image_is_frame: bool = True,
               num_frames: int | None = None) -> bytes:
    """Assemble an APNG from RGBA frames.

    Each frame dict holds ``rgba`` plus optional ``x``, ``y``,
    ``delay_num``, ``delay_den``, ``dispose`` and ``blend``.  When
    *default_image_is_frame* is False a separate default image (the first
    frame's pixels) precedes the first fcTL and is not part of the
    animation.
    """
    out = [b"\x89PNG\r\n\x1a\n"]
    base_ihdr, _ = _png_idat(solid_rgba(width, height, (0, 0, 0, 0)))
    out.append(_chunk(b"IHDR", struct.pack(">II", width, height) + base_ihdr[8:]))
    count = len(frames) if num_frames is None else num_frames
    out.append(_chunk(b"acTL", struct.pack(">II", count, 0)))

    seq = 0
    if not default_image_is_frame:
        _, hidden = _png_idat(solid_rgba(width, height, (9, 9, 9, 255)))
        out.append(_chunk(b"IDAT", hidden))

    for i, opts in enumerate(frames):
        rgba = opts["rgba"]
        h, w = rgba.shape[:2]
        fctl = struct.pack(
            ">IIIIIHHBB", seq, w, h, opts.get("x", 0), opts.get("y", 0),
            opts.get("delay_num", 1), opts.get("delay_den", 10),
            opts.get("dispose", 0), opts.get("blend", 0),
        )
        out.append(_chunk(b"fcTL", fctl))
        seq += 1
        _, data = _png_idat(rgba)
        if i == 0 and default_image_is_frame:
            out.append(_chunk(b"IDAT", data))
        else:
            out.append(_chunk(b"fdAT", struct.pack(">I", seq) + data))
            seq += 1
    out.append(_chunk(b"IEND", b""))
    return b"".join(out)


def _sub_blocks(data: bytes) -> bytes:
    out = bytearray()
    for i in range(0, len(data), 255):
        block = data[i:i + 255]
        out.append(len(block))
        out += block
    out.append(0)
    return bytes(out)


def build_gif(width: int, height: int, images: list[dict],
              global_palette: list[tuple[int, int, int]] | None = None) -> bytes:
    """Assemble a GIF89a from indexed images.

    Each image dict holds ``indices`` (2-D list) plus optional ``x``,
    ``y``, ``palette`` (local table), ``delay_cs``, ``disposal``,
    ``transparent`` and ``interlaced``.
    """
    def table(colors):
        size = 2
        while size < len(colors):
            size *= 2
        raw = b"".join(bytes(c) for c in colors).ljust(3 * size, b"\x00")
        return raw, size.bit_length() - 2, size

    out = bytearray(b"GIF89a")
    if global_palette is not None:
        raw, bits, _ = table(global_palette)
        out += struct.pack("<HHBBB", width, height, 0x80 | bits, 0, 0) + raw
    else:
        out += struct.pack("<HHBBB", width, height, 0, 0, 0)

    for img in images:
        rows = np.asarray(img["indices"], dtype=np.uint8)
        h, w = rows.shape
        transparent = img.get("transparent", -1)
        flags = (img.get("disposal", 0) << 2) | (1 if transparent >= 0 else 0)
        out += b"\x21\xf9\x04" + struct.pack("<BHB", flags, img.get("delay_cs", 10),
                                             max(transparent, 0)) + b"\x00"
        packed = 0
        local = b""
        colors = global_palette
        if "palette" in img:
            local, bits, _ = table(img["palette"])
            packed |= 0x80 | bits
            colors = img["palette"]
        if img.get("interlaced"):
            packed |= 0x40
            order = (list(range(0, h, 8)) + list(range(4, h, 8))
                     + list(range(2, h, 4)) + list(range(1, h, 2)))
            rows = rows[order]
        out += b"\x2c" + struct.pack("<HHHHB", img.get("x", 0), img.get("y", 0), w, h, packed)
        out += local
        mcs = min_code_size_for(len(colors))
        out.append(mcs)
        out += _sub_blocks(lzw_encode(rows.tobytes(), mcs))
    out.append(0x3B)
    return bytes(out)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory(prefix="composegif_test_") as d:
        yield Path(d)


@pytest.fixture
def make_apng():
    return build_apng


@pytest.fixture
def make_gif():
    return build_gif


@pytest.fixture
def write_png(tmp_dir):
    """Save an image (Pillow image or RGBA array) as ``tmp_dir/name``."""
    def _write(name: str, image) -> Path:
        if isinstance(image, np.ndarray):
            image = Image.fromarray(image)
        path = tmp_dir / name
        image.save(path)
        return path
    return _write
