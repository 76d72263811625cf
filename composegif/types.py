"""
Core data structures shared by the decoder, compositor and encoder.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np
from PIL import Image

from composegif.config import DEFAULT_DURATION_MS

RGB = tuple[int, int, int]


class DisposeOp(enum.IntEnum):
    """What happens to the canvas after a frame has been shown."""
    NONE = 0
    BACKGROUND = 1
    PREVIOUS = 2


class BlendOp(enum.IntEnum):
    """How a sub-frame is combined with the canvas when drawn."""
    SOURCE = 0      # Replace the region outright.
    OVER = 1        # Alpha-composite over the existing canvas.


class ResampleFilter(enum.Enum):
    """Resampling filter used when upscaling frames for export."""
    NEAREST = "nearest"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"

    @property
    def pillow(self) -> Image.Resampling:
        return {
            ResampleFilter.NEAREST: Image.Resampling.NEAREST,
            ResampleFilter.BILINEAR: Image.Resampling.BILINEAR,
            ResampleFilter.BICUBIC: Image.Resampling.BICUBIC,
        }[self]


@dataclass(frozen=True, eq=False)
class Frame:
    """An indexed raster plus its palette.

    ``pixels`` is a ``(height, width)`` uint8 array of palette indices and
    ``palette`` holds ``3 * n`` bytes of packed RGB triples.  Frames compare
    by identity, so a passthrough or memoized frame is the same object.
    """
    pixels: np.ndarray
    palette: bytes
    transparent_index: int = -1

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def palette_size(self) -> int:
        return len(self.palette) // 3

    @property
    def has_transparency(self) -> bool:
        return self.transparent_index >= 0

    def colors(self) -> np.ndarray:
        """Return the palette as an ``(n, 3)`` uint8 array."""
        return np.frombuffer(self.palette, dtype=np.uint8).reshape(-1, 3)

    def to_rgba(self) -> np.ndarray:
        """Expand to a ``(height, width, 4)`` RGBA raster."""
        lut = np.full((self.palette_size, 4), 255, dtype=np.uint8)
        lut[:, :3] = self.colors()
        if self.has_transparency:
            lut[self.transparent_index] = 0
        return lut[self.pixels]

    def to_image(self) -> Image.Image:
        """Return a Pillow ``P`` image carrying the palette and transparency."""
        img = Image.frombytes("P", self.size, self.pixels.tobytes())
        img.putpalette(self.palette)
        if self.has_transparency:
            img.info["transparency"] = self.transparent_index
        return img


@dataclass(frozen=True)
class FrameControl:
    """Placement, timing and compositing rules for one source frame.

    The delay is ``delay_num / delay_den`` seconds.  GIF sources store
    hundredths of a second, so they use ``delay_den=100``.
    """
    width: int
    height: int
    x_offset: int = 0
    y_offset: int = 0
    delay_num: int = 0
    delay_den: int = 100
    dispose_op: DisposeOp = DisposeOp.NONE
    blend_op: BlendOp = BlendOp.OVER
    sequence_number: int = 0

    @property
    def duration_ms(self) -> int:
        den = self.delay_den or 100
        ms = self.delay_num * 1000 // den
        return ms if ms > 0 else DEFAULT_DURATION_MS


@dataclass
class Layer:
    """One independently-timed input to the compositor."""
    frames: list[Frame]
    width: int
    height: int
    duration_ms: int = DEFAULT_DURATION_MS
    key_colors: frozenset[RGB] = frozenset()
    offset_x: int = 0
    offset_y: int = 0

    @property
    def frame_count(self) -> int:
        return len(self.frames)


@dataclass
class OutputAnimation:
    """Flattened frame sequence sharing one canvas size and duration."""
    frames: list[Frame]
    width: int
    height: int
    duration_ms: int

    @property
    def frame_count(self) -> int:
        return len(self.frames)


@dataclass
class DecodeResult:
    """Every reconstructed frame of a GIF or APNG source."""
    frames: list[Frame]
    width: int
    height: int
    duration_ms: int
    frame_durations_ms: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class LoadResult:
    """Frames loaded from one or more files for a single layer."""
    frames: list[Frame]
    width: int
    height: int
    warnings: list[str] = field(default_factory=list)
    extracted_duration_ms: int = -1
