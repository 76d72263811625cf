"""
Tick-synchronizing layer compositor.

Layers run at independent frame durations.  The compositor picks a tick
equal to the GCD of all durations, advances every layer by its own
number of ticks per frame, and stops after the LCM of the layer cycle
lengths so that every layer loops an integral number of times:

    tick        = gcd(d_1, ..., d_n)
    step_i      = d_i / tick
    total_ticks = lcm(frames_1 * step_1, ..., frames_n * step_n)

Each tick draws the layers bottom to top onto a transparent canvas and
quantizes the result.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import reduce

import numpy as np

from composegif.config import MAX_TICKS
from composegif.exceptions import CompositionError, CycleTooLongError
from composegif.quantize import quantize
from composegif.types import Frame, Layer, OutputAnimation
from composegif.worker import CancelToken

logger = logging.getLogger(__name__)


def gcd(a: int, b: int) -> int:
    return math.gcd(a, b)


def lcm(a: int, b: int) -> int:
    return a // math.gcd(a, b) * b


@dataclass
class CompositeSchedule:
    """Tick length and per-layer step counts for one flatten run."""
    tick_ms: int
    steps: list[int]
    total_ticks: int

    def frame_index(self, layer_index: int, frame_count: int, tick: int) -> int:
        return (tick // self.steps[layer_index]) % frame_count


def build_schedule(layers: list[Layer], limit: int = MAX_TICKS) -> CompositeSchedule:
    """Compute the synchronized schedule, refusing cycles longer than *limit*."""
    tick_ms = reduce(gcd, (layer.duration_ms for layer in layers))
    steps = [layer.duration_ms // tick_ms for layer in layers]
    total = 1
    for layer, step in zip(layers, steps):
        total = lcm(total, layer.frame_count * step)
        if total > limit:
            raise CycleTooLongError(total, limit)
    return CompositeSchedule(tick_ms=tick_ms, steps=steps, total_ticks=total)


class _LayerPainter:
    """Caches each frame of a layer as RGBA plus a draw mask."""

    def __init__(self, layer: Layer, canvas_w: int, canvas_h: int) -> None:
        self.layer = layer
        self._cache: dict[int, tuple[np.ndarray, np.ndarray]] = {}

        x0 = max(0, layer.offset_x)
        y0 = max(0, layer.offset_y)
        x1 = min(canvas_w, layer.offset_x + layer.width)
        y1 = min(canvas_h, layer.offset_y + layer.height)
        self.visible = x0 < x1 and y0 < y1
        self.dst = (slice(y0, y1), slice(x0, x1))
        self._src_origin = (y0 - layer.offset_y, x0 - layer.offset_x)
        self._src_extent = (y1 - y0, x1 - x0)

    def _prepare(self, index: int) -> tuple[np.ndarray, np.ndarray]:
        cached = self._cache.get(index)
        if cached is not None:
            return cached
        frame = self.layer.frames[index]
        drawable = np.ones(frame.palette_size, dtype=bool)
        if frame.has_transparency:
            drawable[frame.transparent_index] = False
        if self.layer.key_colors:
            for i, rgb in enumerate(frame.colors()):
                if tuple(int(c) for c in rgb) in self.layer.key_colors:
                    drawable[i] = False

        sy, sx = self._src_origin
        h, w = self._src_extent
        pixels = frame.pixels[sy:sy + h, sx:sx + w]
        rgba = frame.to_rgba()[sy:sy + h, sx:sx + w]
        mask = drawable[pixels] & (rgba[..., 3] > 0)
        self._cache[index] = (rgba, mask)
        return rgba, mask

    def paint(self, canvas: np.ndarray, index: int) -> None:
        if not self.visible:
            return
        rgba, mask = self._prepare(index)
        region = canvas[self.dst]
        region[mask] = rgba[mask]


def _is_passthrough(layers: list[Layer]) -> bool:
    if len(layers) != 1:
        return False
    layer = layers[0]
    return layer.offset_x == 0 and layer.offset_y == 0 and not layer.key_colors


def flatten(layers: list[Layer], cancel: CancelToken | None = None) -> OutputAnimation:
    """Composite *layers* (bottom first) into one synchronized animation."""
    if not layers:
        raise CompositionError("No layers to composite.")
    for i, layer in enumerate(layers):
        if not layer.frames:
            raise CompositionError(f"Layer {i + 1} has no frames.")
        if layer.duration_ms <= 0:
            raise CompositionError(
                f"Layer {i + 1} has a non-positive duration ({layer.duration_ms} ms)."
            )
        for frame in layer.frames:
            if frame.size != (layer.width, layer.height):
                raise CompositionError(
                    f"Layer {i + 1} is {layer.width}x{layer.height} but holds a "
                    f"{frame.width}x{frame.height} frame."
                )

    canvas_w = max(layer.width for layer in layers)
    canvas_h = max(layer.height for layer in layers)

    if _is_passthrough(layers):
        layer = layers[0]
        logger.info("Single layer without offset or key colors; passing %d frames through.",
                    layer.frame_count)
        return OutputAnimation(
            frames=list(layer.frames),
            width=layer.width,
            height=layer.height,
            duration_ms=layer.duration_ms,
        )

    schedule = build_schedule(layers)
    logger.info(
        "Compositing %d layers on %dx%d: tick %d ms, %d ticks.",
        len(layers), canvas_w, canvas_h, schedule.tick_ms, schedule.total_ticks,
    )

    painters = [_LayerPainter(layer, canvas_w, canvas_h) for layer in layers]
    memo: dict[tuple[int, ...], Frame] = {}
    frames: list[Frame] = []
    for tick in range(schedule.total_ticks):
        if cancel is not None:
            cancel.raise_if_cancelled()
        combo = tuple(
            schedule.frame_index(i, layer.frame_count, tick)
            for i, layer in enumerate(layers)
        )
        frame = memo.get(combo)
        if frame is None:
            canvas = np.zeros((canvas_h, canvas_w, 4), dtype=np.uint8)
            for painter, index in zip(painters, combo):
                painter.paint(canvas, index)
            frame = quantize(canvas)
            memo[combo] = frame
        frames.append(frame)

    logger.debug("Quantized %d distinct composites for %d ticks.", len(memo), len(frames))
    return OutputAnimation(
        frames=frames,
        width=canvas_w,
        height=canvas_h,
        duration_ms=schedule.tick_ms,
    )


def transparent_frames(reference: Layer) -> OutputAnimation:
    """A single fully transparent frame sized and timed like *reference*."""
    frame = Frame(
        pixels=np.zeros((reference.height, reference.width), dtype=np.uint8),
        palette=b"\x00\x00\x00",
        transparent_index=0,
    )
    return OutputAnimation(
        frames=[frame],
        width=reference.width,
        height=reference.height,
        duration_ms=reference.duration_ms,
    )
