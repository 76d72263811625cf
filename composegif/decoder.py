"""
Disposal/blend state machine shared by the GIF and APNG readers.

Both formats describe an animation as sub-frames drawn onto one canvas,
each with a blend rule (replace the region, or alpha-composite over it)
and a disposal rule applied after the frame has been shown (keep the
canvas, clear the region, or restore the canvas as it was before the
frame was drawn).  The container readers only parse bytes; this module
owns the canvas:

    canvas_0 = transparent
    canvas_i+1, snapshot_i = advance(canvas_i, control_i, pixels_i)

Each snapshot is quantized into an indexed :class:`Frame`.
"""

from __future__ import annotations

import abc
import logging
from collections import Counter
from pathlib import Path

import numpy as np

from composegif.config import DEFAULT_DURATION_MS
from composegif.exceptions import DecodeError
from composegif.quantize import quantize
from composegif.types import BlendOp, DecodeResult, DisposeOp, FrameControl
from composegif.worker import CancelToken

logger = logging.getLogger(__name__)


class AnimationSource(abc.ABC):
    """Container-specific access to an animation's frame records."""

    name: str = ""

    @property
    @abc.abstractmethod
    def canvas_size(self) -> tuple[int, int]:
        """(width, height) of the logical canvas."""

    @property
    @abc.abstractmethod
    def frame_controls(self) -> list[FrameControl]:
        """Frame control records in file order."""

    @abc.abstractmethod
    def frame_pixels(self, index: int) -> np.ndarray:
        """Decompressed ``(h, w, 4)`` RGBA pixels of sub-frame *index*."""

    def durations_ms(self) -> list[int]:
        return [fc.duration_ms for fc in self.frame_controls]


def blank_canvas(width: int, height: int) -> np.ndarray:
    return np.zeros((height, width, 4), dtype=np.uint8)


def _clip(canvas: np.ndarray, control: FrameControl) -> tuple[slice, slice, slice, slice] | None:
    """Return (dst_rows, dst_cols, src_rows, src_cols) or None if off-canvas."""
    canvas_h, canvas_w = canvas.shape[:2]
    x0 = max(0, control.x_offset)
    y0 = max(0, control.y_offset)
    x1 = min(canvas_w, control.x_offset + control.width)
    y1 = min(canvas_h, control.y_offset + control.height)
    if x0 >= x1 or y0 >= y1:
        return None
    sx, sy = x0 - control.x_offset, y0 - control.y_offset
    return (slice(y0, y1), slice(x0, x1),
            slice(sy, sy + (y1 - y0)), slice(sx, sx + (x1 - x0)))


def composite_over(dst: np.ndarray, src: np.ndarray) -> np.ndarray:
    """Source-over blend of two non-premultiplied RGBA regions."""
    sa = src[..., 3:4].astype(np.float32) / 255.0
    da = dst[..., 3:4].astype(np.float32) / 255.0
    out_a = sa + da * (1.0 - sa)
    src_rgb = src[..., :3].astype(np.float32)
    dst_rgb = dst[..., :3].astype(np.float32)
    with np.errstate(divide="ignore", invalid="ignore"):
        out_rgb = (src_rgb * sa + dst_rgb * da * (1.0 - sa)) / out_a
    out_rgb = np.where(out_a > 0, out_rgb, 0.0)

    out = np.empty_like(dst)
    out[..., :3] = np.clip(np.rint(out_rgb), 0, 255).astype(np.uint8)
    out[..., 3] = np.clip(np.rint(out_a[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return out


def advance(
    canvas: np.ndarray,
    control: FrameControl,
    pixels: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Draw one sub-frame and apply its disposal.

    Returns ``(next_canvas, snapshot)`` where *snapshot* is the full canvas
    as displayed for this frame.  The input canvas is never modified.
    """
    if pixels.shape[:2] != (control.height, control.width):
        raise DecodeError(
            f"Frame data is {pixels.shape[1]}x{pixels.shape[0]}, "
            f"frame control declares {control.width}x{control.height}."
        )

    drawn = canvas.copy()
    region = _clip(drawn, control)
    if region is not None:
        dst_rows, dst_cols, src_rows, src_cols = region
        src = pixels[src_rows, src_cols]
        if control.blend_op == BlendOp.SOURCE:
            drawn[dst_rows, dst_cols] = src
        else:
            drawn[dst_rows, dst_cols] = composite_over(drawn[dst_rows, dst_cols], src)

    snapshot = drawn
    if control.dispose_op == DisposeOp.PREVIOUS:
        next_canvas = canvas.copy()
    elif control.dispose_op == DisposeOp.BACKGROUND:
        next_canvas = drawn.copy()
        if region is not None:
            next_canvas[region[0], region[1]] = 0
    else:
        next_canvas = drawn.copy()
    return next_canvas, snapshot


def summarize_durations(durations: list[int]) -> tuple[int, list[str]]:
    """Pick the most frequent duration; warn when frames disagree."""
    if not durations:
        return DEFAULT_DURATION_MS, []
    counts = Counter(durations)
    # most_common is stable, so ties go to the first duration seen.
    representative = counts.most_common(1)[0][0]
    warnings: list[str] = []
    if len(counts) > 1:
        distinct = ", ".join(str(d) for d in counts)
        warnings.append(
            f"Inconsistent frame durations [{distinct}] ms; "
            f"using most common: {representative}ms"
        )
    return representative, warnings


def decode(source: AnimationSource, cancel: CancelToken | None = None) -> DecodeResult:
    """Rebuild and quantize every visible frame of *source*."""
    width, height = source.canvas_size
    controls = source.frame_controls
    canvas = blank_canvas(width, height)
    frames = []
    for i, control in enumerate(controls):
        if cancel is not None:
            cancel.raise_if_cancelled()
        canvas, snapshot = advance(canvas, control, source.frame_pixels(i))
        frames.append(quantize(snapshot))

    durations = [fc.duration_ms for fc in controls]
    duration, warnings = summarize_durations(durations)
    for w in warnings:
        logger.warning(w)
    logger.info("Decoded %d %s frames at %dx%d.", len(frames), source.name, width, height)
    return DecodeResult(
        frames=frames,
        width=width,
        height=height,
        duration_ms=duration,
        frame_durations_ms=durations,
        warnings=warnings,
    )


def open_source(data: bytes, name: str = "<bytes>") -> AnimationSource:
    """Choose the container reader from the file signature."""
    from composegif.apng import ApngSource, has_actl
    from composegif.gif import GifSource, is_gif

    if is_gif(data):
        return GifSource.from_bytes(data)
    if has_actl(data):
        return ApngSource.from_bytes(data)
    raise DecodeError(f"Unsupported container signature: {name}")


def decode_bytes(data: bytes, name: str = "<bytes>",
                 cancel: CancelToken | None = None) -> DecodeResult:
    return decode(open_source(data, name), cancel=cancel)


def decode_file(path: Path | str, cancel: CancelToken | None = None) -> DecodeResult:
    """Decode a GIF or APNG file into indexed frames."""
    path = Path(path)
    with open(path, "rb") as fh:
        data = fh.read()
    return decode_bytes(data, name=path.name, cancel=cancel)
