"""
Loading layer frames from image files.

A layer can be built from a directory of numbered frames (``1.png``,
``2.png``, ...), from an explicit list of still images, or from animated
GIF / APNG files whose frames are appended in order.  Indexed images keep
their own palette; true-color images are quantized.
"""

from __future__ import annotations

import functools
import io
import logging
import re
from collections.abc import Iterable
from pathlib import Path

import numpy as np
from PIL import Image

from composegif.apng import has_actl
from composegif.decoder import decode, open_source
from composegif.exceptions import DecodeError, LoadError
from composegif.gif import is_gif
from composegif.quantize import quantize
from composegif.types import Frame, LoadResult
from composegif.worker import CancelToken

logger = logging.getLogger(__name__)

_FRAME_PATTERN = re.compile(r"^(\d+)\.png$", re.IGNORECASE)
_NATURAL_SPLIT = re.compile(r"\d+|\D+")


# ---------------------------------------------------------------------------
# File naming and ordering
# ---------------------------------------------------------------------------

def is_frame_filename(name: str) -> bool:
    """True for ``<N>.png`` with N > 0 (case-insensitive extension)."""
    m = _FRAME_PATTERN.match(name)
    return bool(m) and int(m.group(1)) > 0


def natural_compare(a: str, b: str) -> int:
    """Compare file names treating digit runs as numbers.

    Equal numbers with different zero-padding order the shorter run
    first; text runs compare case-insensitively.
    """
    parts_a = _NATURAL_SPLIT.findall(a)
    parts_b = _NATURAL_SPLIT.findall(b)
    for pa, pb in zip(parts_a, parts_b):
        if pa.isdigit() and pb.isdigit():
            key_a, key_b = (int(pa), len(pa)), (int(pb), len(pb))
        else:
            key_a, key_b = pa.lower(), pb.lower()
        if key_a != key_b:
            return -1 if key_a < key_b else 1
    return (len(parts_a) > len(parts_b)) - (len(parts_a) < len(parts_b))


natural_key = functools.cmp_to_key(natural_compare)


# ---------------------------------------------------------------------------
# Single images
# ---------------------------------------------------------------------------

def _palette_transparency(img: Image.Image) -> int | None:
    """Transparent index of a ``P`` image, -1 for none, None if not representable."""
    info = img.info.get("transparency")
    if info is None:
        return -1
    if isinstance(info, int):
        return info
    if isinstance(info, bytes):
        # tRNS with per-entry alpha: usable only as a single on/off index.
        clear = [i for i, a in enumerate(info) if a == 0]
        if all(a in (0, 255) for a in info) and len(clear) <= 1:
            return clear[0] if clear else -1
    return None


def indexed_frame(img: Image.Image) -> Frame | None:
    """Wrap a palette image as a :class:`Frame` without requantizing."""
    if img.mode != "P":
        return None
    transparent_index = _palette_transparency(img)
    if transparent_index is None:
        return None
    pixels = np.asarray(img, dtype=np.uint8)
    palette = bytes(img.getpalette("RGB") or b"")
    n_colors = max(len(palette) // 3, int(pixels.max()) + 1 if pixels.size else 1,
                   transparent_index + 1)
    palette = palette[:3 * n_colors].ljust(3 * n_colors, b"\x00")
    return Frame(pixels=pixels.copy(), palette=palette, transparent_index=transparent_index)


def _describe_truecolor(img: Image.Image) -> str:
    transparent = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
    return f"{img.mode}, transparent" if transparent else img.mode


def load_rgba(rgba: np.ndarray, name: str, warnings: Iterable[str] = ()) -> LoadResult:
    """Quantize an already flattened raster, e.g. from a layered importer."""
    frame = quantize(rgba)
    logger.debug("Quantized %s to %d colors.", name, frame.palette_size)
    return LoadResult(
        frames=[frame],
        width=frame.width,
        height=frame.height,
        warnings=list(warnings),
    )


# ---------------------------------------------------------------------------
# Layers from files
# ---------------------------------------------------------------------------

def load_files(paths: Iterable[Path | str], cancel: CancelToken | None = None) -> LoadResult:
    """Load every file in *paths*, in natural order, as one layer."""
    files = sorted((Path(p) for p in paths), key=lambda p: natural_key(p.name))
    if not files:
        raise LoadError("No files provided.")

    frames: list[Frame] = []
    warnings: list[str] = []
    dimension_errors: list[str] = []
    expected: tuple[int, int] | None = None
    extracted_duration_ms = -1

    for path in files:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            with open(path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            raise LoadError(f"Cannot read {path}: {exc}") from exc

        if is_gif(data) or has_actl(data):
            try:
                result = decode(open_source(data, path.name), cancel=cancel)
            except DecodeError as exc:
                raise LoadError(f"{path.name}: {exc}") from exc
            if extracted_duration_ms < 0:
                extracted_duration_ms = result.duration_ms
            size = (result.width, result.height)
            if expected is None:
                expected = size
            elif size != expected:
                dimension_errors.append(
                    f"{path.name}: {size[0]}x{size[1]} "
                    f"(expected {expected[0]}x{expected[1]})"
                )
            frames.extend(result.frames)
            warnings.extend(result.warnings)
            continue

        display_index = len(frames) + 1
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                frame = indexed_frame(img)
                if frame is None:
                    message = (
                        f"Frame {display_index} ({path.name}): truecolor "
                        f"({_describe_truecolor(img)}); quantizing to 256 colors "
                        f"for GIF compatibility"
                    )
                    logger.warning(message)
                    warnings.append(message)
                    frame = quantize(np.asarray(img.convert("RGBA")))
        except (OSError, SyntaxError, ValueError) as exc:
            raise LoadError(
                f"Failed to load frame {display_index} ({path.name}): {exc}"
            ) from exc

        if expected is None:
            expected = frame.size
        elif frame.size != expected:
            dimension_errors.append(
                f"Frame {display_index} ({path.name}): {frame.width}x{frame.height} "
                f"(expected {expected[0]}x{expected[1]})"
            )
        frames.append(frame)

    if dimension_errors:
        raise LoadError(
            "Inconsistent frame dimensions:\n"
            f"First frame: {expected[0]}x{expected[1]}\n"
            + "\n".join(dimension_errors)
        )

    logger.info("Loaded %d frames from %d files.", len(frames), len(files))
    return LoadResult(
        frames=frames,
        width=expected[0],
        height=expected[1],
        warnings=warnings,
        extracted_duration_ms=extracted_duration_ms,
    )


def load_directory(directory: Path | str, cancel: CancelToken | None = None) -> LoadResult:
    """Load the ``<N>.png`` frames of *directory*."""
    directory = Path(directory)
    if not directory.is_dir():
        raise LoadError(f"Not a directory: {directory}")
    files = [p for p in directory.iterdir() if p.is_file() and is_frame_filename(p.name)]
    if not files:
        raise LoadError(f"No frame files found matching pattern <N>.png in: {directory}")
    return load_files(files, cancel=cancel)
