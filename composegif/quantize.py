"""
Frequency-based palette quantization.

Maps an RGBA raster onto at most 256 palette entries:

    1. Pixels with alpha < 128 go to a single reserved transparent index.
    2. Opaque colors are tallied; if there are too many, the most frequent
       ones win (ties broken by first appearance).
    3. Colors that did not make the cut are remapped to their nearest
       palette entry by squared RGB distance.

The function is pure: identical input bytes always give identical output.
"""

from __future__ import annotations

import logging

import numpy as np

from composegif.config import ALPHA_THRESHOLD
from composegif.types import Frame

logger = logging.getLogger(__name__)

_DISTANCE_CHUNK = 4096


def _pack_rgb(rgb: np.ndarray) -> np.ndarray:
    """Pack ``(..., 3)`` uint8 colors into uint32 ``0xRRGGBB`` keys."""
    rgb = rgb.astype(np.uint32)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


def _unpack_rgb(keys: np.ndarray) -> np.ndarray:
    keys = keys.astype(np.uint32)
    return np.stack(
        [(keys >> 16) & 0xFF, (keys >> 8) & 0xFF, keys & 0xFF], axis=-1,
    ).astype(np.uint8)


def _as_colors(palette: bytes | np.ndarray) -> np.ndarray:
    if isinstance(palette, (bytes, bytearray)):
        return np.frombuffer(bytes(palette), dtype=np.uint8).reshape(-1, 3)
    return np.asarray(palette, dtype=np.uint8).reshape(-1, 3)


def nearest_indices(
    rgb: np.ndarray,
    palette: bytes | np.ndarray,
    transparent_index: int = -1,
) -> np.ndarray:
    """Return the nearest palette index for every color in *rgb*.

    Distance is squared Euclidean over (R, G, B).  The transparent slot is
    never chosen and ties resolve to the lowest index.
    """
    colors = np.asarray(rgb, dtype=np.int32).reshape(-1, 3)
    pal = _as_colors(palette).astype(np.int32)
    out = np.zeros(len(colors), dtype=np.intp)

    usable = np.ones(len(pal), dtype=bool)
    if 0 <= transparent_index < len(pal):
        usable[transparent_index] = False
    if not usable.any():
        return out

    for start in range(0, len(colors), _DISTANCE_CHUNK):
        block = colors[start:start + _DISTANCE_CHUNK]
        dist = ((block[:, None, :] - pal[None, :, :]) ** 2).sum(axis=2)
        dist[:, ~usable] = np.iinfo(np.int32).max
        out[start:start + len(block)] = dist.argmin(axis=1)
    return out


def quantize(rgba: np.ndarray) -> Frame:
    """Quantize an ``(H, W, 4)`` RGBA raster into an indexed :class:`Frame`."""
    rgba = np.asarray(rgba, dtype=np.uint8)
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"Expected an (H, W, 4) RGBA array, got shape {rgba.shape}.")
    height, width = rgba.shape[:2]
    flat = rgba.reshape(-1, 4)

    transparent = flat[:, 3] < ALPHA_THRESHOLD
    has_transparency = bool(transparent.any())
    opaque_keys = _pack_rgb(flat[~transparent, :3])
    max_colors = 255 if has_transparency else 256

    # np.unique sorts by value; reorder to first-seen order.
    uniq, first_seen, counts = np.unique(
        opaque_keys, return_index=True, return_counts=True,
    )
    order = np.argsort(first_seen, kind="stable")
    uniq, counts = uniq[order], counts[order]

    if len(uniq) > max_colors:
        # Stable sort keeps first-seen order among equal counts.
        keep = np.argsort(-counts, kind="stable")[:max_colors]
        palette_keys = uniq[keep]
        logger.debug("Reduced %d colors to %d by frequency.", len(uniq), max_colors)
    else:
        palette_keys = uniq

    colors = _unpack_rgb(palette_keys)
    transparent_index = -1
    if has_transparency:
        transparent_index = len(colors)
        colors = np.vstack([colors, np.zeros((1, 3), dtype=np.uint8)])
    if len(colors) == 0:
        colors = np.zeros((1, 3), dtype=np.uint8)

    indices = np.empty(len(flat), dtype=np.uint8)
    if has_transparency:
        indices[transparent] = transparent_index

    if opaque_keys.size:
        sorter = np.argsort(palette_keys, kind="stable")
        sorted_keys = palette_keys[sorter]
        pos = np.minimum(np.searchsorted(sorted_keys, opaque_keys), len(sorted_keys) - 1)
        exact = sorted_keys[pos] == opaque_keys

        mapped = np.empty(len(opaque_keys), dtype=np.intp)
        mapped[exact] = sorter[pos[exact]]
        if not exact.all():
            missing, inverse = np.unique(opaque_keys[~exact], return_inverse=True)
            nearest = nearest_indices(_unpack_rgb(missing), colors, transparent_index)
            mapped[~exact] = nearest[inverse.reshape(-1)]
        indices[~transparent] = mapped

    return Frame(
        pixels=indices.reshape(height, width),
        palette=colors.astype(np.uint8).tobytes(),
        transparent_index=transparent_index,
    )


def quantize_image(img) -> Frame:
    """Quantize a Pillow image of any mode."""
    return quantize(np.asarray(img.convert("RGBA")))
