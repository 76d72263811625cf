"""
Tests for the frequency-based palette quantizer.
"""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from composegif.quantize import nearest_indices, quantize, quantize_image

from conftest import solid_rgba


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _random_rgba(width: int, height: int, n_colors: int, seed: int = 0,
                 with_transparency: bool = False) -> np.ndarray:
    rng = np.random.default_rng(seed)
    colors = rng.integers(0, 256, size=(n_colors, 3), dtype=np.uint8)
    picks = rng.integers(0, n_colors, size=(height, width))
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[..., :3] = colors[picks]
    rgba[..., 3] = 255
    if with_transparency:
        rgba[0, :, 3] = 0
    return rgba


def _decoded_rgb(frame) -> np.ndarray:
    return frame.colors()[frame.pixels]


# ---------------------------------------------------------------------------
# Palette construction
# ---------------------------------------------------------------------------

class TestPaletteConstruction:
    def test_first_seen_order(self):
        rgba = np.array([[[0, 0, 255, 255], [255, 0, 0, 255], [0, 0, 255, 255]]],
                        dtype=np.uint8)
        frame = quantize(rgba)
        assert frame.palette == bytes([0, 0, 255, 255, 0, 0])
        assert frame.pixels.tolist() == [[0, 1, 0]]
        assert frame.transparent_index == -1

    def test_transparent_slot_appended(self):
        rgba = np.array([[[10, 20, 30, 255], [99, 99, 99, 0], [1, 2, 3, 127]]],
                        dtype=np.uint8)
        frame = quantize(rgba)
        assert frame.palette_size == 2
        assert frame.transparent_index == 1
        assert frame.colors()[1].tolist() == [0, 0, 0]
        assert frame.pixels.tolist() == [[0, 1, 1]]

    def test_alpha_128_is_opaque(self):
        rgba = np.array([[[10, 20, 30, 128]]], dtype=np.uint8)
        frame = quantize(rgba)
        assert frame.transparent_index == -1
        assert frame.colors()[0].tolist() == [10, 20, 30]

    def test_fully_transparent_raster(self):
        frame = quantize(solid_rgba(3, 3, (5, 5, 5, 0)))
        assert frame.palette_size == 1
        assert frame.transparent_index == 0
        assert (frame.pixels == 0).all()

    def test_empty_raster_gets_black_entry(self):
        frame = quantize(np.zeros((0, 0, 4), dtype=np.uint8))
        assert frame.palette == b"\x00\x00\x00"
        assert frame.transparent_index == -1

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            quantize(np.zeros((4, 4, 3), dtype=np.uint8))


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestQuantizerProperties:
    def test_deterministic(self):
        rgba = _random_rgba(40, 30, 600, seed=3, with_transparency=True)
        a = quantize(rgba)
        b = quantize(rgba.copy())
        assert a.palette == b.palette
        assert a.transparent_index == b.transparent_index
        assert np.array_equal(a.pixels, b.pixels)

    def test_exact_when_256_colors_or_fewer(self):
        rgba = _random_rgba(32, 32, 256, seed=1)
        frame = quantize(rgba)
        assert np.array_equal(_decoded_rgb(frame), rgba[..., :3])

    def test_exact_with_transparency_and_255_colors(self):
        rgba = _random_rgba(32, 32, 200, seed=2, with_transparency=True)
        frame = quantize(rgba)
        opaque = rgba[..., 3] >= 128
        assert np.array_equal(_decoded_rgb(frame)[opaque], rgba[..., :3][opaque])
        assert (frame.pixels[~opaque] == frame.transparent_index).all()

    @pytest.mark.parametrize("transparency", [False, True])
    def test_palette_bound(self, transparency):
        rgba = _random_rgba(64, 64, 1000, seed=5, with_transparency=transparency)
        frame = quantize(rgba)
        limit = 255 if transparency else 256
        opaque_entries = frame.palette_size - (1 if transparency else 0)
        assert frame.palette_size <= 256
        assert opaque_entries <= limit
        if transparency:
            assert frame.palette_size <= 256 and frame.transparent_index == 255

    def test_most_frequent_colors_win(self):
        # 257 distinct colors; color 0 appears once and must be dropped.
        rgba = np.zeros((1, 257 + 256, 4), dtype=np.uint8)
        rgba[..., 3] = 255
        rgba[0, 0, :3] = (1, 1, 1)
        for i in range(256):
            rgba[0, 1 + 2 * i, :3] = (i, 200, 100)
            rgba[0, 2 + 2 * i, :3] = (i, 200, 100)
        frame = quantize(rgba)
        assert frame.palette_size == 256
        assert [1, 1, 1] not in frame.colors().tolist()

    def test_dropped_color_maps_to_nearest(self):
        rgba = np.zeros((1, 513, 4), dtype=np.uint8)
        rgba[..., 3] = 255
        for i in range(256):
            rgba[0, 2 * i, :3] = (i, 0, 0)
            rgba[0, 2 * i + 1, :3] = (i, 0, 0)
        rgba[0, 512, :3] = (100, 3, 0)
        frame = quantize(rgba)
        assert frame.colors()[frame.pixels[0, 512]].tolist() == [100, 0, 0]


# ---------------------------------------------------------------------------
# nearest_indices / quantize_image
# ---------------------------------------------------------------------------

class TestNearestIndices:
    def test_skips_transparent_slot(self):
        palette = bytes([0, 0, 0, 250, 250, 250])
        idx = nearest_indices(np.array([[1, 1, 1]]), palette, transparent_index=0)
        assert idx.tolist() == [1]

    def test_ties_go_to_lowest_index(self):
        palette = bytes([0, 0, 0, 2, 2, 2])
        idx = nearest_indices(np.array([[1, 1, 1]]), palette)
        assert idx.tolist() == [0]

    def test_quantize_image_accepts_rgb(self):
        img = Image.new("RGB", (4, 4), (12, 34, 56))
        frame = quantize_image(img)
        assert frame.colors().tolist() == [[12, 34, 56]]
