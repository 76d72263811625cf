"""
Tests for the layer stack model.
"""

from __future__ import annotations

import pytest

from composegif.config import parse_project
from composegif.document import Document, LayerState
from composegif.exceptions import CompositionError, LoadError
from composegif.types import LoadResult

from conftest import make_layer, solid_frame, solid_rgba


def _loaded(name: str, n_frames: int = 2, duration_ms: int = 100, **settings) -> LayerState:
    state = LayerState(name=name, duration_ms=duration_ms, **settings)
    state.layer = make_layer(n_frames, duration_ms)
    return state


class TestLayerState:
    def test_load_adopts_extracted_duration(self):
        state = LayerState(name="a")
        state.load(LoadResult(frames=[solid_frame(2, 2)], width=2, height=2,
                              extracted_duration_ms=40))
        assert state.duration_ms == 40
        assert state.has_frames

    def test_load_frame_subset(self):
        frames = [solid_frame(1, 1, (i, 0, 0)) for i in range(4)]
        state = LayerState(name="a")
        state.load(LoadResult(frames=frames, width=1, height=1), frames=[3, 1])
        assert state.layer.frames == [frames[3], frames[1]]

    def test_load_frame_subset_out_of_range(self):
        state = LayerState(name="a")
        with pytest.raises(LoadError):
            state.load(LoadResult(frames=[solid_frame(1, 1)], width=1, height=1), frames=[1])

    def test_to_layer_applies_settings(self):
        state = _loaded("a", key_colors=frozenset({(1, 2, 3)}), offset=(4, 5))
        state.duration_ms = 250
        layer = state.to_layer()
        assert layer.duration_ms == 250
        assert layer.key_colors == {(1, 2, 3)}
        assert (layer.offset_x, layer.offset_y) == (4, 5)

    def test_clear(self):
        state = _loaded("a")
        state.clear()
        assert not state.has_frames


class TestDocument:
    def test_add_get_remove(self):
        doc = Document()
        doc.add_layer("bg")
        doc.add_layer()
        assert [ls.name for ls in doc.layers] == ["bg", "Layer 2"]
        assert doc.get("bg").name == "bg"
        doc.remove_layer("bg")
        assert len(doc) == 1
        with pytest.raises(KeyError):
            doc.get("bg")

    def test_duplicate_names(self):
        doc = Document()
        doc.add_layer("x")
        with pytest.raises(ValueError):
            doc.add_layer("x")

    def test_effective_layers_skip_hidden_and_empty(self):
        doc = Document()
        doc.layers = [_loaded("a"), LayerState(name="empty"), _loaded("b", visible=False),
                      _loaded("c", offset=(1, 0))]
        effective = doc.effective_layers()
        assert len(effective) == 2
        assert effective[1].offset_x == 1

    def test_compose_flattens(self):
        doc = Document()
        doc.layers = [_loaded("a", 2, 200), _loaded("b", 3, 100)]
        assert doc.compose().frame_count == 12

    def test_compose_all_hidden(self):
        doc = Document()
        doc.layers = [LayerState(name="empty"), _loaded("a", 3, 150, visible=False)]
        out = doc.compose()
        assert out.frame_count == 1
        assert out.duration_ms == 150
        assert (out.frames[0].to_rgba()[..., 3] == 0).all()

    def test_compose_nothing_loaded(self):
        doc = Document()
        doc.add_layer("a")
        with pytest.raises(CompositionError):
            doc.compose()


class TestFromProject:
    def test_builds_layers(self, tmp_dir, write_png):
        frames_dir = tmp_dir / "bg"
        frames_dir.mkdir()
        for n in (1, 2):
            write_png(f"bg/{n}.png", solid_rgba(4, 4, (n, 0, 0, 255)))
        write_png("sprite.png", solid_rgba(2, 2, (0, 255, 0, 255)))
        project = parse_project(
            "layers:\n"
            "  - name: bg\n"
            "    directory: bg\n"
            "    duration_ms: 200\n"
            "  - name: sprite\n"
            "    sources: [sprite.png]\n"
            "    offset: [1, 1]\n"
            "    key_colors: ['#00ff00']\n"
            "    visible: false\n",
            base_dir=tmp_dir,
        )
        doc = Document.from_project(project)
        bg, sprite = doc.layers
        assert bg.layer.frame_count == 2
        assert bg.duration_ms == 200
        assert sprite.offset == (1, 1)
        assert sprite.key_colors == {(0, 255, 0)}
        assert not sprite.visible
        assert sprite.warnings
        out = doc.compose()
        assert out.frame_count == 2
        assert out.duration_ms == 200
