"""
Layer stack model.

A :class:`Document` is an ordered stack of :class:`LayerState` entries,
bottom first.  Each entry owns its loaded frames plus the user-facing
settings (visibility, frame duration, key colors, canvas offset) that
turn them into a compositor :class:`~composegif.types.Layer`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from composegif.compositor import flatten, transparent_frames
from composegif.config import DEFAULT_DURATION_MS, LayerConfig, ProjectConfig
from composegif.exceptions import CompositionError, LoadError
from composegif.loader import load_directory, load_files
from composegif.types import RGB, Layer, LoadResult, OutputAnimation
from composegif.worker import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class LayerState:
    """Mutable per-layer settings plus the frames loaded into it."""
    name: str
    layer: Layer | None = None
    visible: bool = True
    duration_ms: int = DEFAULT_DURATION_MS
    key_colors: frozenset[RGB] = frozenset()
    offset: tuple[int, int] = (0, 0)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_frames(self) -> bool:
        return self.layer is not None and bool(self.layer.frames)

    def load(self, result: LoadResult, frames: list[int] | None = None) -> None:
        """Adopt loaded frames, optionally keeping only the indices in *frames*.

        A duration found in the source files replaces the current one.
        """
        selected = result.frames
        if frames is not None:
            bad = [i for i in frames if not 0 <= i < len(result.frames)]
            if bad:
                raise LoadError(
                    f"Layer {self.name!r}: frame indices {bad} out of range "
                    f"(loaded {len(result.frames)} frames)."
                )
            selected = [result.frames[i] for i in frames]
        if result.extracted_duration_ms > 0:
            self.duration_ms = result.extracted_duration_ms
        self.layer = Layer(frames=list(selected), width=result.width, height=result.height,
                           duration_ms=self.duration_ms)
        self.warnings = list(result.warnings)

    def clear(self) -> None:
        self.layer = None
        self.warnings = []

    def to_layer(self) -> Layer:
        """The compositor view of this layer with current settings applied."""
        if self.layer is None:
            raise CompositionError(f"Layer {self.name!r} has no frames loaded.")
        return Layer(
            frames=self.layer.frames,
            width=self.layer.width,
            height=self.layer.height,
            duration_ms=self.duration_ms,
            key_colors=self.key_colors,
            offset_x=self.offset[0],
            offset_y=self.offset[1],
        )


class Document:
    """An ordered layer stack, bottom layer first."""

    def __init__(self) -> None:
        self.layers: list[LayerState] = []

    def __len__(self) -> int:
        return len(self.layers)

    def add_layer(self, name: str | None = None) -> LayerState:
        if name is None:
            name = f"Layer {len(self.layers) + 1}"
        if any(ls.name == name for ls in self.layers):
            raise ValueError(f"Duplicate layer name: {name!r}")
        state = LayerState(name=name)
        self.layers.append(state)
        return state

    def get(self, name: str) -> LayerState:
        for state in self.layers:
            if state.name == name:
                return state
        raise KeyError(name)

    def remove_layer(self, name: str) -> LayerState:
        state = self.get(name)
        self.layers.remove(state)
        return state

    def effective_layers(self) -> list[Layer]:
        """Loaded, visible layers with their offsets applied."""
        return [ls.to_layer() for ls in self.layers if ls.has_frames and ls.visible]

    def compose(self, cancel: CancelToken | None = None) -> OutputAnimation:
        """Flatten the visible layers into one animation.

        When every loaded layer is hidden the result is a single
        transparent frame sized like the first loaded layer.
        """
        loaded = [ls for ls in self.layers if ls.has_frames]
        if not loaded:
            raise CompositionError("No frames loaded.")
        effective = self.effective_layers()
        if not effective:
            logger.info("All layers hidden; producing a transparent frame.")
            return transparent_frames(loaded[0].to_layer())
        return flatten(effective, cancel=cancel)

    @classmethod
    def from_project(cls, project: ProjectConfig,
                     cancel: CancelToken | None = None) -> Document:
        """Build a document by loading every layer a project file declares."""
        doc = cls()
        for cfg in project.layers:
            state = doc.add_layer(cfg.name)
            state.load(_load_layer_files(cfg, cancel), frames=cfg.frames)
            if cfg.duration_ms is not None:
                state.duration_ms = cfg.duration_ms
            state.visible = cfg.visible
            state.key_colors = cfg.key_colors
            state.offset = cfg.offset
            logger.debug("Layer %r: %d frames @ %d ms.", state.name,
                         state.layer.frame_count, state.duration_ms)
        return doc


def _load_layer_files(cfg: LayerConfig, cancel: CancelToken | None) -> LoadResult:
    if cfg.directory is not None:
        return load_directory(cfg.directory, cancel=cancel)
    return load_files(cfg.sources, cancel=cancel)
