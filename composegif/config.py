"""
Project configuration and shared constants.

A project file is a YAML document describing a stack of layers (bottom
first) and the output settings::

    output:
      path: out.gif
      scale: 2
      filter: nearest
    layers:
      - name: background
        directory: frames/bg
        duration_ms: 200
      - name: sprite
        sources: [walk.gif]
        offset: [12, 30]
        key_colors: ["#ff00ff", [0, 255, 0]]
        frames: [0, 1, 2, 3]
        visible: true

Relative paths are resolved against the project file's directory.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from composegif.exceptions import ConfigError

DEFAULT_DURATION_MS = 100
MAX_TICKS = 100_000
MAX_SCALE = 16
MIN_DELAY_CS = 2            # Browsers clamp smaller GIF delays to 10 cs.
ALPHA_THRESHOLD = 128       # alpha < 128 counts as transparent

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")
_FILTERS = ("nearest", "bilinear", "bicubic")


@dataclass
class LayerConfig:
    """One layer entry of a project file."""
    name: str
    sources: list[Path] = field(default_factory=list)
    directory: Path | None = None
    duration_ms: int | None = None      # None = use the duration found in the sources
    offset: tuple[int, int] = (0, 0)
    key_colors: frozenset[tuple[int, int, int]] = frozenset()
    frames: list[int] | None = None     # subset of loaded frame indices
    visible: bool = True


@dataclass
class OutputSettings:
    """Encoding options for the final GIF."""
    path: Path = Path("output.gif")
    scale: int = 1
    filter: str = "nearest"


@dataclass
class ProjectConfig:
    """A parsed project file."""
    layers: list[LayerConfig] = field(default_factory=list)
    output: OutputSettings = field(default_factory=OutputSettings)
    source_path: Path | None = None


def parse_color(value: Any) -> tuple[int, int, int]:
    """Parse ``"#rrggbb"`` / ``"rrggbb"`` / ``[r, g, b]`` into an RGB tuple."""
    if isinstance(value, str):
        m = _HEX_COLOR.match(value.strip())
        if not m:
            raise ConfigError(f"Invalid color {value!r}; expected #rrggbb.")
        raw = int(m.group(1), 16)
        return (raw >> 16) & 0xFF, (raw >> 8) & 0xFF, raw & 0xFF
    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            rgb = tuple(int(c) for c in value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid color {value!r}.") from None
        if not all(0 <= c <= 255 for c in rgb):
            raise ConfigError(f"Color components out of range: {value!r}.")
        return rgb  # type: ignore[return-value]
    raise ConfigError(f"Invalid color {value!r}; expected #rrggbb or [r, g, b].")


def _positive_int(raw: dict, key: str, where: str, default: Any = None) -> Any:
    value = raw.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{where}: '{key}' must be a positive integer, got {value!r}.")
    return value


def _parse_layer(raw: Any, index: int, base_dir: Path) -> LayerConfig:
    where = f"layer {index + 1}"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping, got {type(raw).__name__}.")
    name = str(raw.get("name", f"Layer {index + 1}"))
    where = f"layer {name!r}"

    sources = raw.get("sources", [])
    if isinstance(sources, str):
        sources = [sources]
    directory = raw.get("directory")
    if not sources and directory is None:
        raise ConfigError(f"{where}: needs 'sources' or 'directory'.")
    if sources and directory is not None:
        raise ConfigError(f"{where}: give either 'sources' or 'directory', not both.")

    offset = raw.get("offset", [0, 0])
    if not (isinstance(offset, (list, tuple)) and len(offset) == 2
            and all(isinstance(v, int) and not isinstance(v, bool) for v in offset)):
        raise ConfigError(f"{where}: 'offset' must be [x, y] integers, got {offset!r}.")

    frames = raw.get("frames")
    if frames is not None:
        if not isinstance(frames, list) or not all(
                isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in frames):
            raise ConfigError(f"{where}: 'frames' must be a list of frame indices.")
        if not frames:
            raise ConfigError(f"{where}: 'frames' selects no frames.")

    return LayerConfig(
        name=name,
        sources=[base_dir / str(s) for s in sources],
        directory=base_dir / str(directory) if directory is not None else None,
        duration_ms=_positive_int(raw, "duration_ms", where),
        offset=(offset[0], offset[1]),
        key_colors=frozenset(parse_color(c) for c in raw.get("key_colors", []) or []),
        frames=frames,
        visible=bool(raw.get("visible", True)),
    )


def _parse_output(raw: Any, base_dir: Path) -> OutputSettings:
    if raw is None:
        return OutputSettings()
    if not isinstance(raw, dict):
        raise ConfigError("'output' must be a mapping.")
    scale = _positive_int(raw, "scale", "output", default=1)
    if scale > MAX_SCALE:
        raise ConfigError(f"output: 'scale' must be between 1 and {MAX_SCALE}, got {scale}.")
    filt = str(raw.get("filter", "nearest")).lower()
    if filt not in _FILTERS:
        raise ConfigError(f"output: 'filter' must be one of {', '.join(_FILTERS)}, got {filt!r}.")
    return OutputSettings(
        path=base_dir / str(raw.get("path", "output.gif")),
        scale=scale,
        filter=filt,
    )


def parse_project(text: str, base_dir: Path | None = None,
                  source_path: Path | None = None) -> ProjectConfig:
    """Parse YAML project text into a :class:`ProjectConfig`."""
    base_dir = base_dir or Path.cwd()
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Project file must contain a mapping at the top level.")
    raw_layers = data.get("layers") or []
    if not isinstance(raw_layers, list) or not raw_layers:
        raise ConfigError("Project file declares no layers.")
    return ProjectConfig(
        layers=[_parse_layer(raw, i, base_dir) for i, raw in enumerate(raw_layers)],
        output=_parse_output(data.get("output"), base_dir),
        source_path=source_path,
    )


def load_project(path: Path | str) -> ProjectConfig:
    """Read and parse a project file from disk."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Project file not found: {path}")
    text = path.read_text(encoding="utf-8")
    return parse_project(text, base_dir=path.resolve().parent, source_path=path)
