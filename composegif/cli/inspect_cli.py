"""
CLI command for inspecting an animation or image file.

Usage:
    composegif inspect walk.gif
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ..apng import has_actl
from ..decoder import decode_bytes
from ..exceptions import ComposeGifError
from ..gif import is_gif
from ..loader import load_files


def cmd_inspect(args: argparse.Namespace) -> int:
    """Main handler for ``composegif inspect``."""
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    data = path.read_bytes()
    try:
        if is_gif(data) or has_actl(data):
            result = decode_bytes(data, name=path.name)
            kind = "GIF" if is_gif(data) else "APNG"
            print(f"{path.name}: {kind}, {result.width}x{result.height}, "
                  f"{len(result.frames)} frames")
            print(f"  Duration: {result.duration_ms} ms (most common)")
            distinct = sorted(set(result.frame_durations_ms))
            if len(distinct) > 1:
                print(f"  Frame durations: {', '.join(str(d) for d in distinct)} ms")
            frames, warnings = result.frames, result.warnings
        else:
            loaded = load_files([path])
            print(f"{path.name}: image, {loaded.width}x{loaded.height}")
            frames, warnings = loaded.frames, loaded.warnings
    except ComposeGifError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    palette_sizes = sorted({f.palette_size for f in frames})
    print(f"  Palette: {palette_sizes[0]}-{palette_sizes[-1]} colors"
          if len(palette_sizes) > 1 else f"  Palette: {palette_sizes[0]} colors")
    if any(f.has_transparency for f in frames):
        print("  Transparency: yes")
    for warning in warnings:
        print(f"  Warning: {warning}")
    return 0


def build_inspect_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the ``inspect`` subcommand."""
    p = subparsers.add_parser(
        "inspect",
        help="Show size, frame count and timing of a GIF, APNG or image",
    )
    p.add_argument("file", help="File to inspect")
    p.set_defaults(func=cmd_inspect)
