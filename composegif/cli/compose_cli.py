"""
CLI command for compositing a project file into an animated GIF.

Usage:
    composegif compose project.yaml
    composegif compose project.yaml -o out.gif --scale 3 --filter bicubic
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from tqdm import tqdm

from ..config import MAX_SCALE, load_project
from ..document import Document
from ..encoder import write_gif
from ..exceptions import ComposeGifError
from ..types import ResampleFilter


def format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def cmd_compose(args: argparse.Namespace) -> int:
    """Main handler for ``composegif compose``."""
    try:
        project = load_project(args.project)
    except ComposeGifError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    output = project.output
    output_path = Path(args.output) if args.output else output.path
    scale = args.scale if args.scale is not None else output.scale
    resample = ResampleFilter(args.filter or output.filter)

    print(f"Loading {len(project.layers)} layers ...")
    try:
        doc = Document.from_project(project)
        animation = doc.compose()
    except ComposeGifError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for state in doc.layers:
        for warning in state.warnings:
            print(f"Warning: [{state.name}] {warning}", file=sys.stderr)

    print(
        f"Composited {animation.frame_count} frames @ "
        f"{animation.width}x{animation.height}, {animation.duration_ms} ms tick"
    )

    with tqdm(total=animation.frame_count, desc="Encoding", unit="frame",
              file=sys.stderr, dynamic_ncols=True) as bar:
        try:
            path = write_gif(
                animation.frames,
                output_path,
                scale=scale,
                resample=resample,
                duration_ms=animation.duration_ms,
                progress=lambda done, total: bar.update(1),
            )
        except ComposeGifError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    print(f"Done! {animation.frame_count} frames -> {path} ({format_size(path.stat().st_size)})")
    return 0


def build_compose_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the ``compose`` subcommand and its arguments."""
    p = subparsers.add_parser(
        "compose",
        help="Composite a project file into an animated GIF",
        description="Load the layers of a YAML project file, synchronize them and write a GIF.",
    )
    p.add_argument(
        "project",
        help="Path to the YAML project file",
    )
    p.add_argument(
        "-o", "--output", default=None,
        help="Output file path (default: the project's output.path)",
    )
    p.add_argument(
        "--scale", type=int, choices=range(1, MAX_SCALE + 1), default=None,
        metavar=f"1..{MAX_SCALE}",
        help="Integer upscale factor (default: the project's output.scale)",
    )
    p.add_argument(
        "--filter", choices=[f.value for f in ResampleFilter], default=None,
        help="Resampling filter used when scaling (default: the project's output.filter)",
    )
    p.set_defaults(func=cmd_compose)
