"""
composegif -- Multi-layer animation compositor and GIF encoder.

Decodes GIF and APNG sources, synchronizes independently-timed layers on
a common tick, quantizes each composite to a 256-color palette and writes
a looping animated GIF.
"""

__version__ = "0.1.0"

from composegif.compositor import flatten, transparent_frames
from composegif.decoder import decode_file
from composegif.document import Document, LayerState
from composegif.encoder import encode, write_gif
from composegif.exceptions import ComposeGifError
from composegif.loader import load_directory, load_files
from composegif.quantize import quantize
from composegif.types import (
    Frame,
    Layer,
    OutputAnimation,
    ResampleFilter,
)

__all__ = [
    "ComposeGifError",
    "Document",
    "Frame",
    "Layer",
    "LayerState",
    "OutputAnimation",
    "ResampleFilter",
    "decode_file",
    "encode",
    "flatten",
    "load_directory",
    "load_files",
    "quantize",
    "transparent_frames",
    "write_gif",
]
