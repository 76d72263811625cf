"""
Custom exception hierarchy for composegif.

All composegif exceptions inherit from ComposeGifError so callers can catch
the entire family with a single except clause.
"""

from __future__ import annotations


class ComposeGifError(Exception):
    """Base exception for all composegif errors."""


class DecodeError(ComposeGifError):
    """Raised when a GIF or APNG container cannot be decoded."""


class LoadError(ComposeGifError):
    """Raised when a set of frame files cannot be loaded as one layer."""


class CompositionError(ComposeGifError):
    """Raised when layers cannot be flattened into one animation."""


class CycleTooLongError(CompositionError):
    """Raised when the synchronized animation cycle exceeds the tick cap."""

    def __init__(self, total_ticks: int, limit: int) -> None:
        super().__init__(
            f"Animation cycle too long ({total_ticks} frames, limit {limit}). "
            f"Reduce the number of frames or adjust durations so they share "
            f"a common factor."
        )
        self.total_ticks = total_ticks
        self.limit = limit


class EncodeError(ComposeGifError):
    """Raised when frames cannot be encoded to GIF."""


class ConfigError(ComposeGifError):
    """Raised when a project file is malformed."""


class OperationCancelled(ComposeGifError):
    """Raised inside a long-running operation whose cancel token was set."""
