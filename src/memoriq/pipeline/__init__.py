"""Background processing primitives."""

from .coalescer import DebouncedCoalescer

__all__ = ["DebouncedCoalescer"]
