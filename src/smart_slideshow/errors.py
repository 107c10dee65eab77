"""Domain errors raised across the scanner, playlist, cache, and store.

Per-file problems during scanning or optimisation are logged and skipped;
only whole-operation failures surface to callers as one of these types.
"""

from __future__ import annotations


class SlideshowError(Exception):
    """Base class for all slideshow domain errors."""


class PathNotFound(SlideshowError):
    """Raised when a root directory or target file does not exist."""


class NotADirectory(SlideshowError):
    """Raised when a scan root exists but is not a directory."""


class IoFailure(SlideshowError):
    """Raised when the filesystem refuses an operation that cannot be skipped."""


class DecodeFailure(SlideshowError):
    """Raised when an image cannot be decoded or re-encoded."""


class EmptyPlaylist(SlideshowError):
    """Raised when navigation is requested on a playlist with no items."""


class PlaylistNotInitialized(SlideshowError):
    """Raised when navigation is requested before any scan or restore."""


class PersistenceFailure(SlideshowError):
    """Raised when the persistent store cannot complete an operation."""


class MetadataUnavailable(SlideshowError):
    """Raised when an operation needs image metadata the file does not carry."""


__all__ = [
    "DecodeFailure",
    "EmptyPlaylist",
    "IoFailure",
    "MetadataUnavailable",
    "NotADirectory",
    "PathNotFound",
    "PersistenceFailure",
    "PlaylistNotInitialized",
    "SlideshowError",
]
