"""Stable cache keys for derived images."""

from __future__ import annotations

from pathlib import Path

import xxhash


def compute_path_key(path: str | Path) -> str:
    """Compute the 64-bit cache key for a source path.

    The key hashes the path string, not the file bytes, so it is cheap to
    compute on the navigation path. A file edited in place keeps its key for
    the rest of the session; the cache directory does not outlive the process.

    Returns:
        Cache key as a 16-character lowercase hexadecimal string.
    """

    digest = xxhash.xxh64(str(path).encode("utf-8")).intdigest()
    return f"{digest:016x}"


__all__ = ["compute_path_key"]
