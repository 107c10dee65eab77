"""Filesystem cache helpers."""

from __future__ import annotations

import shutil
from pathlib import Path

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "cache"})


def resolve_cache_root(target: str | Path) -> Path:
    """Resolve a filesystem cache root, enforcing directory-only inputs."""

    raw = str(target).strip()
    if not raw:
        raise ValueError("cache target cannot be empty")

    if "://" in raw:
        raise ValueError("cache roots must be filesystem paths; URLs are not supported")

    path = Path(raw).expanduser().resolve()
    if path.suffix == ".db":
        raise ValueError("cache root must be a directory, not a database file path")

    return path


def remove_cache_dir(root: Path) -> bool:
    """Delete ``root`` and everything under it; returns False when nothing was there."""

    if not root.exists():
        return False
    shutil.rmtree(root, ignore_errors=True)
    if root.exists():
        LOGGER.warning("cache_dir_remove_incomplete", extra={"path": str(root)})
    return True


def reset_cache_dir(root: Path) -> Path:
    """Wipe and recreate the cache directory at startup.

    Artifacts from a previous session are never reused. Failure to recreate
    the directory is fatal and propagates as ``OSError``.
    """

    removed = remove_cache_dir(root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("cache_dir_create_failed", extra={"path": str(root), "error": str(exc)})
        raise

    LOGGER.info("cache_dir_reset", extra={"path": str(root), "previous_removed": removed})
    return root


__all__ = ["remove_cache_dir", "reset_cache_dir", "resolve_cache_root"]
