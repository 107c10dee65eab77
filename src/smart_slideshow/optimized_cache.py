"""Session-scoped cache of display-sized copies of oversized images."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import Lock

from smart_slideshow.hasher import compute_path_key
from smart_slideshow.metadata import read_dimensions
from smart_slideshow.scanner import is_video_file
from smart_slideshow.thumbnailing import encode_display_jpeg, exceeds_display_bounds
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "optimized_cache"})

ARTIFACT_SUFFIX = ".jpg"

Encoder = Callable[[Path], bytes]
DimensionReader = Callable[[Path], tuple[int, int]]


class CachePolicy(str, Enum):
    """How a cache miss on the navigation path is handled."""

    BLOCKING = "blocking"
    BACKGROUND = "background"


@dataclass(frozen=True)
class ResolvedImage:
    """Path to show right now and whether an optimised copy is on its way."""

    immediate_path: str
    optimization_scheduled: bool = False
    optimized: bool = False


class OptimizedImageCache:
    """Produce and serve capped-resolution JPEG copies keyed by source path.

    Each key has at most one producer: a producer registers a future for the
    key under ``_lock`` and other callers either wait on it (blocking policy)
    or leave it alone (background policy and prefetch). The artifact is
    written to a temporary file and moved into place, and the write is
    skipped if the artifact appeared in the meantime.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        encoder: Encoder = encode_display_jpeg,
        dimension_reader: DimensionReader = read_dimensions,
        max_workers: int = 2,
        policy: CachePolicy | str = CachePolicy.BACKGROUND,
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._encoder = encoder
        self._dimension_reader = dimension_reader
        self._policy = CachePolicy(policy)
        self._lock = Lock()
        self._in_flight: dict[str, Future[Path]] = {}
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="optimize")

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    def artifact_path(self, path: str | Path) -> Path:
        """Deterministic artifact location for ``path``."""

        return self._cache_dir / f"{compute_path_key(path)}{ARTIFACT_SUFFIX}"

    def needs_optimization(self, path: str | Path, dimensions: tuple[int, int]) -> bool:
        if is_video_file(path):
            return False
        width, height = dimensions
        return exceeds_display_bounds(width, height)

    def resolve(
        self,
        path: str | Path,
        dimensions: tuple[int, int],
        policy: CachePolicy | str | None = None,
    ) -> ResolvedImage:
        """Return the path to display for ``path``.

        Images within the display bounds and videos resolve to themselves.
        An existing artifact is served directly. On a miss the blocking
        policy produces the artifact before returning and the background
        policy schedules it and returns the original path.
        """

        source = str(path)
        if not self.needs_optimization(source, dimensions):
            return ResolvedImage(immediate_path=source)

        target = self.artifact_path(source)
        if target.exists():
            return ResolvedImage(immediate_path=str(target), optimized=True)

        active_policy = CachePolicy(policy) if policy is not None else self._policy
        if active_policy is CachePolicy.BLOCKING:
            return self._resolve_blocking(source, target)
        return self._resolve_background(source, target)

    def _resolve_blocking(self, source: str, target: Path) -> ResolvedImage:
        future, owner = self._claim(target)
        if future is None:
            return ResolvedImage(immediate_path=str(target), optimized=True)

        try:
            if owner:
                self._produce(source, target, future)
            future.result()
        except Exception as exc:
            LOGGER.warning("optimize_failed", extra={"source": source, "error": str(exc)})
            return ResolvedImage(immediate_path=source)
        return ResolvedImage(immediate_path=str(target), optimized=True)

    def _resolve_background(self, source: str, target: Path) -> ResolvedImage:
        future, owner = self._claim(target)
        if future is None:
            return ResolvedImage(immediate_path=str(target), optimized=True)

        if owner and not self._submit(self._produce_logged, source, target, future):
            self._abandon(target, future)
            return ResolvedImage(immediate_path=source)
        return ResolvedImage(immediate_path=source, optimization_scheduled=True)

    def prefetch(self, paths: Iterable[str | Path]) -> int:
        """Queue speculative optimisation for ``paths``; returns the number of tasks queued."""

        queued = 0
        for path in paths:
            if self._submit(self._prefetch_one, str(path)):
                queued += 1
        return queued

    def _prefetch_one(self, source: str) -> None:
        try:
            if is_video_file(source) or not os.path.isfile(source):
                return
            target = self.artifact_path(source)
            if target.exists():
                return
            dimensions = self._dimension_reader(Path(source))
            if not self.needs_optimization(source, dimensions):
                return
            future, owner = self._claim(target)
            if future is None or not owner:
                return
            self._produce(source, target, future)
            LOGGER.info("prefetch_complete", extra={"source": source, "artifact": str(target)})
        except Exception as exc:
            LOGGER.warning("prefetch_failed", extra={"source": source, "error": str(exc)}, exc_info=True)

    def _submit(self, fn: Callable[..., None], *args: object) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._executor.submit(fn, *args)
        return True

    def _claim(self, target: Path) -> tuple[Future[Path] | None, bool]:
        """Return ``(future, owner)`` for ``target``; ``(None, False)`` when the artifact exists."""

        key = target.name
        with self._lock:
            existing = self._in_flight.get(key)
            if existing is not None:
                return existing, False
            if target.exists():
                return None, False
            future: Future[Path] = Future()
            self._in_flight[key] = future
            return future, True

    def _abandon(self, target: Path, future: Future[Path]) -> None:
        with self._lock:
            self._in_flight.pop(target.name, None)
        future.cancel()

    def _produce(self, source: str, target: Path, future: Future[Path]) -> Path:
        try:
            data = self._encoder(Path(source))
            written = self._write_artifact(target, data)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(target)
            LOGGER.info(
                "optimize_complete",
                extra={"source": source, "artifact": str(target), "written": written, "bytes": len(data)},
            )
            return target
        finally:
            with self._lock:
                self._in_flight.pop(target.name, None)

    def _produce_logged(self, source: str, target: Path, future: Future[Path]) -> None:
        try:
            self._produce(source, target, future)
        except Exception as exc:
            LOGGER.warning("optimize_failed", extra={"source": source, "error": str(exc)}, exc_info=True)

    def _write_artifact(self, target: Path, data: bytes) -> bool:
        """Atomically write ``data`` to ``target`` unless it already exists."""

        if target.exists():
            return False

        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            if target.exists():
                return False
            os.replace(tmp_name, target)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)


__all__ = ["ARTIFACT_SUFFIX", "CachePolicy", "OptimizedImageCache", "ResolvedImage"]
