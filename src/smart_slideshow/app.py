"""Application context tying the scanner, playlist, cache, and store together."""

from __future__ import annotations

import glob
import os
import random
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from threading import Lock

from smart_slideshow.cache_helpers import reset_cache_dir, resolve_cache_root
from smart_slideshow.config import Settings
from smart_slideshow.errors import (
    DecodeFailure,
    EmptyPlaylist,
    MetadataUnavailable,
    PathNotFound,
    PersistenceFailure,
    PlaylistNotInitialized,
)
from smart_slideshow.ignore import IgnoreFilter, append_ignore_rule, ensure_ignore_file
from smart_slideshow.metadata import ImageMetadata, describe, read_dimensions
from smart_slideshow.optimized_cache import CachePolicy, OptimizedImageCache
from smart_slideshow.playlist import Playlist, PlaylistSnapshot
from smart_slideshow.scanner import DirectoryScanner, ProgressSink, is_video_file
from smart_slideshow.store import SlideshowStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "app"})

PREFETCH_WINDOW = 5

SETTING_LAST_DIRECTORY = "last_directory_path"
SETTING_RESET_ON_DIRECTORY_CHANGE = "reset_on_directory_change"
SETTING_SHARE_DIRECTORY = "share_directory_path"

EXCLUDE_KINDS: frozenset[str] = frozenset({"file", "directory", "date"})


@dataclass(frozen=True)
class ImageInfo:
    """Everything a display surface needs for one item."""

    path: str
    display_path: str
    is_video: bool
    file_size: int
    width: int
    height: int
    optimized: bool
    optimization_scheduled: bool
    view_count: int
    last_viewed: float | None
    metadata: ImageMetadata | None
    position: int = 0
    total: int = 0


@dataclass(frozen=True)
class ScanSummary:
    directory: str
    total_files: int
    new_files: int
    deleted_files: int
    unchanged_files: int
    duration_ms: int


@dataclass(frozen=True)
class PlaylistInfo:
    position: int
    total: int
    can_go_back: bool


@dataclass(frozen=True)
class ViewStats:
    total_images: int
    displayed_images: int


@dataclass(frozen=True)
class ExcludeResult:
    pattern: str
    removed_from_playlist: bool
    requires_rescan: bool


class SlideshowContext:
    """Explicit replacement for process-wide slideshow state.

    The playlist and the current root each sit behind their own lock; the
    store serialises its own access. Navigation never waits on cache
    production under the background policy.
    """

    def __init__(
        self,
        store: SlideshowStore,
        cache: OptimizedImageCache,
        *,
        ignore_path: Path,
        share_directory: Path,
        scan_workers: int | None = None,
        rng: random.Random | None = None,
        describe_fn: Callable[[Path], ImageMetadata | None] = describe,
        dimension_reader: Callable[[Path], tuple[int, int]] = read_dimensions,
    ) -> None:
        self._store = store
        self._cache = cache
        self._ignore_path = ignore_path
        self._share_directory = share_directory
        self._scan_workers = scan_workers
        self._rng = rng or random.Random()
        self._describe = describe_fn
        self._dimension_reader = dimension_reader

        self._playlist: Playlist | None = None
        self._playlist_lock = Lock()
        self._root: Path | None = None
        self._root_lock = Lock()

    @classmethod
    def from_settings(cls, settings: Settings, *, rng: random.Random | None = None) -> "SlideshowContext":
        """Build a context from :class:`~smart_slideshow.config.Settings`.

        The cache directory is wiped and recreated; failing to create it is
        fatal and propagates as ``OSError``.
        """

        cache_root = resolve_cache_root(settings.cache.root)
        reset_cache_dir(cache_root)

        store = SlideshowStore(settings.databases.primary_url)
        cache = OptimizedImageCache(
            cache_root,
            max_workers=settings.cache.workers,
            policy=CachePolicy(settings.cache.policy),
        )
        LOGGER.info(
            "context_ready",
            extra={"database": str(settings.databases.primary_url), "cache_dir": str(cache_root)},
        )
        return cls(
            store,
            cache,
            ignore_path=settings.scan.ignore_path,
            share_directory=settings.share.resolved_directory,
            scan_workers=settings.scan.workers,
            rng=rng,
        )

    @property
    def store(self) -> SlideshowStore:
        return self._store

    @property
    def cache(self) -> OptimizedImageCache:
        return self._cache

    @property
    def ignore_path(self) -> Path:
        return self._ignore_path

    @property
    def current_root(self) -> Path | None:
        with self._root_lock:
            return self._root

    # --- scanning -----------------------------------------------------------

    def scan_directory(self, root: str | Path, progress: ProgressSink | None = None) -> ScanSummary:
        """Scan ``root``, persist the diff, and merge it into the playlist.

        The same root as the previous scan reconciles the existing playlist;
        a different root starts a fresh shuffle.
        """

        directory = Path(root).expanduser().absolute()
        ignore_filter = IgnoreFilter.from_file(ensure_ignore_file(self._ignore_path))

        try:
            previous = self._store.get_all_valid_file_records()
        except PersistenceFailure:
            previous = []

        scanner = DirectoryScanner(ignore_filter, max_workers=self._scan_workers)
        diff = scanner.scan(directory, previous, progress)

        added_records = [record for record in diff.current if record.path in diff.added]
        self._store.upsert_file_records(added_records)
        self._store.mark_paths_invalid(diff.removed)
        self._store.record_scan_history(
            str(directory),
            diff.total_count,
            diff.added_count,
            diff.removed_count,
            diff.elapsed_ms,
        )

        if self._store.get_setting(SETTING_RESET_ON_DIRECTORY_CHANGE) in (None, "true"):
            self._store.reset_all_view_counts()

        with self._root_lock:
            same_root = self._root == directory

        with self._playlist_lock:
            if same_root and self._playlist is not None:
                self._playlist.reconcile(sorted(diff.added), diff.removed)
            else:
                LOGGER.info("playlist_created", extra={"root": str(directory), "total": diff.total_count})
                self._playlist = Playlist.fresh((record.path for record in diff.current), rng=self._rng)
            self._save_snapshot(self._playlist)

        with self._root_lock:
            self._root = directory
        self._store.set_setting(SETTING_LAST_DIRECTORY, str(directory))

        return ScanSummary(
            directory=str(directory),
            total_files=diff.total_count,
            new_files=diff.added_count,
            deleted_files=diff.removed_count,
            unchanged_files=diff.unchanged_count,
            duration_ms=diff.elapsed_ms,
        )

    def init_playlist(self) -> str | None:
        """Restore the persisted playlist and root; returns the current path, if any."""

        snapshot_row = self._store.get_playlist_snapshot()
        last_root = self._store.get_setting(SETTING_LAST_DIRECTORY)
        if last_root:
            with self._root_lock:
                self._root = Path(last_root)

        if snapshot_row is None:
            return None

        cursor, order_json = snapshot_row
        try:
            snapshot = PlaylistSnapshot.from_json(cursor, order_json)
        except ValueError as exc:
            LOGGER.warning("playlist_snapshot_invalid", extra={"error": str(exc)})
            return None
        if not snapshot.order:
            return None

        with self._playlist_lock:
            self._playlist = Playlist.restore(snapshot, rng=self._rng)
            current = self._playlist.current()
        LOGGER.info("playlist_restored", extra={"total": len(snapshot.order), "cursor": snapshot.cursor})
        return current

    # --- navigation ---------------------------------------------------------

    def _require_playlist(self) -> Playlist:
        if self._playlist is None:
            raise PlaylistNotInitialized("Playlist not initialized; scan a directory first")
        if self._playlist.is_empty():
            raise EmptyPlaylist("Playlist is empty")
        return self._playlist

    def _save_snapshot(self, playlist: Playlist) -> None:
        snapshot = playlist.snapshot()
        try:
            self._store.save_playlist_snapshot(snapshot.cursor, snapshot.order_json())
        except PersistenceFailure:
            LOGGER.warning("playlist_snapshot_dropped", extra={"cursor": snapshot.cursor})

    def next_image(self) -> ImageInfo | None:
        """Advance the playlist and return the new item.

        Prefetch for the next :data:`PREFETCH_WINDOW` items is queued, the
        view is counted only for forward progress, and the snapshot is saved
        before this returns.
        """

        with self._playlist_lock:
            playlist = self._require_playlist()
            result = playlist.advance()
            if result.path is None:
                return None

            upcoming = [playlist.peek_ahead(step) for step in range(1, PREFETCH_WINDOW + 1)]
            self._cache.prefetch(path for path in upcoming if path is not None)

            if result.should_count:
                try:
                    self._store.increment_view_count(result.path)
                except PersistenceFailure:
                    LOGGER.warning("view_count_dropped", extra={"path": result.path})

            self._save_snapshot(playlist)
            position, total = playlist.current_position(), playlist.total_count()

        return self.image_info(result.path, position=position, total=total)

    def previous_image(self) -> ImageInfo | None:
        """Step back through history; returns None at the start of history."""

        with self._playlist_lock:
            playlist = self._require_playlist()
            if not playlist.can_go_back():
                return None
            path = playlist.go_back()
            if path is None:
                return None
            self._save_snapshot(playlist)
            position, total = playlist.current_position(), playlist.total_count()

        return self.image_info(path, position=position, total=total)

    def image_info(self, path: str | Path, *, position: int = 0, total: int = 0) -> ImageInfo | None:
        """Describe ``path`` for display; None when the file no longer exists."""

        source = str(path)
        try:
            file_size = os.stat(source).st_size
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.warning("image_stat_failed", extra={"path": source, "error": str(exc)})
            file_size = 0

        is_video = is_video_file(source)
        width = height = 0
        if not is_video:
            try:
                width, height = self._dimension_reader(Path(source))
            except DecodeFailure as exc:
                LOGGER.warning("image_dimensions_unavailable", extra={"path": source, "error": str(exc)})

        resolved = self._cache.resolve(source, (width, height))
        metadata = None if is_video else self._describe(Path(source))

        try:
            view_count, last_viewed = self._store.get_view_stats(source)
        except PersistenceFailure:
            view_count, last_viewed = 0, None

        return ImageInfo(
            path=source,
            display_path=resolved.immediate_path,
            is_video=is_video,
            file_size=file_size,
            width=width,
            height=height,
            optimized=resolved.optimized,
            optimization_scheduled=resolved.optimization_scheduled,
            view_count=view_count,
            last_viewed=last_viewed,
            metadata=metadata,
            position=position,
            total=total,
        )

    def current_image(self) -> ImageInfo | None:
        with self._playlist_lock:
            if self._playlist is None or self._playlist.is_empty():
                return None
            path = self._playlist.current()
            position, total = self._playlist.current_position(), self._playlist.total_count()
        if path is None:
            return None
        return self.image_info(path, position=position, total=total)

    def playlist_info(self) -> PlaylistInfo | None:
        with self._playlist_lock:
            if self._playlist is None:
                return None
            return PlaylistInfo(
                position=self._playlist.current_position(),
                total=self._playlist.total_count(),
                can_go_back=self._playlist.can_go_back(),
            )

    # --- statistics and settings --------------------------------------------

    def stats(self) -> ViewStats:
        return ViewStats(
            total_images=self._store.get_total_image_count(),
            displayed_images=self._store.get_displayed_image_count(),
        )

    def display_stats(self) -> list[tuple[str, int]]:
        return self._store.get_all_view_counts()

    def get_setting(self, key: str) -> str | None:
        return self._store.get_setting(key)

    def set_setting(self, key: str, value: str) -> None:
        self._store.set_setting(key, value)

    # --- file operations ----------------------------------------------------

    def exclude_image(self, path: str | Path, kind: str) -> ExcludeResult:
        """Append an ignore rule derived from ``path``.

        ``file`` excludes the file itself and drops it from the playlist at
        once; ``directory`` and ``date`` take effect on the next scan.
        """

        source = Path(path)
        if not source.exists():
            raise PathNotFound(f"Image file does not exist: {source}")
        if kind not in EXCLUDE_KINDS:
            raise ValueError(f"Invalid exclude kind {kind!r}; expected one of {sorted(EXCLUDE_KINDS)}")

        if kind == "file":
            pattern = glob.escape(str(source))
        elif kind == "directory":
            pattern = f"{glob.escape(str(source.parent))}/*"
        else:
            metadata = self._describe(source)
            capture_date = metadata.capture_date if metadata is not None else None
            if not capture_date:
                raise MetadataUnavailable(f"No EXIF capture date in {source}")
            pattern = f"*{capture_date}*"

        append_ignore_rule(self._ignore_path, pattern)

        removed = False
        if kind == "file":
            with self._playlist_lock:
                if self._playlist is not None:
                    self._playlist.reconcile((), [str(source)])
                    self._save_snapshot(self._playlist)
                    removed = True

        LOGGER.info("image_excluded", extra={"path": str(source), "kind": kind, "pattern": pattern})
        return ExcludeResult(pattern=pattern, removed_from_playlist=removed, requires_rescan=kind != "file")

    def share_directory(self) -> Path:
        configured = self._store.get_setting(SETTING_SHARE_DIRECTORY)
        if configured:
            return Path(configured).expanduser()
        return self._share_directory

    def share_image(self, path: str | Path) -> Path:
        """Copy ``path`` into the share directory; a name clash gets an ``_<epoch>`` suffix."""

        source = Path(path)
        if not source.is_file():
            raise PathNotFound(f"Image file does not exist: {source}")

        destination_dir = self.share_directory()
        destination_dir.mkdir(parents=True, exist_ok=True)

        destination = destination_dir / source.name
        if destination.exists():
            destination = destination_dir / f"{source.stem}_{int(time.time())}{source.suffix}"

        shutil.copy2(source, destination)
        LOGGER.info("image_shared", extra={"path": str(source), "destination": str(destination)})
        return destination

    def reset_all_data(self) -> None:
        """Delete the database and cache contents and forget the in-memory playlist."""

        database_path = self._store.database_path
        self._store.close()
        if database_path is not None:
            for suffix in ("", "-wal", "-shm"):
                candidate = Path(f"{database_path}{suffix}")
                if candidate.exists():
                    candidate.unlink()

        reset_cache_dir(self._cache.cache_dir)

        with self._playlist_lock:
            self._playlist = None
        with self._root_lock:
            self._root = None
        LOGGER.info("all_data_reset", extra={"database": str(database_path) if database_path else None})

    def close(self, wait: bool = True) -> None:
        self._cache.shutdown(wait=wait)
        self._store.close()


__all__ = [
    "EXCLUDE_KINDS",
    "PREFETCH_WINDOW",
    "ExcludeResult",
    "ImageInfo",
    "PlaylistInfo",
    "ScanSummary",
    "SlideshowContext",
    "ViewStats",
]
