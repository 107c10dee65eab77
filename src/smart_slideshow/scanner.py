"""Incremental filesystem scanner for slideshow roots."""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from threading import Lock

from smart_slideshow.errors import IoFailure, NotADirectory, PathNotFound
from smart_slideshow.ignore import IgnoreFilter
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "scanner"})

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".bmp",
        ".webp",
        ".tiff",
        ".tif",
    }
)

VIDEO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp4",
        ".m4v",
        ".mov",
        ".webm",
        ".mkv",
        ".avi",
    }
)

MEDIA_EXTENSIONS: frozenset[str] = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS

PROGRESS_INTERVAL = 100

ProgressSink = Callable[[int, int], None]


@dataclass(frozen=True)
class FileRecord:
    """Identity tuple for a file; two records are the same file iff ``path`` matches."""

    path: str
    modified_time: int
    size: int


@dataclass(frozen=True)
class ScanDiff:
    """Outcome of one scan compared against the previously recorded file set."""

    current: tuple[FileRecord, ...]
    added: frozenset[str]
    removed: frozenset[str]
    unchanged_count: int
    elapsed_seconds: float

    @property
    def total_count(self) -> int:
        return len(self.current)

    @property
    def added_count(self) -> int:
        return len(self.added)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed_seconds * 1000)


def is_media_file(path: str | Path, extensions: frozenset[str] = MEDIA_EXTENSIONS) -> bool:
    """Return True when the file extension is recognised (case-insensitive)."""

    return os.path.splitext(str(path))[1].lower() in extensions


def is_video_file(path: str | Path) -> bool:
    """Return True for video containers, which are shown as-is and never optimised."""

    return is_media_file(path, VIDEO_EXTENSIONS)


def _validate_root(root: Path) -> None:
    if not root.exists():
        raise PathNotFound(f"Directory does not exist: {root}")
    if not root.is_dir():
        raise NotADirectory(f"Path is not a directory: {root}")


def iter_media_paths(
    root: Path,
    ignore_filter: IgnoreFilter | None = None,
    extensions: frozenset[str] = MEDIA_EXTENSIONS,
) -> Iterator[str]:
    """Walk ``root`` without following symlinks and yield recognised, non-ignored file paths.

    The root itself must be readable (``IoFailure`` otherwise); unreadable
    subdirectories are logged and skipped.
    """

    rules = ignore_filter or IgnoreFilter()
    try:
        with os.scandir(root):
            pass
    except OSError as exc:
        raise IoFailure(f"Cannot read directory {root}: {exc}") from exc

    pending: list[str] = [str(root)]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as entries:
                children = sorted(entries, key=lambda entry: entry.name)
        except OSError as exc:
            LOGGER.warning("scan_directory_unreadable", extra={"directory": directory, "error": str(exc)})
            continue

        subdirectories: list[str] = []
        for entry in children:
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirectories.append(entry.path)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
            except OSError as exc:
                LOGGER.warning("scan_entry_unreadable", extra={"entry": entry.path, "error": str(exc)})
                continue

            if not is_media_file(entry.name, extensions):
                continue
            if rules.is_ignored(entry.path, root=root):
                continue
            yield entry.path

        # Reversed so the stack pops subdirectories in name order.
        pending.extend(reversed(subdirectories))


def _stat_record(path: str) -> FileRecord | None:
    try:
        stat = os.stat(path, follow_symlinks=False)
    except OSError as exc:
        LOGGER.warning("scan_stat_failed", extra={"entry": path, "error": str(exc)})
        return None
    return FileRecord(path=path, modified_time=int(stat.st_mtime), size=int(stat.st_size))


def collect_file_records(
    paths: Sequence[str],
    progress: ProgressSink | None = None,
    max_workers: int | None = None,
) -> list[FileRecord]:
    """Stat ``paths`` in parallel, preserving input order and skipping failures.

    ``progress(processed, total)`` fires once up front, every
    :data:`PROGRESS_INTERVAL` files, and at completion. Calls are serialised
    under a lock so ``processed`` never decreases as seen by the sink.
    """

    total = len(paths)
    if progress is not None:
        progress(0, total)
    if not total:
        return []

    counter_lock = Lock()
    processed = 0

    def _collect(path: str) -> FileRecord | None:
        nonlocal processed
        record = _stat_record(path)
        with counter_lock:
            processed += 1
            count = processed
            if progress is not None and (count % PROGRESS_INTERVAL == 0 or count == total):
                progress(count, total)
        return record

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scan-stat") as executor:
        results = list(executor.map(_collect, paths))

    return [record for record in results if record is not None]


def diff_records(
    previous: Iterable[FileRecord],
    current: Sequence[FileRecord],
) -> tuple[frozenset[str], frozenset[str], int]:
    """Classify ``current`` against ``previous`` into ``(added, removed, unchanged_count)``.

    A path whose modified time changed counts as added; its record is
    replaced wholesale. One pass over ``current`` with dict lookups.
    """

    remaining: dict[str, int] = {record.path: record.modified_time for record in previous}
    added: list[str] = []
    unchanged = 0

    for record in current:
        prior_mtime = remaining.pop(record.path, None)
        if prior_mtime is None or prior_mtime != record.modified_time:
            added.append(record.path)
        else:
            unchanged += 1

    return frozenset(added), frozenset(remaining), unchanged


class DirectoryScanner:
    """Scan a root directory and diff the result against previously stored records."""

    def __init__(
        self,
        ignore_filter: IgnoreFilter | None = None,
        *,
        extensions: frozenset[str] = MEDIA_EXTENSIONS,
        max_workers: int | None = None,
    ) -> None:
        self._ignore_filter = ignore_filter or IgnoreFilter()
        self._extensions = extensions
        self._max_workers = max_workers

    def scan(
        self,
        root: str | Path,
        previous_records: Iterable[FileRecord] = (),
        progress: ProgressSink | None = None,
    ) -> ScanDiff:
        """Walk ``root`` and return the diff against ``previous_records``.

        Raises:
            PathNotFound: ``root`` does not exist.
            NotADirectory: ``root`` is not a directory.
            IoFailure: ``root`` cannot be listed.
        """

        started = time.perf_counter()
        root_path = Path(root).expanduser().absolute()
        _validate_root(root_path)

        paths = list(iter_media_paths(root_path, self._ignore_filter, self._extensions))
        LOGGER.info(
            "scan_files_discovered",
            extra={"root": str(root_path), "file_count": len(paths), "seconds": round(time.perf_counter() - started, 3)},
        )

        records = collect_file_records(paths, progress=progress, max_workers=self._max_workers)
        added, removed, unchanged = diff_records(previous_records, records)
        elapsed = time.perf_counter() - started

        diff = ScanDiff(
            current=tuple(records),
            added=added,
            removed=removed,
            unchanged_count=unchanged,
            elapsed_seconds=elapsed,
        )
        LOGGER.info(
            "scan_complete",
            extra={
                "root": str(root_path),
                "total": diff.total_count,
                "added": diff.added_count,
                "removed": diff.removed_count,
                "unchanged": unchanged,
                "duration_ms": diff.elapsed_ms,
            },
        )
        return diff


def scan_directory(
    root: str | Path,
    previous_records: Iterable[FileRecord] = (),
    progress: ProgressSink | None = None,
    *,
    ignore_filter: IgnoreFilter | None = None,
    max_workers: int | None = None,
) -> ScanDiff:
    """Convenience wrapper around :class:`DirectoryScanner`."""

    scanner = DirectoryScanner(ignore_filter, max_workers=max_workers)
    return scanner.scan(root, previous_records, progress)


__all__ = [
    "IMAGE_EXTENSIONS",
    "MEDIA_EXTENSIONS",
    "PROGRESS_INTERVAL",
    "VIDEO_EXTENSIONS",
    "DirectoryScanner",
    "FileRecord",
    "ProgressSink",
    "ScanDiff",
    "collect_file_records",
    "diff_records",
    "is_media_file",
    "is_video_file",
    "iter_media_paths",
    "scan_directory",
]
