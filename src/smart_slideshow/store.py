"""Persistent store for file records, playlist snapshots, view counts, and settings."""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from threading import Lock

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_slideshow.db import (
    PLAYLIST_ROW_ID,
    AppSetting,
    FileMetadata,
    ImageStats,
    PlaylistState,
    ScanHistory,
    dialect_insert,
    dispose_engine,
    open_session,
    sqlite_path_from_target,
)
from smart_slideshow.errors import PersistenceFailure
from smart_slideshow.scanner import FileRecord
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "store"})

_BATCH_SIZE = 200


def _chunks(items: Sequence, size: int = _BATCH_SIZE) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SlideshowStore:
    """Relational record keeper behind the slideshow.

    Every public call runs in its own session under ``_lock`` so store
    access is single-writer. Database errors surface as
    :class:`~smart_slideshow.errors.PersistenceFailure`.
    """

    def __init__(self, target: str | Path) -> None:
        self._target = target
        self._lock = Lock()

    @property
    def target(self) -> str | Path:
        return self._target

    @property
    def database_path(self) -> Path | None:
        return sqlite_path_from_target(self._target)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        with self._lock:
            try:
                with open_session(self._target) as session:
                    yield session
            except SQLAlchemyError as exc:
                LOGGER.error("store_operation_failed", extra={"operation": operation, "error": str(exc)})
                raise PersistenceFailure(f"{operation} failed: {exc}") from exc

    # --- file records -------------------------------------------------------

    def upsert_file_record(self, path: str, modified_time: int, size: int) -> None:
        self.upsert_file_records([FileRecord(path=path, modified_time=modified_time, size=size)])

    def upsert_file_records(self, records: Iterable[FileRecord]) -> int:
        """Insert or fully replace ``records``; replaced rows become valid again."""

        rows = [
            {"path": record.path, "modified_time": record.modified_time, "file_size": record.size}
            for record in records
        ]
        if not rows:
            return 0

        now = time.time()
        with self._session("upsert_file_records") as session:
            for batch in _chunks(rows):
                stmt = dialect_insert(session, FileMetadata).values(
                    [{**row, "is_valid": True, "added_at": now} for row in batch]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[FileMetadata.path],
                    set_={
                        "modified_time": stmt.excluded.modified_time,
                        "file_size": stmt.excluded.file_size,
                        "is_valid": True,
                        "added_at": stmt.excluded.added_at,
                    },
                )
                session.execute(stmt)
            session.commit()
        return len(rows)

    def mark_paths_invalid(self, paths: Iterable[str]) -> int:
        """Flag ``paths`` as no longer present; rows are kept, not purged."""

        targets = sorted(set(paths))
        if not targets:
            return 0

        affected = 0
        with self._session("mark_paths_invalid") as session:
            for batch in _chunks(targets):
                result = session.execute(
                    update(FileMetadata).where(FileMetadata.path.in_(batch)).values(is_valid=False)
                )
                affected += result.rowcount or 0
            session.commit()
        return affected

    def get_all_valid_file_records(self) -> list[FileRecord]:
        with self._session("get_all_valid_file_records") as session:
            rows = session.execute(
                select(FileMetadata.path, FileMetadata.modified_time, FileMetadata.file_size)
                .where(FileMetadata.is_valid.is_(True))
                .order_by(FileMetadata.path)
            ).all()
        return [FileRecord(path=path, modified_time=int(mtime), size=int(size)) for path, mtime, size in rows]

    def get_total_image_count(self) -> int:
        with self._session("get_total_image_count") as session:
            return int(
                session.execute(
                    select(func.count()).select_from(FileMetadata).where(FileMetadata.is_valid.is_(True))
                ).scalar_one()
            )

    # --- playlist -----------------------------------------------------------

    def save_playlist_snapshot(self, cursor: int, order_json: str) -> None:
        now = time.time()
        with self._session("save_playlist_snapshot") as session:
            stmt = dialect_insert(session, PlaylistState).values(
                id=PLAYLIST_ROW_ID,
                current_index=int(cursor),
                shuffled_list=order_json,
                last_shuffled=now,
                is_paused=False,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[PlaylistState.id],
                set_={
                    "current_index": stmt.excluded.current_index,
                    "shuffled_list": stmt.excluded.shuffled_list,
                    "last_shuffled": stmt.excluded.last_shuffled,
                },
            )
            session.execute(stmt)
            session.commit()

    def get_playlist_snapshot(self) -> tuple[int, str] | None:
        """Return ``(cursor, order_json)`` or None when nothing has been saved."""

        with self._session("get_playlist_snapshot") as session:
            row = session.execute(
                select(PlaylistState.current_index, PlaylistState.shuffled_list).where(
                    PlaylistState.id == PLAYLIST_ROW_ID
                )
            ).first()
        if row is None:
            return None
        return int(row[0]), str(row[1])

    # --- view counters ------------------------------------------------------

    def increment_view_count(self, path: str) -> None:
        now = time.time()
        with self._session("increment_view_count") as session:
            stmt = dialect_insert(session, ImageStats).values(
                path=path,
                display_count=1,
                last_displayed=now,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ImageStats.path],
                set_={
                    "display_count": ImageStats.display_count + 1,
                    "last_displayed": stmt.excluded.last_displayed,
                },
            )
            session.execute(stmt)
            session.commit()

    def get_view_stats(self, path: str) -> tuple[int, float | None]:
        """Return ``(count, last_viewed_epoch)``; unseen paths report ``(0, None)``."""

        with self._session("get_view_stats") as session:
            row = session.execute(
                select(ImageStats.display_count, ImageStats.last_displayed).where(ImageStats.path == path)
            ).first()
        if row is None:
            return 0, None
        return int(row[0]), row[1]

    def get_all_view_counts(self) -> list[tuple[str, int]]:
        """Return ``(path, count)`` pairs, most viewed first."""

        with self._session("get_all_view_counts") as session:
            rows = session.execute(
                select(ImageStats.path, ImageStats.display_count).order_by(
                    ImageStats.display_count.desc(), ImageStats.path
                )
            ).all()
        return [(path, int(count)) for path, count in rows]

    def get_displayed_image_count(self) -> int:
        with self._session("get_displayed_image_count") as session:
            return int(
                session.execute(
                    select(func.count()).select_from(ImageStats).where(ImageStats.display_count > 0)
                ).scalar_one()
            )

    def reset_all_view_counts(self) -> None:
        with self._session("reset_all_view_counts") as session:
            session.execute(update(ImageStats).values(display_count=0, last_displayed=None))
            session.commit()
        LOGGER.info("view_counts_reset")

    # --- settings -----------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        with self._session("get_setting") as session:
            return session.execute(select(AppSetting.value).where(AppSetting.key == key)).scalar_one_or_none()

    def set_setting(self, key: str, value: str) -> None:
        now = time.time()
        with self._session("set_setting") as session:
            stmt = dialect_insert(session, AppSetting).values(key=key, value=value, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=[AppSetting.key],
                set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
            )
            session.execute(stmt)
            session.commit()

    # --- scan history -------------------------------------------------------

    def record_scan_history(
        self,
        directory: str,
        files_found: int,
        files_added: int,
        files_removed: int,
        duration_ms: int,
    ) -> None:
        with self._session("record_scan_history") as session:
            session.add(
                ScanHistory(
                    directory_path=directory,
                    scan_time=time.time(),
                    files_found=files_found,
                    files_added=files_added,
                    files_removed=files_removed,
                    duration_ms=duration_ms,
                )
            )
            session.commit()

    def get_last_scan(self) -> ScanHistory | None:
        with self._session("get_last_scan") as session:
            row = session.execute(
                select(ScanHistory).order_by(ScanHistory.scan_time.desc(), ScanHistory.id.desc()).limit(1)
            ).scalar_one_or_none()
            if row is not None:
                session.expunge(row)
            return row

    def close(self) -> None:
        with self._lock:
            dispose_engine(self._target)


__all__ = ["SlideshowStore"]
