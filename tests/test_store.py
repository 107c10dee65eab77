"""Tests for the SQLAlchemy-backed persistent store."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from smart_slideshow.db import normalize_target, sqlite_path_from_target
from smart_slideshow.errors import PersistenceFailure
from smart_slideshow.scanner import FileRecord
from smart_slideshow.store import SlideshowStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SlideshowStore]:
    instance = SlideshowStore(f"sqlite:///{tmp_path / 'db' / 'slideshow.db'}")
    yield instance
    instance.close()


def test_normalize_target_makes_sqlite_paths_absolute(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Relative SQLite targets become absolute URLs."""

    monkeypatch.chdir(tmp_path)

    normalized = normalize_target("sqlite:///data/slideshow.db")

    assert normalized == f"sqlite:///{(tmp_path / 'data' / 'slideshow.db').resolve()}"
    assert sqlite_path_from_target("sqlite:///data/slideshow.db") == (tmp_path / "data" / "slideshow.db").resolve()
    assert sqlite_path_from_target("sqlite:///:memory:") is None


def test_file_records_upsert_and_invalidate(store: SlideshowStore) -> None:
    """Invalidated records drop out of the valid set and come back on upsert."""

    store.upsert_file_records(
        [
            FileRecord(path="/p/a.jpg", modified_time=10, size=100),
            FileRecord(path="/p/b.jpg", modified_time=20, size=200),
        ]
    )
    store.upsert_file_record("/p/c.jpg", 30, 300)

    assert [record.path for record in store.get_all_valid_file_records()] == ["/p/a.jpg", "/p/b.jpg", "/p/c.jpg"]
    assert store.get_total_image_count() == 3

    assert store.mark_paths_invalid(["/p/b.jpg", "/p/unknown.jpg"]) == 1
    assert [record.path for record in store.get_all_valid_file_records()] == ["/p/a.jpg", "/p/c.jpg"]

    store.upsert_file_record("/p/b.jpg", 25, 250)
    records = {record.path: record for record in store.get_all_valid_file_records()}
    assert records["/p/b.jpg"] == FileRecord(path="/p/b.jpg", modified_time=25, size=250)
    assert store.get_total_image_count() == 3


def test_upsert_handles_more_rows_than_one_batch(store: SlideshowStore) -> None:
    """Upserts larger than one batch store every row."""

    records = [FileRecord(path=f"/p/{index:04d}.jpg", modified_time=index, size=index) for index in range(450)]

    assert store.upsert_file_records(records) == 450
    assert store.mark_paths_invalid(record.path for record in records[:250]) == 250
    assert store.get_total_image_count() == 200


def test_playlist_snapshot_round_trip(store: SlideshowStore) -> None:
    """The saved snapshot reads back unchanged."""

    assert store.get_playlist_snapshot() is None

    store.save_playlist_snapshot(2, '["a", "b", "c"]')
    store.save_playlist_snapshot(1, '["c", "b"]')

    assert store.get_playlist_snapshot() == (1, '["c", "b"]')


def test_view_counts(store: SlideshowStore) -> None:
    """View counters increment, report, and reset."""

    assert store.get_view_stats("/p/a.jpg") == (0, None)

    store.increment_view_count("/p/a.jpg")
    store.increment_view_count("/p/a.jpg")
    store.increment_view_count("/p/b.jpg")

    count, last_viewed = store.get_view_stats("/p/a.jpg")
    assert count == 2
    assert last_viewed is not None and last_viewed > 0
    assert store.get_all_view_counts() == [("/p/a.jpg", 2), ("/p/b.jpg", 1)]
    assert store.get_displayed_image_count() == 2

    store.reset_all_view_counts()

    assert store.get_view_stats("/p/a.jpg") == (0, None)
    assert store.get_displayed_image_count() == 0


def test_settings_round_trip(store: SlideshowStore) -> None:
    """Settings read back what was written and None when unset."""

    assert store.get_setting("share_directory_path") is None

    store.set_setting("share_directory_path", "/tmp/one")
    store.set_setting("share_directory_path", "/tmp/two")

    assert store.get_setting("share_directory_path") == "/tmp/two"


def test_scan_history_is_recorded(store: SlideshowStore) -> None:
    """The latest scan history row is returned."""

    assert store.get_last_scan() is None

    store.record_scan_history("/photos", 10, 4, 1, 123)

    last = store.get_last_scan()
    assert last is not None
    assert (last.directory_path, last.files_found, last.files_added, last.files_removed, last.duration_ms) == (
        "/photos",
        10,
        4,
        1,
        123,
    )


def test_database_errors_become_persistence_failures(store: SlideshowStore, monkeypatch: pytest.MonkeyPatch) -> None:
    """SQLAlchemy errors surface as PersistenceFailure."""

    def _broken_session(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr("smart_slideshow.store.open_session", _broken_session)

    with pytest.raises(PersistenceFailure):
        store.increment_view_count("/p/a.jpg")
    with pytest.raises(PersistenceFailure):
        store.get_setting("anything")
