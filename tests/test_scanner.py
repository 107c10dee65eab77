"""Tests for the directory walk and parallel stat collection."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from smart_slideshow.errors import NotADirectory, PathNotFound
from smart_slideshow.ignore import DEFAULT_IGNORE_RULES, IgnoreFilter
from smart_slideshow.scanner import (
    DirectoryScanner,
    FileRecord,
    collect_file_records,
    is_media_file,
    is_video_file,
    scan_directory,
)


def _touch(path: Path, content: bytes = b"x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    root = tmp_path / "photos"
    _touch(root / "a.jpg")
    _touch(root / "b.PNG")
    _touch(root / "notes.txt")
    _touch(root / "clip.MOV")
    _touch(root / "sub" / "c.jpeg")
    _touch(root / "private" / "d.jpg")
    return root


def test_extension_checks_are_case_insensitive() -> None:
    """Extension checks ignore case."""

    assert is_media_file("/x/IMG_0001.JPG")
    assert is_media_file("/x/movie.Mp4")
    assert not is_media_file("/x/readme.md")
    assert is_video_file("/x/clip.MOV")
    assert not is_video_file("/x/a.jpg")


def test_scan_filters_extensions_and_ignore_rules(tree: Path) -> None:
    """Only recognised, non-ignored files are returned."""

    diff = DirectoryScanner(IgnoreFilter(["private"])).scan(tree)

    found = {Path(record.path).relative_to(tree).as_posix() for record in diff.current}
    assert found == {"a.jpg", "b.PNG", "clip.MOV", "sub/c.jpeg"}
    assert diff.added == frozenset(record.path for record in diff.current)
    assert diff.removed == frozenset()
    assert diff.unchanged_count == 0


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_scan_does_not_follow_symlinks(tree: Path, tmp_path: Path) -> None:
    """Symlinked files and folders are not followed."""

    outside = tmp_path / "outside"
    _touch(outside / "e.jpg")
    os.symlink(outside, tree / "linked", target_is_directory=True)
    os.symlink(tree / "a.jpg", tree / "alias.jpg")

    diff = scan_directory(tree)

    names = {Path(record.path).name for record in diff.current}
    assert "e.jpg" not in names
    assert "alias.jpg" not in names


def test_records_carry_size_and_mtime(tree: Path) -> None:
    """Records carry the file size and whole-second modification time."""

    target = tree / "a.jpg"
    target.write_bytes(b"12345")
    os.utime(target, (1_600_000_000, 1_600_000_000))

    diff = scan_directory(tree)

    record = next(r for r in diff.current if r.path == str(target))
    assert record == FileRecord(path=str(target), modified_time=1_600_000_000, size=5)


def test_rescan_classifies_added_removed_and_unchanged(tree: Path) -> None:
    """A rescan reports touched and new files as added and deleted ones as removed."""

    first = scan_directory(tree)

    os.utime(tree / "a.jpg", (1_500_000_000, 1_500_000_000))
    (tree / "b.PNG").unlink()
    _touch(tree / "sub" / "new.webp")

    second = scan_directory(tree, first.current)

    assert second.added == {str(tree / "a.jpg"), str(tree / "sub" / "new.webp")}
    assert second.removed == {str(tree / "b.PNG")}
    assert second.unchanged_count == len(second.current) - len(second.added)


def test_missing_root_is_fatal(tmp_path: Path) -> None:
    """A missing root raises PathNotFound."""

    with pytest.raises(PathNotFound):
        scan_directory(tmp_path / "nope")


def test_file_root_is_rejected(tree: Path) -> None:
    """A regular file as root raises NotADirectory."""

    with pytest.raises(NotADirectory):
        scan_directory(tree / "a.jpg")


def test_stat_failures_are_skipped(tmp_path: Path) -> None:
    """Files that vanish before stat are skipped."""

    present = _touch(tmp_path / "here.jpg")

    records = collect_file_records([str(tmp_path / "gone.jpg"), str(present)])

    assert [record.path for record in records] == [str(present)]


def test_progress_is_coarse_and_monotonic(tmp_path: Path) -> None:
    """Progress fires every 100 files and never goes backwards."""

    paths = [str(_touch(tmp_path / f"img_{index:03d}.jpg")) for index in range(250)]
    calls: list[tuple[int, int]] = []

    records = collect_file_records(paths, progress=lambda done, total: calls.append((done, total)), max_workers=8)

    assert len(records) == 250
    assert [record.path for record in records] == paths
    assert calls[0] == (0, 250)
    assert calls[-1] == (250, 250)
    assert {done for done, _ in calls} == {0, 100, 200, 250}
    processed = [done for done, _ in calls]
    assert processed == sorted(processed)


def test_root_under_hidden_folder_is_scanned_with_default_rules(tmp_path: Path) -> None:
    """Default hidden-folder rules apply below the root only, never to the root's own ancestors."""

    root = tmp_path / ".photos_sync" / "album"
    _touch(root / "a.jpg")
    _touch(root / "b.jpg")
    _touch(root / "2023" / "c.jpg")
    _touch(root / ".cache" / "d.jpg")
    _touch(root / "trip" / "@eaDir" / "e.jpg")

    diff = DirectoryScanner(IgnoreFilter.from_content(DEFAULT_IGNORE_RULES)).scan(root)

    found = {Path(record.path).relative_to(root).as_posix() for record in diff.current}
    assert found == {"a.jpg", "b.jpg", "2023/c.jpg"}
