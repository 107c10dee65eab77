"""Property-style checks for the scan diff."""

from __future__ import annotations

import random

from smart_slideshow.scanner import FileRecord, diff_records


def _records(spec: dict[str, int]) -> list[FileRecord]:
    return [FileRecord(path=path, modified_time=mtime, size=1) for path, mtime in spec.items()]


def test_diff_classifies_each_case() -> None:
    """Modified records count as added next to new ones; vanished records are removed."""

    previous = _records({"/a": 1, "/b": 2, "/c": 3})
    current = _records({"/a": 1, "/b": 5, "/d": 4})

    added, removed, unchanged = diff_records(previous, current)

    assert added == {"/b", "/d"}
    assert removed == {"/c"}
    assert unchanged == 1


def test_empty_previous_marks_everything_added() -> None:
    """Without previous records every file is added."""

    current = _records({"/a": 1, "/b": 2})

    added, removed, unchanged = diff_records([], current)

    assert added == {"/a", "/b"}
    assert removed == frozenset()
    assert unchanged == 0


def test_diff_invariants_hold_for_random_sets() -> None:
    """Added and removed are disjoint and added plus unchanged covers the current set."""

    rng = random.Random(1234)
    universe = [f"/photos/{index}.jpg" for index in range(60)]

    for _ in range(50):
        previous = {path: rng.randint(0, 3) for path in rng.sample(universe, rng.randint(0, 60))}
        current = {path: rng.randint(0, 3) for path in rng.sample(universe, rng.randint(0, 60))}

        added, removed, unchanged = diff_records(_records(previous), _records(current))

        assert not (added & removed)
        assert len(added) + unchanged == len(current)
        assert removed == set(previous) - set(current)
        assert added == {path for path, mtime in current.items() if previous.get(path) != mtime}
        assert unchanged == sum(1 for path, mtime in current.items() if previous.get(path) == mtime)
