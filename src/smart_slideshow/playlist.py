"""Shuffled playlist with a bounded back/forward history."""

from __future__ import annotations

import json
import random
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "playlist"})

HISTORY_CAPACITY = 100


@dataclass(frozen=True)
class PlaylistSnapshot:
    """Persistable part of a playlist: the order and the cursor."""

    order: tuple[str, ...]
    cursor: int

    def order_json(self) -> str:
        return json.dumps(list(self.order), ensure_ascii=False)

    @classmethod
    def from_json(cls, cursor: int, order_json: str) -> "PlaylistSnapshot":
        """Parse a stored snapshot; raises ``ValueError`` when the payload is not a list of strings."""

        raw = json.loads(order_json)
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            raise ValueError("playlist order must be a JSON list of strings")
        return cls(order=tuple(raw), cursor=int(cursor))


@dataclass(frozen=True)
class AdvanceResult:
    """Path reached by :meth:`Playlist.advance` and whether it is a new view."""

    path: str | None
    should_count: bool


class Playlist:
    """Random traversal order over a set of paths.

    ``order`` is a permutation of the known paths and ``cursor`` points at
    the item on screen. ``history`` records visited cursor positions (at most
    :data:`HISTORY_CAPACITY`, oldest evicted first); ``history_cursor`` marks
    where the user currently is inside it, so going back and then forward
    again replays the same items instead of drawing new ones. Reaching the
    end of ``order`` reshuffles it in place at the moment of wraparound.

    The class is not thread-safe; :class:`smart_slideshow.app.SlideshowContext`
    serialises access with its own lock.
    """

    def __init__(self, order: Sequence[str], cursor: int = 0, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._order: list[str] = list(order)
        self._cursor = self._clamp(cursor)
        self._history: deque[int] = deque([self._cursor], maxlen=HISTORY_CAPACITY)
        self._history_cursor = 0

    @classmethod
    def fresh(cls, paths: Iterable[str], *, rng: random.Random | None = None) -> "Playlist":
        """Build a playlist from a random permutation of ``paths`` starting at the first item."""

        generator = rng or random.Random()
        order = list(dict.fromkeys(paths))
        generator.shuffle(order)
        return cls(order, 0, rng=generator)

    @classmethod
    def restore(cls, snapshot: PlaylistSnapshot, *, rng: random.Random | None = None) -> "Playlist":
        """Rebuild a playlist from a persisted snapshot; the cursor is clamped and history reset."""

        return cls(snapshot.order, snapshot.cursor, rng=rng)

    def _clamp(self, cursor: int) -> int:
        if not self._order:
            return 0
        return max(0, min(int(cursor), len(self._order) - 1))

    @property
    def order(self) -> tuple[str, ...]:
        return tuple(self._order)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def history(self) -> tuple[int, ...]:
        return tuple(self._history)

    @property
    def history_cursor(self) -> int:
        return self._history_cursor

    def is_empty(self) -> bool:
        return not self._order

    def total_count(self) -> int:
        return len(self._order)

    def current_position(self) -> int:
        """1-indexed position of the cursor, or 0 for an empty playlist."""

        if not self._order:
            return 0
        return self._cursor + 1

    def current(self) -> str | None:
        if not self._order:
            return None
        return self._order[self._cursor]

    def can_go_back(self) -> bool:
        return self._history_cursor > 0

    def advance(self) -> AdvanceResult:
        """Move forward one item.

        Inside recorded history this replays the next visited position and
        reports ``should_count=False``. Otherwise it steps the cursor, which
        reshuffles ``order`` when it wraps to zero, records the new position,
        and reports ``should_count=True``.
        """

        if not self._order:
            return AdvanceResult(path=None, should_count=False)

        if self._history_cursor < len(self._history) - 1:
            self._history_cursor += 1
            self._cursor = self._history[self._history_cursor]
            return AdvanceResult(path=self.current(), should_count=False)

        self._cursor = (self._cursor + 1) % len(self._order)
        if self._cursor == 0 and len(self._order) > 1:
            self._rng.shuffle(self._order)
            LOGGER.info("playlist_reshuffled", extra={"total": len(self._order)})

        self._history.append(self._cursor)
        self._history_cursor = len(self._history) - 1
        return AdvanceResult(path=self.current(), should_count=True)

    def go_back(self) -> str | None:
        """Step back through history; at the start of history this returns the current path unchanged."""

        if self._history_cursor == 0:
            return self.current()

        self._history_cursor -= 1
        self._cursor = self._history[self._history_cursor]
        return self.current()

    def peek_ahead(self, n: int) -> str | None:
        """Path ``n`` unconditional steps ahead in ``order``, ignoring history; never mutates."""

        if not self._order:
            return None
        return self._order[(self._cursor + n) % len(self._order)]

    def reconcile(self, added: Iterable[str], removed: Iterable[str]) -> None:
        """Merge a file-set change into the playlist.

        Removed paths are filtered out preserving survivor order; added paths
        not already present are shuffled and appended. The cursor is clamped
        and history collapses to the current position.
        """

        removed_set = set(removed)
        if removed_set:
            self._order = [path for path in self._order if path not in removed_set]

        present = set(self._order)
        appended = [path for path in dict.fromkeys(added) if path not in present and path not in removed_set]
        if appended:
            self._rng.shuffle(appended)
            self._order.extend(appended)

        if self._order and self._cursor >= len(self._order):
            self._cursor = len(self._order) - 1
        elif not self._order:
            self._cursor = 0

        self._history = deque([self._cursor], maxlen=HISTORY_CAPACITY)
        self._history_cursor = 0

        LOGGER.info(
            "playlist_reconciled",
            extra={"appended": len(appended), "removed": len(removed_set), "total": len(self._order)},
        )

    def snapshot(self) -> PlaylistSnapshot:
        return PlaylistSnapshot(order=tuple(self._order), cursor=self._cursor)


__all__ = ["HISTORY_CAPACITY", "AdvanceResult", "Playlist", "PlaylistSnapshot"]
