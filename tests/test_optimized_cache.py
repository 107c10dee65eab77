"""Tests for the derived-image cache."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from smart_slideshow.errors import DecodeFailure
from smart_slideshow.hasher import compute_path_key
from smart_slideshow.optimized_cache import CachePolicy, OptimizedImageCache, ResolvedImage
from smart_slideshow.thumbnailing import encode_display_jpeg


class CountingEncoder:
    """Encoder double that records invocations and can be slowed down."""

    def __init__(self, delay: float = 0.0, payload: bytes = b"\xff\xd8fake-jpeg") -> None:
        self.delay = delay
        self.payload = payload
        self.calls: list[Path] = []
        self._lock = threading.Lock()

    def __call__(self, source: Path) -> bytes:
        with self._lock:
            self.calls.append(source)
        if self.delay:
            time.sleep(self.delay)
        return self.payload


class FailingEncoder:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, source: Path) -> bytes:
        self.calls += 1
        raise DecodeFailure(f"cannot decode {source}")


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    target = tmp_path / "cache"
    target.mkdir()
    return target


def test_cache_key_is_stable_and_path_based(cache_dir: Path) -> None:
    """The same path always maps to the same artifact name."""

    cache = OptimizedImageCache(cache_dir)
    try:
        first = cache.artifact_path("/photos/a.jpg")
        assert first == cache.artifact_path("/photos/a.jpg")
        assert first != cache.artifact_path("/photos/b.jpg")
        assert first.parent == cache_dir
        assert first.name == f"{compute_path_key('/photos/a.jpg')}.jpg"
        assert len(first.stem) == 16
        int(first.stem, 16)
    finally:
        cache.shutdown()


def test_needs_optimization_respects_threshold_and_videos(cache_dir: Path) -> None:
    """Only non-video images strictly larger than 3840x2160 qualify."""

    cache = OptimizedImageCache(cache_dir)
    try:
        assert cache.needs_optimization("/p/big.jpg", (4000, 3000))
        assert not cache.needs_optimization("/p/exact.jpg", (3840, 2160))
        assert not cache.needs_optimization("/p/clip.mp4", (7680, 4320))
        assert not cache.needs_optimization("/p/clip.mov", (0, 0))
    finally:
        cache.shutdown()


def test_small_images_resolve_to_themselves(cache_dir: Path) -> None:
    """Images within bounds are served unchanged."""

    encoder = CountingEncoder()
    cache = OptimizedImageCache(cache_dir, encoder=encoder, policy=CachePolicy.BLOCKING)
    try:
        resolved = cache.resolve("/photos/small.jpg", (800, 600))
    finally:
        cache.shutdown()

    assert resolved == ResolvedImage(immediate_path="/photos/small.jpg")
    assert encoder.calls == []


def test_blocking_policy_produces_then_serves_artifact(tmp_path: Path, cache_dir: Path, make_image) -> None:
    """The blocking policy writes the artifact once and then serves it."""

    source = make_image(tmp_path / "wide.png", size=(3900, 100))
    calls: list[Path] = []

    def encoder(path: Path) -> bytes:
        calls.append(path)
        return encode_display_jpeg(path)

    cache = OptimizedImageCache(cache_dir, encoder=encoder, policy=CachePolicy.BLOCKING)
    try:
        first = cache.resolve(source, (3900, 100))
        second = cache.resolve(source, (3900, 100))
    finally:
        cache.shutdown()

    artifact = cache.artifact_path(source)
    assert first == ResolvedImage(immediate_path=str(artifact), optimized=True)
    assert second == first
    assert artifact.read_bytes()[:2] == b"\xff\xd8"
    assert len(calls) == 1


def test_concurrent_resolution_writes_once(cache_dir: Path) -> None:
    """Concurrent resolves of one path produce exactly one write."""

    encoder = CountingEncoder(delay=0.05)
    cache = OptimizedImageCache(cache_dir, encoder=encoder, policy=CachePolicy.BLOCKING)
    barrier = threading.Barrier(8)
    results: list[ResolvedImage] = []
    results_lock = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        resolved = cache.resolve("/photos/huge.jpg", (8000, 6000))
        with results_lock:
            results.append(resolved)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    cache.shutdown()

    artifact = cache.artifact_path("/photos/huge.jpg")
    assert len(encoder.calls) == 1
    assert {result.immediate_path for result in results} == {str(artifact)}
    assert artifact.read_bytes() == encoder.payload
    assert [path.name for path in cache_dir.iterdir()] == [artifact.name]


def test_background_policy_returns_original_then_upgrades(cache_dir: Path) -> None:
    """The background policy serves the original until the artifact exists."""

    encoder = CountingEncoder(delay=0.02)
    cache = OptimizedImageCache(cache_dir, encoder=encoder, policy=CachePolicy.BACKGROUND)

    first = cache.resolve("/photos/huge.jpg", (5000, 4000))
    cache.shutdown(wait=True)
    second = cache.resolve("/photos/huge.jpg", (5000, 4000))

    assert first == ResolvedImage(immediate_path="/photos/huge.jpg", optimization_scheduled=True)
    assert second.optimized is True
    assert second.immediate_path == str(cache.artifact_path("/photos/huge.jpg"))
    assert len(encoder.calls) == 1


def test_background_failure_is_logged_not_raised(cache_dir: Path) -> None:
    """Encoder failures in the background are logged, not raised."""

    encoder = FailingEncoder()
    cache = OptimizedImageCache(cache_dir, encoder=encoder)

    resolved = cache.resolve("/photos/corrupt.jpg", (5000, 4000))
    cache.shutdown(wait=True)

    assert resolved.immediate_path == "/photos/corrupt.jpg"
    assert encoder.calls == 1
    assert list(cache_dir.iterdir()) == []


def test_blocking_failure_falls_back_to_original(cache_dir: Path) -> None:
    """A failed blocking encode serves the original path."""

    encoder = FailingEncoder()
    cache = OptimizedImageCache(cache_dir, encoder=encoder, policy=CachePolicy.BLOCKING)
    try:
        first = cache.resolve("/photos/corrupt.jpg", (5000, 4000))
        second = cache.resolve("/photos/corrupt.jpg", (5000, 4000))
    finally:
        cache.shutdown()

    assert first == ResolvedImage(immediate_path="/photos/corrupt.jpg")
    assert second == first
    assert encoder.calls == 2


def test_existing_artifact_is_never_overwritten(cache_dir: Path) -> None:
    """An artifact already on disk wins over a new producer."""

    cache = OptimizedImageCache(cache_dir, encoder=CountingEncoder())
    target = cache.artifact_path("/photos/a.jpg")
    target.write_bytes(b"first")
    try:
        written = cache._write_artifact(target, b"second")
    finally:
        cache.shutdown()

    assert written is False
    assert target.read_bytes() == b"first"
    assert sorted(path.name for path in cache_dir.iterdir()) == [target.name]


def test_prefetch_skips_videos_small_and_broken_files(tmp_path: Path, cache_dir: Path, make_image) -> None:
    """Prefetch encodes only oversized readable images."""

    big = make_image(tmp_path / "big.png", size=(3900, 100))
    small = make_image(tmp_path / "small.png", size=(100, 100))
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"nope")
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"\x00" * 16)

    cache = OptimizedImageCache(cache_dir, encoder=encode_display_jpeg)
    queued = cache.prefetch([big, small, broken, video, tmp_path / "missing.png", big])
    cache.shutdown(wait=True)

    assert queued == 6
    assert [path.name for path in cache_dir.iterdir()] == [cache.artifact_path(big).name]


def test_prefetch_after_shutdown_queues_nothing(cache_dir: Path) -> None:
    """Prefetch after shutdown schedules no work."""

    cache = OptimizedImageCache(cache_dir, encoder=CountingEncoder())
    cache.shutdown()

    assert cache.prefetch(["/photos/a.jpg"]) == 0
    assert cache.resolve("/photos/a.jpg", (5000, 4000)) == ResolvedImage(immediate_path="/photos/a.jpg")
