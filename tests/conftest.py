"""Shared fixtures for slideshow tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from smart_slideshow.config import Settings


@pytest.fixture
def make_image() -> Callable[..., Path]:
    """Return a factory that writes a solid-colour image and returns its path."""

    def _make(path: Path, size: tuple[int, int] = (32, 24), color: str = "red", fmt: str | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color=color).save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every writable location into ``tmp_path``."""

    cfg = Settings()
    cfg.databases.primary_url = f"sqlite:///{tmp_path / 'data' / 'slideshow.db'}"
    cfg.cache.root = str(tmp_path / "cache")
    cfg.cache.policy = "blocking"
    cfg.scan.ignore_file = str(tmp_path / "slideshowignore")
    cfg.share.directory = str(tmp_path / "share")
    return cfg
