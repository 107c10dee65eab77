"""Configuration loader and typed settings for the slideshow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

SETTINGS_ENV = "SMART_SLIDESHOW_SETTINGS"
CACHE_POLICIES: frozenset[str] = frozenset({"background", "blocking"})


@dataclass
class DatabaseConfig:
    """Database connection target for the persistent store."""

    primary_url: str = "sqlite:///data/slideshow.db"


@dataclass
class CacheConfig:
    """Location and scheduling for the optimised-image cache."""

    root: str = "data/cache"
    policy: str = "background"
    workers: int = 2


@dataclass
class ScanConfig:
    """Directory scanning options."""

    ignore_file: str = "~/.slideshowignore"
    workers: int | None = None

    @property
    def ignore_path(self) -> Path:
        return Path(self.ignore_file).expanduser()


@dataclass
class SlideshowConfig:
    """Options for the unattended ``play`` loop."""

    interval_seconds: float = 10.0


@dataclass
class ShareConfig:
    """Destination for shared images when no stored setting overrides it."""

    directory: str | None = None

    @property
    def resolved_directory(self) -> Path:
        if self.directory:
            return Path(self.directory).expanduser()
        return Path.home() / "Pictures" / "smart-slideshow"


@dataclass
class LoggingConfig:
    """Root logger level and directory for the JSONL log file."""

    level: str = "INFO"
    directory: str | None = None


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    slideshow: SlideshowConfig = field(default_factory=SlideshowConfig)
    share: ShareConfig = field(default_factory=ShareConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover - defensive fallback
        return module_path.parent


def _build_default_settings_paths() -> list[Path]:
    """Return candidate settings paths ordered by preference."""

    cwd_candidate = (Path.cwd() / "config" / "settings.yaml").resolve()
    repo_candidate = (_project_root() / "config" / "settings.yaml").resolve()

    candidates: list[Path] = []
    for candidate in (cwd_candidate, repo_candidate):
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv(SETTINGS_ENV)
    if env_override:
        return Path(env_override).expanduser().resolve()

    defaults = _build_default_settings_paths()
    for candidate in defaults:
        if candidate.exists():
            return candidate
    return defaults[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    A missing or malformed file yields a :class:`Settings` populated with
    default values; individual keys with the wrong type are ignored.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    if not path.exists() or not path.is_file():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}
    except yaml.YAMLError:
        return settings

    if not isinstance(raw, dict):
        return settings

    databases_raw = _as_dict(raw.get("databases"))
    if isinstance(databases_raw.get("primary_url"), str):
        settings.databases.primary_url = databases_raw["primary_url"]

    cache_raw = _as_dict(raw.get("cache"))
    cache_cfg = settings.cache
    if isinstance(cache_raw.get("root"), str):
        cache_cfg.root = cache_raw["root"]
    policy = cache_raw.get("policy")
    if isinstance(policy, str) and policy.lower() in CACHE_POLICIES:
        cache_cfg.policy = policy.lower()
    workers = cache_raw.get("workers")
    if isinstance(workers, int) and not isinstance(workers, bool) and workers > 0:
        cache_cfg.workers = workers

    scan_raw = _as_dict(raw.get("scan"))
    if isinstance(scan_raw.get("ignore_file"), str):
        settings.scan.ignore_file = scan_raw["ignore_file"]
    scan_workers = scan_raw.get("workers")
    if isinstance(scan_workers, int) and not isinstance(scan_workers, bool) and scan_workers > 0:
        settings.scan.workers = scan_workers

    slideshow_raw = _as_dict(raw.get("slideshow"))
    interval = slideshow_raw.get("interval_seconds")
    if _is_number(interval) and interval > 0:
        settings.slideshow.interval_seconds = float(interval)

    share_raw = _as_dict(raw.get("share"))
    if isinstance(share_raw.get("directory"), str):
        settings.share.directory = share_raw["directory"]

    logging_raw = _as_dict(raw.get("logging"))
    if isinstance(logging_raw.get("level"), str):
        settings.logging.level = logging_raw["level"].upper()
    if isinstance(logging_raw.get("directory"), str):
        settings.logging.directory = logging_raw["directory"]

    return settings


__all__ = [
    "CACHE_POLICIES",
    "CacheConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "ScanConfig",
    "Settings",
    "ShareConfig",
    "SlideshowConfig",
    "load_settings",
]
