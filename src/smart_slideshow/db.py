"""SQLAlchemy helpers, schema definitions, and session management."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import Boolean, Float, Index, Integer, String, Text, create_engine, event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from utils.logging import get_logger

LOGGER = get_logger(__name__)

PLAYLIST_ROW_ID = 1


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class FileMetadata(Base):
    """Last observed identity tuple for every scanned media file."""

    __tablename__ = "file_metadata"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    modified_time: Mapped[int] = mapped_column(Integer, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    added_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_file_metadata_is_valid", "is_valid"),)


class ImageStats(Base):
    """Per-image display counters."""

    __tablename__ = "image_stats"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    display_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_displayed: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_image_stats_display_count", "display_count"),)


class PlaylistState(Base):
    """Single-row snapshot of the shuffled order and cursor."""

    __tablename__ = "playlist_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shuffled_list: Mapped[str] = mapped_column(Text, nullable=False)
    last_shuffled: Mapped[float] = mapped_column(Float, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ScanHistory(Base):
    """One row per completed directory scan."""

    __tablename__ = "scan_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    directory_path: Mapped[str] = mapped_column(String, nullable=False)
    scan_time: Mapped[float] = mapped_column(Float, nullable=False)
    files_found: Mapped[int] = mapped_column(Integer, nullable=False)
    files_added: Mapped[int] = mapped_column(Integer, nullable=False)
    files_removed: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("idx_scan_history_scan_time", "scan_time"),)


class AppSetting(Base):
    """Free-form string settings keyed by name."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)


_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = Lock()


def _ensure_parent_directory(path: Path) -> None:
    """Ensure the parent directory for a database file exists."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("db_parent_directory_error", extra={"path": str(path), "error": str(exc)})
        raise


def normalize_target(target: str | Path) -> str:
    """Normalize database URL or path inputs to absolute URLs."""

    if isinstance(target, Path):
        return f"sqlite:///{target.resolve()}"

    raw = str(target).strip()
    if not raw:
        raise ValueError("database target cannot be empty")

    if "://" not in raw:
        return f"sqlite:///{Path(raw).expanduser().resolve()}"

    url = make_url(raw)
    if url.drivername.startswith("sqlite"):
        database = url.database or ""
        if database not in {":memory:", ""}:
            db_path = Path(database).expanduser()
            if not db_path.is_absolute():
                db_path = (Path.cwd() / db_path).resolve()
            url = url.set(database=str(db_path))
        return url.render_as_string(hide_password=False)

    return raw


def sqlite_path_from_target(target: str | Path) -> Path | None:
    """Return the database file behind a SQLite target, or None for other backends and in-memory URLs."""

    url = make_url(normalize_target(target))
    if not url.drivername.startswith("sqlite"):
        return None
    database = url.database or ""
    if database in {":memory:", ""}:
        return None
    return Path(database)


def _get_engine(target: str | Path) -> Engine:
    """Return a cached SQLAlchemy engine for the provided target, creating schema if needed."""

    normalized = normalize_target(target)
    engine = _ENGINE_CACHE.get(normalized)
    if engine is not None:
        return engine

    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.get(normalized)
        if engine is not None:
            return engine

        sa_url = make_url(normalized)
        is_sqlite = sa_url.drivername.startswith("sqlite")

        engine_kwargs: dict[str, object] = {"future": True}
        if is_sqlite:
            if sa_url.database and sa_url.database not in {":memory:"}:
                _ensure_parent_directory(Path(sa_url.database))
            engine_kwargs["connect_args"] = {"timeout": 30.0, "check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_engine(normalized, **engine_kwargs)

        if is_sqlite:

            @event.listens_for(engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:  # type: ignore[override]
                """Configure SQLite for better concurrent access."""

                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA busy_timeout = 30000")
                finally:
                    cursor.close()

        try:
            Base.metadata.create_all(engine)
        except OperationalError as exc:
            # Another process may create the tables between the existence check and CREATE TABLE.
            message = str(exc).lower()
            if "already exists" in message:
                LOGGER.info("db_create_all_table_exists_race", extra={"target": normalized, "error": str(exc)})
            else:
                raise

        _ENGINE_CACHE[normalized] = engine
        return engine


def open_session(target: str | Path) -> Session:
    """Open a SQLAlchemy session for the slideshow database."""

    engine = _get_engine(target)
    return Session(engine, future=True)


def dispose_engine(target: str | Path) -> None:
    """Close pooled connections for ``target`` and forget the cached engine."""

    normalized = normalize_target(target)
    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.pop(normalized, None)
    if engine is not None:
        engine.dispose()


def dialect_insert(session: Session, table: Any) -> Any:
    """Return a dialect-aware INSERT statement supporting ON CONFLICT."""

    bind = session.get_bind()
    if bind is None:
        raise RuntimeError("Session is not bound to an engine.")

    name = bind.dialect.name
    if name == "sqlite":
        return sqlite_insert(table)
    if name.startswith("postgresql"):
        return pg_insert(table)
    raise NotImplementedError(f"Unsupported dialect for upsert: {name}")


__all__ = [
    "PLAYLIST_ROW_ID",
    "AppSetting",
    "Base",
    "FileMetadata",
    "ImageStats",
    "PlaylistState",
    "ScanHistory",
    "dialect_insert",
    "dispose_engine",
    "normalize_target",
    "open_session",
    "sqlite_path_from_target",
]
