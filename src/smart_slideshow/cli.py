"""Command-line surface for the slideshow."""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import typer

from smart_slideshow.app import EXCLUDE_KINDS, ImageInfo, SlideshowContext
from smart_slideshow.config import Settings, load_settings
from smart_slideshow.errors import SlideshowError
from utils.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Shuffled slideshow over a directory tree.")
setting_app = typer.Typer(no_args_is_help=True, help="Read or write stored settings.")
app.add_typer(setting_app, name="setting")


class _State:
    settings_path: Optional[Path] = None
    context: Optional[SlideshowContext] = None


_STATE = _State()


def _load() -> Settings:
    settings = load_settings(_STATE.settings_path)
    log_dir = Path(settings.logging.directory) if settings.logging.directory else None
    configure_logging(settings.logging.level, log_dir)
    return settings


def _context() -> SlideshowContext:
    if _STATE.context is None:
        context = SlideshowContext.from_settings(_load())
        context.init_playlist()
        _STATE.context = context
    return _STATE.context


def _fail(exc: Exception) -> NoReturn:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _format_timestamp(value: float | None) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def _echo_image(info: ImageInfo) -> None:
    typer.echo(f"[{info.position}/{info.total}] {info.path}")
    if info.display_path != info.path:
        typer.echo(f"  display: {info.display_path}")
    elif info.optimization_scheduled:
        typer.echo("  display: original (optimised copy scheduled)")
    size = "video" if info.is_video else f"{info.width}x{info.height}"
    typer.echo(f"  size: {size}, {info.file_size} bytes")
    typer.echo(f"  views: {info.view_count} (last: {_format_timestamp(info.last_viewed)})")

    metadata = info.metadata
    if metadata is None:
        return
    if metadata.capture_time:
        typer.echo(f"  taken: {metadata.capture_time}")
    camera = " ".join(part for part in (metadata.camera_make, metadata.camera_model) if part)
    if camera:
        typer.echo(f"  camera: {camera}")
    exposure = ", ".join(
        part for part in (metadata.focal_length, metadata.f_number, metadata.exposure_time) if part
    )
    if metadata.iso:
        exposure = f"{exposure}, ISO {metadata.iso}" if exposure else f"ISO {metadata.iso}"
    if exposure:
        typer.echo(f"  exposure: {exposure}")
    if metadata.gps is not None:
        typer.echo(f"  gps: {metadata.gps.latitude:.6f}, {metadata.gps.longitude:.6f}")


def _close_context() -> None:
    context, _STATE.context = _STATE.context, None
    if context is not None:
        context.close(wait=False)


@app.callback()
def main_callback(
    ctx: typer.Context,
    settings: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Settings YAML file; defaults to config/settings.yaml.",
    ),
) -> None:
    """Shuffled slideshow over a directory tree."""

    _STATE.settings_path = settings
    _STATE.context = None
    ctx.call_on_close(_close_context)


@app.command()
def scan(root: Path = typer.Argument(..., help="Directory to scan for images and videos.")) -> None:
    """Scan ROOT and merge the result into the playlist."""

    def _progress(processed: int, total: int) -> None:
        if total:
            typer.echo(f"\rscanned {processed}/{total}", nl=False, err=True)

    try:
        summary = _context().scan_directory(root, progress=_progress)
    except SlideshowError as exc:
        _fail(exc)
    typer.echo("", err=True)
    typer.echo(
        f"{summary.total_files} files ({summary.new_files} new, {summary.deleted_files} removed, "
        f"{summary.unchanged_files} unchanged) in {summary.duration_ms} ms"
    )


@app.command("next")
def next_command() -> None:
    """Advance to the next image and show it."""

    try:
        info = _context().next_image()
    except SlideshowError as exc:
        _fail(exc)
    if info is None:
        typer.echo("Nothing to show.")
        return
    _echo_image(info)


@app.command()
def back() -> None:
    """Step back to the previously shown image."""

    try:
        info = _context().previous_image()
    except SlideshowError as exc:
        _fail(exc)
    if info is None:
        typer.echo("Already at the start of history.")
        return
    _echo_image(info)


@app.command()
def info() -> None:
    """Show the current image and playlist position."""

    context = _context()
    playlist = context.playlist_info()
    if playlist is None:
        typer.echo("Playlist not initialized; run `scan` first.")
        raise typer.Exit(code=1)

    current = context.current_image()
    if current is not None:
        _echo_image(current)
    typer.echo(f"position {playlist.position}/{playlist.total}, can go back: {'yes' if playlist.can_go_back else 'no'}")
    root = context.current_root
    if root is not None:
        typer.echo(f"root: {root}")


@app.command()
def stats(
    per_image: bool = typer.Option(False, "--per-image", help="List view counts for every image."),
) -> None:
    """Show how many images exist and how many have been displayed."""

    try:
        context = _context()
        totals = context.stats()
        typer.echo(f"{totals.displayed_images}/{totals.total_images} images displayed")
        if per_image:
            for path, count in context.display_stats():
                typer.echo(f"{count:6d}  {path}")
    except SlideshowError as exc:
        _fail(exc)


@app.command()
def play(
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        min=0.0,
        help="Seconds per image; defaults to slideshow.interval_seconds from settings.",
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Stop after this many images."),
) -> None:
    """Run the slideshow unattended, printing each image as it is shown."""

    context = _context()
    settings = load_settings(_STATE.settings_path)
    delay = settings.slideshow.interval_seconds if interval is None else interval

    shown = 0
    try:
        while limit is None or shown < limit:
            current = context.next_image()
            if current is None:
                break
            _echo_image(current)
            shown += 1
            if limit is not None and shown >= limit:
                break
            time.sleep(delay)
    except SlideshowError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        typer.echo("stopped")
    LOGGER.info("play_finished", extra={"shown": shown})


@app.command()
def exclude(
    path: Path = typer.Argument(..., help="Image to exclude."),
    kind: str = typer.Option("file", "--kind", "-k", help="What to exclude: file, directory, or date."),
) -> None:
    """Add an ignore rule derived from PATH."""

    if kind not in EXCLUDE_KINDS:
        typer.secho(f"Error: --kind must be one of {', '.join(sorted(EXCLUDE_KINDS))}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    try:
        result = _context().exclude_image(path.expanduser().absolute(), kind)
    except SlideshowError as exc:
        _fail(exc)
    typer.echo(f"Added ignore pattern: {result.pattern}")
    if result.requires_rescan:
        typer.echo("Rescan the directory to apply it.")


@app.command()
def share(path: Path = typer.Argument(..., help="Image to copy into the share directory.")) -> None:
    """Copy PATH into the share directory."""

    try:
        destination = _context().share_image(path.expanduser())
    except (SlideshowError, OSError) as exc:
        _fail(exc)
    typer.echo(str(destination))


@setting_app.command("get")
def setting_get(key: str = typer.Argument(...)) -> None:
    """Print a stored setting."""

    try:
        value = _context().get_setting(key)
    except SlideshowError as exc:
        _fail(exc)
    if value is None:
        typer.echo(f"{key} is not set")
        raise typer.Exit(code=1)
    typer.echo(value)


@setting_app.command("set")
def setting_set(key: str = typer.Argument(...), value: str = typer.Argument(...)) -> None:
    """Store a setting."""

    try:
        _context().set_setting(key, value)
    except SlideshowError as exc:
        _fail(exc)
    typer.echo(f"{key} = {value}")


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt.")) -> None:
    """Delete the database and cache and forget the playlist."""

    if not yes:
        typer.confirm("Delete all slideshow data?", abort=True)
    _context().reset_all_data()
    typer.echo("All data reset.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
