"""CLI entry point for mediascanner."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from mediascanner import __version__
from mediascanner.config import ScannerConfig, load_config, merge_config
from mediascanner.logging_setup import setup_logging
from mediascanner.models import MediaRecord
from mediascanner.paths import get_id
from mediascanner.prober import MetadataExtractor
from mediascanner.service import open_store, run_service, run_sweep
from mediascanner.summary import parse_cinf
from mediascanner.tools import check_tools_available

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="mediascanner",
    help="Watch a media folder and keep its record store in sync.",
    invoke_without_command=True,
    no_args_is_help=True,
)


def _resolve_config_path(config: Optional[str]) -> Path | None:
    """Resolve the config file path, falling back to ./config.toml if present."""
    if config is not None:
        path = Path(config)
        if not path.exists():
            typer.echo(f"Error: Config file not found: {path}", err=True)
            raise typer.Exit(code=1)
        return path
    default = Path("config.toml")
    return default if default.exists() else None


def _build_config(
    config: Optional[str],
    media_root: Optional[str] = None,
    log_level: Optional[str] = None,
) -> ScannerConfig:
    """Load TOML config (if any) and merge with CLI overrides."""
    config_path = _resolve_config_path(config)
    file_config = load_config(config_path) if config_path is not None else {}
    cli_overrides: dict[str, Any] = {
        "media_root": media_root,
        "log_level": log_level,
    }
    try:
        return merge_config(file_config, cli_overrides)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _run_until_signalled(main: Coroutine[Any, Any, Any]) -> None:
    """Run `main`, cancelling it cleanly on SIGINT/SIGTERM."""

    async def runner() -> None:
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, task.cancel)  # type: ignore[union-attr]
            except NotImplementedError:  # pragma: no cover - Windows
                pass
        try:
            await main
        except asyncio.CancelledError:
            logger.info("Shutting down")

    asyncio.run(runner())


@app.command()
def run(
    config: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file (default: ./config.toml)"),
    media_root: Optional[str] = typer.Option(None, "--media-root", help="Override the watched media folder"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override log level"),
) -> None:
    """Watch the media folder and index it until interrupted."""
    cfg = _build_config(config, media_root, log_level)
    setup_logging(cfg.log_level, cfg.log_file)

    try:
        check_tools_available(cfg.ffmpeg, cfg.ffprobe)
    except RuntimeError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1)

    logger.info("mediascanner v%s starting", __version__)
    logger.info("Media root: %s", cfg.media_root)
    logger.info("Database: %s", cfg.db_path)
    if cfg.metadata is not None:
        logger.info("Extended metadata: %s", cfg.metadata)

    _run_until_signalled(run_service(cfg))


@app.command()
def sweep(
    config: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file (default: ./config.toml)"),
    media_root: Optional[str] = typer.Option(None, "--media-root", help="Override the watched media folder"),
) -> None:
    """Remove records whose files no longer exist."""
    cfg = _build_config(config, media_root)
    setup_logging(cfg.log_level, cfg.log_file)

    removed = asyncio.run(run_sweep(cfg))
    typer.echo(f"Removed {removed} dead records")


@app.command()
def probe(
    file: str = typer.Argument(..., help="Media file to probe"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file (default: ./config.toml)"),
    media_root: Optional[str] = typer.Option(None, "--media-root", help="Override the watched media folder"),
) -> None:
    """Print the cinf line and mediainfo for one file without storing anything."""
    cfg = _build_config(config, media_root)
    setup_logging(cfg.log_level)
    path = Path(file).resolve()
    if not path.is_file():
        typer.echo(f"Error: File not found: {path}", err=True)
        raise typer.Exit(code=1)

    try:
        media_id = get_id(cfg.media_root, path)
    except ValueError:
        typer.echo(f"Error: {path} is not under {cfg.media_root}", err=True)
        raise typer.Exit(code=1)

    st = path.stat()
    record = MediaRecord(
        id=media_id,
        media_path=str(path),
        media_size=st.st_size,
        media_time=st.st_mtime_ns // 1_000_000,
    )
    try:
        asyncio.run(MetadataExtractor(cfg).extract(record))
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(record.cinf or "", nl=False)
    if record.mediainfo is not None:
        typer.echo(json.dumps(record.mediainfo.model_dump(), indent=2))


async def _collect_records(cfg: ScannerConfig) -> list[MediaRecord]:
    store = open_store(cfg)
    records: list[MediaRecord] = []
    start_after: str | None = None
    try:
        while True:
            page = await store.list_page(start_after, 256)
            records.extend(page)
            if len(page) < 256:
                return records
            start_after = page[-1].id
    finally:
        await store.close()


@app.command(name="list")
def list_cmd(
    config: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file (default: ./config.toml)"),
    media_root: Optional[str] = typer.Option(None, "--media-root", help="Override the watched media folder"),
) -> None:
    """Print the stored records."""
    cfg = _build_config(config, media_root)
    setup_logging(cfg.log_level)
    records = asyncio.run(_collect_records(cfg))

    table = Table(title=f"Media ({len(records)})")
    table.add_column("Id")
    table.add_column("Type")
    table.add_column("Frames", justify="right")
    table.add_column("Timebase")
    table.add_column("Size", justify="right")
    table.add_column("Thumb", justify="center")

    for record in records:
        if record.cinf:
            cinf = parse_cinf(record.cinf)
            num, den = cinf["timebase"]
            media_type, frames, timebase = cinf["type"], str(cinf["duration"]), f"{num}/{den}"
        else:
            media_type, frames, timebase = "-", "-", "-"
        table.add_row(
            record.id,
            media_type,
            frames,
            timebase,
            str(record.media_size or 0),
            "yes" if record.tinf else "no",
        )

    Console().print(table)


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"mediascanner {__version__}")


if __name__ == "__main__":
    app()
