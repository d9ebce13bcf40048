from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import load_dotenv

from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.image_utils import ImageSanitizer
from .workflows.scheduler import BatchRefreshScheduler
from .workflows.store import ProfileStore
from .workflows.sync_config import SyncConfig
from .workflows.sync_utils import InvalidHandleError, normalize_handle
from .workflows.synchronizer import ProfileSynchronizer

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """profilesync (profile resolution & sync)

Usage:
  profilesync [--db <PATH>] [--verbose] get <handle>
  profilesync [--db <PATH>] [--verbose] refresh <handle>
  profilesync [--db <PATH>] status <handle>
  profilesync [--db <PATH>] [--verbose] cycle [--batch-size <N>]
  profilesync sanitize <image-ref> <handle>
  profilesync doctor

Common options:
  --db <PATH>     SQLite database (default: $PROFILESYNC_DB_PATH or ./profilesync.db).
  --verbose       Log strategy attempts and cache decisions to stderr.

Environment:
  PROFILESYNC_TTL_HOURS, PROFILESYNC_BATCH_SIZE, PROFILESYNC_STRATEGIES,
  PROFILESYNC_PROFILE_TIMEOUT, PROFILESYNC_IMAGE_TIMEOUT, PROFILESYNC_DISABLE_DELAYS
  (a .env file in the working directory is loaded first).
"""


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _config(ctx: typer.Context) -> SyncConfig:
    state: Dict[str, Any] = ctx.obj or {}
    try:
        config = SyncConfig.from_env()
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    db = state.get("db")
    if db is not None:
        config = replace(config, db_path=Path(db))
    return config


def _handle_or_exit(raw: str) -> str:
    try:
        return normalize_handle(raw)
    except InvalidHandleError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging."),
) -> None:
    load_dotenv(override=False)
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format="%(message)s")
    ctx.obj = {"db": db}
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("get", add_help_option=True)
def get_cmd(ctx: typer.Context, handle: str = typer.Argument(..., help="Handle, @handle or profile URL.")) -> None:
    """Return the stored profile, refreshing it first when stale."""
    key = _handle_or_exit(handle)
    config = _config(ctx)
    with ProfileStore(config.db_path) as store:
        sync = ProfileSynchronizer(store, config=config)
        record = asyncio.run(sync.get_or_refresh(key))
        _emit(record.to_dict())


@app.command("refresh", add_help_option=True)
def refresh_cmd(ctx: typer.Context, handle: str = typer.Argument(..., help="Handle to re-resolve now.")) -> None:
    """Resolve a profile now, ignoring freshness."""
    key = _handle_or_exit(handle)
    config = _config(ctx)
    with ProfileStore(config.db_path) as store:
        sync = ProfileSynchronizer(store, config=config)
        record = asyncio.run(sync.force_refresh(key))
    if record is None:
        _emit({"handle": key, "status": "failed"})
        raise typer.Exit(code=1)
    _emit(record.to_dict())


@app.command("status", add_help_option=True)
def status_cmd(ctx: typer.Context, handle: str = typer.Argument(..., help="Handle to inspect.")) -> None:
    """Show the stored record and whether it is due for refresh (no network)."""
    key = _handle_or_exit(handle)
    config = _config(ctx)
    with ProfileStore(config.db_path) as store:
        sync = ProfileSynchronizer(store, config=config)
        record = store.get(key)
        _emit(
            {
                "handle": key,
                "record": record.to_dict() if record else None,
                "needs_refresh": not sync.is_fresh(record),
            }
        )


@app.command("cycle", add_help_option=True)
def cycle_cmd(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Candidates per cycle."),
) -> None:
    """Run one batch refresh cycle over the most overdue profiles."""
    config = _config(ctx)
    with ProfileStore(config.db_path) as store:
        sync = ProfileSynchronizer(store, config=config)
        scheduler = BatchRefreshScheduler(sync, batch_size=batch_size)
        report = asyncio.run(scheduler.run_cycle())
    _emit(report.to_dict())


@app.command("sanitize", add_help_option=True)
def sanitize_cmd(
    ctx: typer.Context,
    image_ref: str = typer.Argument(..., help="Raw image reference (may be empty)."),
    handle: str = typer.Argument(..., help="Owning handle."),
) -> None:
    """Print the proxied or placeholder reference for an image."""
    config = _config(ctx)
    sanitizer = ImageSanitizer(proxy_path=config.proxy_path)
    typer.echo(sanitizer.sanitize(image_ref, _handle_or_exit(handle)))


@app.command("doctor", add_help_option=True)
def doctor_cmd(ctx: typer.Context) -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report(_config(ctx))
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


if __name__ == "__main__":
    app()
